from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "support_chat_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "support_chat_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Model invocation metrics
MODEL_CALLS_TOTAL = Counter(
    "support_chat_model_calls_total",
    "Model invocations by outcome",
    ["outcome"],
)
MODEL_CALL_DURATION_SECONDS = Histogram(
    "support_chat_model_call_duration_seconds",
    "Duration of model invocations in seconds",
)

# Fire-and-forget transcript writes
BACKGROUND_WRITES_TOTAL = Counter(
    "support_chat_background_writes_total",
    "Background transcript writes by outcome",
    ["outcome"],
)
