import json
import logging
import time
import uuid
from typing import Any, Callable, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger("support_chat.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, persists on request.state, and echoes on response.

    Emits one JSON access line per request. Authenticated requests also carry the
    caller's userId (set on request.state by the bearer-token dependency); 5xx
    responses are logged at warning level.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = req_id

        failed = response.status_code >= 500
        entry: Dict[str, Any] = {
            "event": "http_request",
            "level": "warning" if failed else "info",
            "requestId": req_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": int((time.perf_counter() - start) * 1000),
        }
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            entry["userId"] = user_id
        logger.log(logging.WARNING if failed else logging.INFO, json.dumps(entry))
        return response
