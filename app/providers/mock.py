from collections import deque
from typing import Deque, Optional

from .base import ModelClient, ModelRequest, extract_reply_text

# Recent requests kept for inspection; older ones are dropped
MAX_RECORDED_REQUESTS = 50


class MockModelClient(ModelClient):
    """Deterministic echo client for local development and tests."""

    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-chat-1")
        self.requests: Deque[ModelRequest] = deque(maxlen=MAX_RECORDED_REQUESTS)

    async def converse(self, request: ModelRequest) -> str:
        self.requests.append(request)
        response = {
            "output": {
                "message": {
                    "role": "assistant",
                    "content": [{"text": f"I hear you. You said: {request.user_text}"}],
                }
            }
        }
        return extract_reply_text(response)
