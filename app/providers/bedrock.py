from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import DEFAULT_MODEL_ID, DEFAULT_REGION
from app.errors import ModelCallError, ModelResponseError

from .base import ModelClient, ModelRequest, extract_reply_text

logger = logging.getLogger("support_chat.bedrock")


def _make_runtime_client(region: str, timeout_seconds: Optional[float]):
    cfg_kwargs: Dict[str, Any] = {
        # Callers own resilience; a single attempt per invocation.
        "retries": {"total_max_attempts": 1, "mode": "standard"},
    }
    if timeout_seconds and timeout_seconds > 0:
        cfg_kwargs["read_timeout"] = timeout_seconds
        cfg_kwargs["connect_timeout"] = min(10.0, timeout_seconds)
    return boto3.client("bedrock-runtime", region_name=region, config=Config(**cfg_kwargs))


class BedrockModelClient(ModelClient):
    """Amazon Bedrock Converse client (Amazon Nova by default)."""

    provider_name: str = "bedrock"

    def __init__(
        self,
        model: Optional[str] = None,
        region: Optional[str] = None,
        timeout_seconds: Optional[float] = 30.0,
        client: Any = None,
    ):
        super().__init__(model=model or DEFAULT_MODEL_ID)
        self.region = region or DEFAULT_REGION
        self._client = client if client is not None else _make_runtime_client(self.region, timeout_seconds)

    def build_converse_kwargs(self, request: ModelRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "modelId": self.model,
            "messages": [
                {"role": "user", "content": [{"text": request.user_text}]},
            ],
            "inferenceConfig": {
                "maxTokens": request.max_tokens,
                "temperature": request.temperature,
                "topP": request.top_p,
            },
        }
        # System instruction travels in its own field, never as a message
        if request.system_prompt:
            kwargs["system"] = [{"text": request.system_prompt}]
        return kwargs

    async def converse(self, request: ModelRequest) -> str:
        kwargs = self.build_converse_kwargs(request)
        t0 = time.perf_counter()
        try:
            response = await asyncio.to_thread(self._client.converse, **kwargs)
        except ClientError as e:
            err = e.response.get("Error", {}) if isinstance(e.response, dict) else {}
            meta = e.response.get("ResponseMetadata", {}) if isinstance(e.response, dict) else {}
            message = err.get("Message") or str(e)
            name = err.get("Code") or type(e).__name__
            status = meta.get("HTTPStatusCode")
            self._log_failure(message, name, status)
            raise ModelCallError(f"Bedrock API call failed: {message}", name=name, status_code=status) from e
        except BotoCoreError as e:
            self._log_failure(str(e), type(e).__name__, None)
            raise ModelCallError(f"Bedrock API call failed: {e}", name=type(e).__name__) from e

        try:
            reply = extract_reply_text(response)
        except ModelResponseError as e:
            meta = response.get("ResponseMetadata") if isinstance(response, dict) else None
            self._log_failure(str(e), type(e).__name__, (meta or {}).get("HTTPStatusCode"))
            raise
        logger.debug(json.dumps({
            "event": "bedrock_converse_ok",
            "model": self.model,
            "latency_ms": int((time.perf_counter() - t0) * 1000),
            "stopReason": response.get("stopReason"),
        }))
        return reply

    def _log_failure(self, message: str, name: Optional[str], status: Optional[int]) -> None:
        logger.error(json.dumps({
            "event": "bedrock_api_error",
            "message": message,
            "name": name,
            "code": status,
            "region": self.region,
            "modelId": self.model,
        }))
