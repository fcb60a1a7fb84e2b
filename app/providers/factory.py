import json
import logging

from app.config import Settings

from .base import ModelClient
from .mock import MockModelClient

logger = logging.getLogger("support_chat.providers")


def get_model_client(settings: Settings) -> ModelClient:
    """Return a model client based on settings.

    AI_PROVIDER:
      - 'bedrock' / 'aws' / 'nova' -> BedrockModelClient (default)
      - 'mock' / 'test' -> MockModelClient
    Unknown providers fall back to mock.
    """
    prov = (settings.provider or "bedrock").lower()

    if prov in ("mock", "test"):
        return MockModelClient(model=settings.model_id)

    if prov in ("bedrock", "aws", "nova"):
        from .bedrock import BedrockModelClient
        return BedrockModelClient(
            model=settings.model_id,
            region=settings.aws_region,
            timeout_seconds=settings.model_timeout_seconds,
        )

    logger.warning(json.dumps({"event": "unknown_provider", "provider": prov, "fallback": "mock"}))
    return MockModelClient(model=settings.model_id)
