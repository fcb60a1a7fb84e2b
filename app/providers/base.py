from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.errors import ModelResponseError, ValidationError


@dataclass(frozen=True)
class ModelRequest:
    """Single-turn request envelope; built per call and never persisted."""

    user_text: str
    system_prompt: Optional[str] = None
    max_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9


def build_request(
    user_text: Optional[str],
    system_prompt: Optional[str] = None,
    max_tokens: int = 512,
    temperature: float = 0.7,
    top_p: float = 0.9,
) -> ModelRequest:
    text = (user_text or "").strip()
    if not text:
        raise ValidationError("message is required")
    system = (system_prompt or "").strip() or None
    return ModelRequest(
        user_text=text,
        system_prompt=system,
        max_tokens=max_tokens,
        temperature=temperature,
        top_p=top_p,
    )


def extract_reply_text(response: Dict[str, Any]) -> str:
    """Join the non-empty text blocks of a Converse-shaped response.

    Shape: { output: { message: { content: [ { text }, ... ] } } }
    """
    output = response.get("output") if isinstance(response, dict) else None
    message = output.get("message") if isinstance(output, dict) else None
    if not isinstance(message, dict) or not isinstance(message.get("content"), list):
        raise ModelResponseError("empty or malformed response from model")

    parts: List[str] = [
        block["text"]
        for block in message["content"]
        if isinstance(block, dict) and isinstance(block.get("text"), str) and block["text"]
    ]
    if not parts:
        raise ModelResponseError("model response contained no text")
    return "\n".join(parts).strip()


class ModelClient(abc.ABC):
    """Abstract single-turn model client.

    Implementations send one user message (plus optional system instruction) and
    return the reply text. They do not retry.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    async def invoke(
        self,
        user_text: Optional[str],
        system_prompt: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> str:
        request = build_request(user_text, system_prompt, max_tokens, temperature, top_p)
        return await self.converse(request)

    @abc.abstractmethod
    async def converse(self, request: ModelRequest) -> str:
        ...
