from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional, Set

from app.crypto import MessageCipher
from app.errors import ValidationError
from app.metrics import BACKGROUND_WRITES_TOTAL, MODEL_CALL_DURATION_SECONDS, MODEL_CALLS_TOTAL
from app.providers.base import ModelClient
from app.store.base import MessageRecord, TranscriptStore

logger = logging.getLogger("support_chat.relay")

SYSTEM_PROMPT = " ".join([
    "You are Mitra, a supportive mental health companion for young people.",
    "Respond in a warm, non-judgmental, and concise way.",
    "You are not a doctor or emergency service and you must not give medical, legal, or financial advice.",
    "Encourage users to seek help from qualified professionals, trusted adults, or local helplines "
    "(e.g., Tele-MANAS: 14416) when there is any risk of harm.",
])

MAX_TOKENS = 512
TEMPERATURE = 0.7
TOP_P = 0.9


@dataclass(frozen=True)
class RelayResult:
    reply: str
    model: str


class BackgroundWriter:
    """Runs transcript writes off the response path.

    Tasks are held until they finish so they are not garbage collected, and are
    never cancelled by client disconnects. Failures go to the log only.
    """

    def __init__(self, store: TranscriptStore):
        self._store = store
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, record: MessageRecord) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._write(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, record: MessageRecord) -> None:
        try:
            await self._store.append(record)
            BACKGROUND_WRITES_TOTAL.labels(outcome="ok").inc()
        except Exception as e:
            BACKGROUND_WRITES_TOTAL.labels(outcome="error").inc()
            logger.error(json.dumps({
                "event": "background_write_failed",
                "userId": record.user_id,
                "isUser": record.is_user,
                "error": str(e),
            }))

    async def drain(self) -> None:
        """Wait for every pending write (used on shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class MessageRelay:
    """Orchestrates one chat turn: persist user text, call the model, persist the reply later."""

    def __init__(
        self,
        store: TranscriptStore,
        model_client: ModelClient,
        cipher: MessageCipher,
        writer: Optional[BackgroundWriter] = None,
    ):
        self.store = store
        self.model_client = model_client
        self.cipher = cipher
        self.writer = writer or BackgroundWriter(store)

    async def handle(self, user_id: str, message_text: Optional[str], request_id: Optional[str] = None) -> RelayResult:
        if not message_text or not message_text.strip():
            raise ValidationError("Message is required")

        # 1. Persist the user turn; a failure aborts the request
        await self.store.append(MessageRecord(
            user_id=user_id,
            message=self.cipher.encrypt(message_text),
            is_user=True,
        ))

        # 2. Single-turn model call with the fixed persona
        t0 = time.perf_counter()
        try:
            reply = await self.model_client.invoke(
                message_text,
                system_prompt=SYSTEM_PROMPT,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                top_p=TOP_P,
            )
        except Exception:
            MODEL_CALLS_TOTAL.labels(outcome="error").inc()
            raise
        finally:
            MODEL_CALL_DURATION_SECONDS.observe(time.perf_counter() - t0)
        MODEL_CALLS_TOTAL.labels(outcome="ok").inc()

        # 3. Bot turn is written in the background; the caller gets the reply now
        self.writer.submit(MessageRecord(
            user_id=user_id,
            message=self.cipher.encrypt(reply),
            is_user=False,
        ))
        logger.info(json.dumps({
            "event": "chat_relayed",
            "userId": user_id,
            "requestId": request_id,
            "model": self.model_client.model,
            "replyChars": len(reply),
        }))
        return RelayResult(reply=reply, model=self.model_client.model or "")
