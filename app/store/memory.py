import asyncio
import dataclasses
from typing import List, Optional

from .base import MessageRecord, TranscriptStore


class MemoryTranscriptStore(TranscriptStore):
    backend_name: str = "memory"

    def __init__(self):
        self._records: List[MessageRecord] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def append(self, record: MessageRecord) -> MessageRecord:
        async with self._lock:
            stored = dataclasses.replace(record, id=self._next_id)
            self._next_id += 1
            self._records.append(stored)
            return stored

    async def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        async with self._lock:
            rows = [r for r in self._records if r.user_id == user_id]
        if limit is not None and limit >= 0:
            rows = rows[-limit:] if limit else []
        return rows

    async def delete_for_user(self, user_id: str) -> int:
        async with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.user_id != user_id]
            return before - len(self._records)
