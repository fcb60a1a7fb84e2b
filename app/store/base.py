from __future__ import annotations

import abc
import datetime as _dt
from dataclasses import dataclass, field
from typing import List, Optional


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass(frozen=True)
class MessageRecord:
    """One encrypted transcript entry.

    ``message`` always holds ciphertext; ``is_user`` is False for assistant turns.
    ``id`` is assigned by the store on append.
    """

    user_id: str
    message: str
    is_user: bool
    created_at: _dt.datetime = field(default_factory=utc_now)
    id: Optional[int] = None


class TranscriptStore(abc.ABC):
    """Append-only storage for encrypted message records, ordered by write time per user.

    A successful ``append`` means the record is committed.
    Implementations raise ``StoreError`` on failure.
    """

    backend_name: str = "unknown"

    @abc.abstractmethod
    async def append(self, record: MessageRecord) -> MessageRecord:
        ...

    @abc.abstractmethod
    async def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        ...

    @abc.abstractmethod
    async def delete_for_user(self, user_id: str) -> int:
        ...

    async def close(self) -> None:
        return None
