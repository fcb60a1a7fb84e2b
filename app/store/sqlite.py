from __future__ import annotations

import asyncio
import dataclasses
import datetime as _dt
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from app.errors import StoreError

from .base import MessageRecord, TranscriptStore

logger = logging.getLogger("support_chat.store")


class SqliteTranscriptStore(TranscriptStore):
    """SQLite-backed transcript store.

    Each append commits before returning. Calls run in a worker thread so the
    event loop is never blocked; a lock serializes access to the shared connection.
    """

    backend_name: str = "sqlite"

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._lock = threading.Lock()
        try:
            if str(self._db_path) != ":memory:":
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._initialize_schema()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"transcript store unavailable: {e}") from e

    def _initialize_schema(self) -> None:
        with self._lock:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS chats (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    is_user INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_chats_user ON chats (user_id, id);"
            )
            self._connection.commit()

    # --- sync helpers (worker thread) ------------------------------------

    def _append_sync(self, record: MessageRecord) -> MessageRecord:
        with self._lock:
            cur = self._connection.execute(
                "INSERT INTO chats (user_id, message, is_user, created_at) VALUES (?, ?, ?, ?);",
                (record.user_id, record.message, 1 if record.is_user else 0, record.created_at.isoformat()),
            )
            self._connection.commit()
            return dataclasses.replace(record, id=cur.lastrowid)

    def _list_sync(self, user_id: str, limit: Optional[int]) -> List[MessageRecord]:
        with self._lock:
            if limit is not None and limit >= 0:
                rows = self._connection.execute(
                    "SELECT * FROM (SELECT id, user_id, message, is_user, created_at FROM chats "
                    "WHERE user_id = ? ORDER BY id DESC LIMIT ?) ORDER BY id ASC;",
                    (user_id, limit),
                ).fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT id, user_id, message, is_user, created_at FROM chats WHERE user_id = ? ORDER BY id ASC;",
                    (user_id,),
                ).fetchall()
        return [
            MessageRecord(
                id=row["id"],
                user_id=row["user_id"],
                message=row["message"],
                is_user=bool(row["is_user"]),
                created_at=_dt.datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def _delete_sync(self, user_id: str) -> int:
        with self._lock:
            cur = self._connection.execute("DELETE FROM chats WHERE user_id = ?;", (user_id,))
            self._connection.commit()
            return cur.rowcount

    # --- async interface -------------------------------------------------

    async def append(self, record: MessageRecord) -> MessageRecord:
        try:
            return await asyncio.to_thread(self._append_sync, record)
        except sqlite3.Error as e:
            logger.error(json.dumps({"event": "store_append_error", "userId": record.user_id, "error": str(e)}))
            raise StoreError(f"failed to persist message: {e}") from e

    async def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        try:
            return await asyncio.to_thread(self._list_sync, user_id, limit)
        except sqlite3.Error as e:
            raise StoreError(f"failed to read transcript: {e}") from e

    async def delete_for_user(self, user_id: str) -> int:
        try:
            return await asyncio.to_thread(self._delete_sync, user_id)
        except sqlite3.Error as e:
            raise StoreError(f"failed to delete transcript: {e}") from e

    async def close(self) -> None:
        with self._lock:
            self._connection.close()
