import asyncio
import datetime as _dt
import sqlite3

import pytest

from app.config import Settings
from app.errors import StoreError
from app.store.base import MessageRecord
from app.store.factory import get_transcript_store
from app.store.memory import MemoryTranscriptStore
from app.store.sqlite import SqliteTranscriptStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryTranscriptStore()
    else:
        s = SqliteTranscriptStore(tmp_path / "db" / "transcripts.sqlite3")
    yield s
    asyncio.run(s.close())


@pytest.mark.asyncio
async def test_append_assigns_ids_and_lists_in_write_order(store):
    a = await store.append(MessageRecord(user_id="u1", message="c1", is_user=True))
    b = await store.append(MessageRecord(user_id="u2", message="c2", is_user=True))
    c = await store.append(MessageRecord(user_id="u1", message="c3", is_user=False))

    assert a.id is not None and b.id is not None and c.id is not None
    assert a.id < c.id

    rows = await store.list_for_user("u1")
    assert [(r.message, r.is_user) for r in rows] == [("c1", True), ("c3", False)]
    assert all(isinstance(r.created_at, _dt.datetime) for r in rows)


@pytest.mark.asyncio
async def test_list_limit_keeps_most_recent(store):
    for i in range(5):
        await store.append(MessageRecord(user_id="u1", message=f"m{i}", is_user=i % 2 == 0))

    rows = await store.list_for_user("u1", limit=2)
    assert [r.message for r in rows] == ["m3", "m4"]


@pytest.mark.asyncio
async def test_delete_for_user_only_touches_that_user(store):
    await store.append(MessageRecord(user_id="u1", message="a", is_user=True))
    await store.append(MessageRecord(user_id="u1", message="b", is_user=False))
    await store.append(MessageRecord(user_id="u2", message="c", is_user=True))

    assert await store.delete_for_user("u1") == 2
    assert await store.list_for_user("u1") == []
    assert len(await store.list_for_user("u2")) == 1


def test_records_are_immutable():
    rec = MessageRecord(user_id="u1", message="x", is_user=True)
    with pytest.raises(Exception):
        rec.message = "y"  # type: ignore[misc]


@pytest.mark.asyncio
async def test_sqlite_round_trips_timestamp_and_flag(tmp_path):
    s = SqliteTranscriptStore(tmp_path / "t.sqlite3")
    ts = _dt.datetime(2024, 5, 1, 12, 30, tzinfo=_dt.timezone.utc)
    await s.append(MessageRecord(user_id="u1", message="blob", is_user=False, created_at=ts))

    # A fresh connection sees the committed row
    s2 = SqliteTranscriptStore(tmp_path / "t.sqlite3")
    rows = await s2.list_for_user("u1")
    assert rows[0].created_at == ts
    assert rows[0].is_user is False
    await s.close()
    await s2.close()


@pytest.mark.asyncio
async def test_sqlite_append_failure_raises_store_error(tmp_path):
    s = SqliteTranscriptStore(tmp_path / "t.sqlite3")

    class BrokenConnection:
        def execute(self, *args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        def close(self):
            pass

    s._connection = BrokenConnection()
    with pytest.raises(StoreError):
        await s.append(MessageRecord(user_id="u1", message="x", is_user=True))


def test_factory_selects_backend(tmp_path):
    assert isinstance(get_transcript_store(Settings(transcript_store="memory")), MemoryTranscriptStore)
    sqlite_store = get_transcript_store(Settings(transcript_store="sqlite", database_path=tmp_path / "x.sqlite3"))
    assert isinstance(sqlite_store, SqliteTranscriptStore)
    asyncio.run(sqlite_store.close())
