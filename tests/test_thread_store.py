from __future__ import annotations

import asyncio

import pytest
from conftest import DownStore, make_thread

from thread_memory.config import MemoryConfig
from thread_memory.core.types import Role
from thread_memory.errors import StoreUnavailable, ThreadNotFound, VersionConflict
from thread_memory.memory.accumulator import append_turn
from thread_memory.storage.database import Database
from thread_memory.storage.models import Thread
from thread_memory.storage.thread_store import InMemoryThreadStore, SqliteThreadStore


async def test_create_then_load(store):
    thread = make_thread(3)
    await store.create(thread)

    loaded = await store.load(thread.thread_id)

    assert loaded == thread


async def test_missing_thread_is_none(store):
    assert await store.load("zzz-000") is None


async def test_save_is_idempotent_on_content(store):
    thread = make_thread(4)
    await store.create(thread)

    loaded = await store.load(thread.thread_id)
    saved = await store.save(loaded, expected_version=loaded.version)
    reloaded = await store.load(thread.thread_id)

    assert saved.version == loaded.version + 1
    assert reloaded.turns == thread.turns
    assert reloaded.to_dict() | {"version": 0} == thread.to_dict() | {"version": 0}


async def test_stale_save_conflicts(store):
    thread = make_thread(1)
    await store.create(thread)
    first = await store.load(thread.thread_id)
    second = await store.load(thread.thread_id)

    await store.save(append_turn(first, Role.OUTBOUND, "a"), expected_version=first.version)

    with pytest.raises(VersionConflict):
        await store.save(append_turn(second, Role.OUTBOUND, "b"), expected_version=second.version)


async def test_thread_expires_after_ttl(store, clock, memory_config):
    thread = make_thread(2)
    await store.create(thread)

    clock.advance(memory_config.ttl_seconds + 1)

    assert await store.load(thread.thread_id) is None
    with pytest.raises(ThreadNotFound):
        await store.save(thread, expected_version=0)


async def test_save_refreshes_expiry(store, clock, memory_config):
    thread = make_thread(2)
    await store.create(thread)

    clock.advance(memory_config.ttl_seconds - 10)
    loaded = await store.load(thread.thread_id)
    await store.save(loaded, expected_version=loaded.version)
    clock.advance(memory_config.ttl_seconds - 10)

    assert await store.load(thread.thread_id) is not None


async def test_purge_reclaims_expired(store, clock, memory_config):
    await store.create(make_thread(1))
    clock.advance(memory_config.ttl_seconds)

    assert await store.purge_expired() == 1


async def test_keys_are_namespaced(tmp_path, clock):
    config = MemoryConfig(key_prefix="app:conv:")
    db = Database(str(tmp_path / "ns.db"))
    store = SqliteThreadStore(db, config, clock=clock)
    await store.open()
    try:
        await store.create(Thread(thread_id="abc", tool_name="chat"))
        cursor = await db.conn.execute("SELECT store_key FROM threads")
        rows = await cursor.fetchall()
        assert [row["store_key"] for row in rows] == ["app:conv:abc"]
    finally:
        await store.close()


async def test_driver_errors_become_store_unavailable(memory_config):
    store = DownStore(memory_config)

    with pytest.raises(StoreUnavailable) as excinfo:
        await store.load("abc")
    assert excinfo.value.operation == "load"


async def test_slow_store_times_out(memory_config):
    class SlowStore(InMemoryThreadStore):
        async def _load(self, thread_id):
            await asyncio.sleep(1)

    store = SlowStore(memory_config, timeout_seconds=0.01)

    with pytest.raises(StoreUnavailable):
        await store.load("abc")


async def test_sqlite_store_not_open_is_unavailable(tmp_path, memory_config):
    store = SqliteThreadStore(Database(str(tmp_path / "closed.db")), memory_config)

    with pytest.raises(StoreUnavailable):
        await store.load("abc")


def _stall_commits(monkeypatch, db: Database, seconds: float, after: int = 0) -> None:
    conn = db.conn
    real_commit = conn.commit
    calls = []

    async def slow_commit():
        calls.append(1)
        if len(calls) > after:
            await asyncio.sleep(seconds)
        await real_commit()

    monkeypatch.setattr(conn, "commit", slow_commit)


async def test_timed_out_save_is_not_committed_later(tmp_path, memory_config, clock, monkeypatch):
    path = str(tmp_path / "threads.db")
    db = Database(path)
    store = SqliteThreadStore(db, memory_config, timeout_seconds=0.05, clock=clock)
    await store.open()
    await store.create(Thread(thread_id="x", tool_name="chat"))
    before = await store.load("x")

    with monkeypatch.context() as patch:
        _stall_commits(patch, db, 0.2)
        with pytest.raises(StoreUnavailable):
            await store.save(append_turn(before, Role.INBOUND, "failed write"), expected_version=0)

    # An unrelated write on the same connection must not carry the failed one along.
    await store.create(Thread(thread_id="y", tool_name="chat"))
    await store.close()

    reopened = SqliteThreadStore(Database(path), memory_config, clock=clock)
    await reopened.open()
    try:
        after = await reopened.load("x")
        assert after.turns == []
        assert after.version == 0
        assert await reopened.load("y") is not None
    finally:
        await reopened.close()


async def test_timed_out_create_is_not_committed_later(tmp_path, memory_config, clock, monkeypatch):
    path = str(tmp_path / "threads.db")
    db = Database(path)
    store = SqliteThreadStore(db, memory_config, timeout_seconds=0.05, clock=clock)
    await store.open()

    with monkeypatch.context() as patch:
        # the purge that precedes the insert commits normally
        _stall_commits(patch, db, 0.2, after=1)
        with pytest.raises(StoreUnavailable):
            await store.create(Thread(thread_id="z", tool_name="chat"))

    await store.create(Thread(thread_id="y", tool_name="chat"))
    await store.close()

    reopened = SqliteThreadStore(Database(path), memory_config, clock=clock)
    await reopened.open()
    try:
        assert await reopened.load("z") is None
        assert await reopened.load("y") is not None
    finally:
        await reopened.close()
