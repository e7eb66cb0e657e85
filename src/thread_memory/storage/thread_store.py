"""Thread persistence: one record per thread, sliding expiry, versioned saves.

Every store namespaces its keys with ``MemoryConfig.key_prefix`` and refreshes
the expiry window on each write. Expired records behave exactly like records
that never existed. Saves are compare-and-set on ``Thread.version`` so two
continuations of the same thread cannot silently overwrite each other.
"""

from __future__ import annotations

import asyncio
import copy
import json
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Awaitable, Callable, TypeVar

import aiosqlite

from thread_memory.config import MemoryConfig
from thread_memory.errors import StoreUnavailable, ThreadNotFound, VersionConflict
from thread_memory.log import get_logger
from thread_memory.storage.database import Database
from thread_memory.storage.models import Thread

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class ThreadStore(ABC):
    """Async key/value persistence for whole threads."""

    # Driver exceptions translated to StoreUnavailable at the boundary.
    _driver_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, memory: MemoryConfig, timeout_seconds: float = 5.0, clock: Clock = time.time):
        self._memory = memory
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._memory.ttl_seconds

    def key_for(self, thread_id: str) -> str:
        return f"{self._memory.key_prefix}{thread_id}"

    def _expiry(self) -> float:
        return self._clock() + self._memory.ttl_seconds

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        """Run a store call under the configured timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(operation, f"timed out after {self._timeout}s") from e
        except self._driver_errors as e:
            raise StoreUnavailable(operation, str(e)) from e

    async def open(self) -> None:
        await self._bounded("open", self._open())

    async def close(self) -> None:
        await self._close()

    async def create(self, thread: Thread) -> None:
        """Insert a brand-new thread with a fresh expiry window."""
        await self._bounded("create", self._create(thread))

    async def load(self, thread_id: str) -> Thread | None:
        """Return the live thread, or None when it is missing or expired."""
        return await self._bounded("load", self._load(thread_id))

    async def save(self, thread: Thread, expected_version: int) -> Thread:
        """Replace the stored thread if its version still matches.

        Returns the thread carrying its new version. Raises VersionConflict
        when another writer got there first and ThreadNotFound when the
        record expired in the meantime.
        """
        return await self._bounded("save", self._save(thread, expected_version))

    async def purge_expired(self) -> int:
        return await self._bounded("purge", self._purge_expired())

    @abstractmethod
    async def _open(self) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _create(self, thread: Thread) -> None:
        ...

    @abstractmethod
    async def _load(self, thread_id: str) -> Thread | None:
        ...

    @abstractmethod
    async def _save(self, thread: Thread, expected_version: int) -> Thread:
        ...

    @abstractmethod
    async def _purge_expired(self) -> int:
        ...


class SqliteThreadStore(ThreadStore):
    """Durable thread store on top of the aiosqlite ``Database``."""

    _driver_errors = (aiosqlite.Error, OSError)

    def __init__(
        self,
        db: Database,
        memory: MemoryConfig,
        timeout_seconds: float = 5.0,
        clock: Clock = time.time,
    ):
        super().__init__(memory, timeout_seconds, clock)
        self._db = db

    def _conn(self, operation: str) -> aiosqlite.Connection:
        if not self._db.is_open:
            raise StoreUnavailable(operation, "database is not open")
        return self._db.conn

    async def _open(self) -> None:
        if not self._db.is_open:
            await self._db.initialize()
        purged = await self._purge_expired()
        logger.info("thread_store_opened", backend="sqlite", purged=purged)

    async def _close(self) -> None:
        await self._db.close()

    async def _write(self, conn: aiosqlite.Connection, sql: str, params: tuple) -> aiosqlite.Cursor:
        """Execute and commit one statement; anything short of a commit is rolled back."""
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        return cursor

    async def _create(self, thread: Thread) -> None:
        conn = self._conn("create")
        await self._purge_expired()
        await self._write(
            conn,
            """INSERT INTO threads (store_key, thread_id, payload_json, version, expires_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                self.key_for(thread.thread_id),
                thread.thread_id,
                json.dumps(thread.to_dict()),
                thread.version,
                self._expiry(),
            ),
        )

    async def _load(self, thread_id: str) -> Thread | None:
        conn = self._conn("load")
        cursor = await conn.execute(
            "SELECT payload_json, version FROM threads WHERE store_key = ? AND expires_at > ?",
            (self.key_for(thread_id), self._clock()),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        thread = Thread.from_dict(json.loads(row["payload_json"]))
        thread.version = row["version"]
        return thread

    async def _save(self, thread: Thread, expected_version: int) -> Thread:
        conn = self._conn("save")
        saved = replace(thread, version=expected_version + 1)
        key = self.key_for(thread.thread_id)
        try:
            cursor = await conn.execute(
                """UPDATE threads
                   SET payload_json = ?, version = ?, expires_at = ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE store_key = ? AND version = ? AND expires_at > ?""",
                (
                    json.dumps(saved.to_dict()),
                    saved.version,
                    self._expiry(),
                    key,
                    expected_version,
                    self._clock(),
                ),
            )
            if cursor.rowcount:
                await conn.commit()
                return saved
            await conn.rollback()
        except BaseException:
            await conn.rollback()
            raise

        cursor = await conn.execute(
            "SELECT version FROM threads WHERE store_key = ? AND expires_at > ?",
            (key, self._clock()),
        )
        row = await cursor.fetchone()
        if row is None:
            raise ThreadNotFound(thread.thread_id, self.ttl_seconds)
        raise VersionConflict(thread.thread_id, expected_version, row["version"])

    async def _purge_expired(self) -> int:
        conn = self._conn("purge")
        cursor = await self._write(
            conn, "DELETE FROM threads WHERE expires_at <= ?", (self._clock(),)
        )
        return cursor.rowcount


class InMemoryThreadStore(ThreadStore):
    """Process-local store with the same TTL and versioning semantics.

    Records are kept serialized so callers never share mutable state with the
    store. Used for ``backend: memory`` and as the degraded-mode fallback.
    """

    def __init__(self, memory: MemoryConfig, timeout_seconds: float = 5.0, clock: Clock = time.time):
        super().__init__(memory, timeout_seconds, clock)
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def _open(self) -> None:
        logger.debug("thread_store_opened", backend="memory")

    async def _close(self) -> None:
        async with self._lock:
            self._records.clear()

    def _live(self, key: str) -> dict[str, Any] | None:
        record = self._records.get(key)
        if record is None:
            return None
        if self._clock() >= record["expires_at"]:
            del self._records[key]
            return None
        return record

    async def _create(self, thread: Thread) -> None:
        async with self._lock:
            self._drop_expired()
            self._records[self.key_for(thread.thread_id)] = {
                "payload": thread.to_dict(),
                "version": thread.version,
                "expires_at": self._expiry(),
            }

    async def _load(self, thread_id: str) -> Thread | None:
        async with self._lock:
            record = self._live(self.key_for(thread_id))
            if record is None:
                return None
            thread = Thread.from_dict(copy.deepcopy(record["payload"]))
            thread.version = record["version"]
            return thread

    async def _save(self, thread: Thread, expected_version: int) -> Thread:
        async with self._lock:
            key = self.key_for(thread.thread_id)
            record = self._live(key)
            if record is None:
                raise ThreadNotFound(thread.thread_id, self.ttl_seconds)
            if record["version"] != expected_version:
                raise VersionConflict(thread.thread_id, expected_version, record["version"])
            saved = replace(thread, version=expected_version + 1)
            self._records[key] = {
                "payload": saved.to_dict(),
                "version": saved.version,
                "expires_at": self._expiry(),
            }
            return saved

    async def _purge_expired(self) -> int:
        async with self._lock:
            return self._drop_expired()

    def _drop_expired(self) -> int:
        now = self._clock()
        expired = [key for key, record in self._records.items() if now >= record["expires_at"]]
        for key in expired:
            del self._records[key]
        return len(expired)
