from __future__ import annotations

import pytest

from thread_memory.config import BudgetPolicy, MemoryConfig
from thread_memory.core.types import Role
from thread_memory.memory.accumulator import TurnAttributes, append_turn
from thread_memory.memory.engine import ConversationMemory
from thread_memory.memory.model_context import ModelRegistry
from thread_memory.storage.database import Database
from thread_memory.storage.models import Thread
from thread_memory.storage.thread_store import InMemoryThreadStore, SqliteThreadStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DownStore(InMemoryThreadStore):
    """A store whose backend refuses every connection."""

    _driver_errors = (OSError,)

    async def _create(self, thread):
        raise OSError("connection refused")

    async def _load(self, thread_id):
        raise OSError("connection refused")

    async def _save(self, thread, expected_version):
        raise OSError("connection refused")


def make_thread(count: int, *, max_turns: int = 100, tool: str = "chat") -> Thread:
    thread = Thread(thread_id="t-1", tool_name=tool)
    for i in range(count):
        role = Role.INBOUND if i % 2 == 0 else Role.OUTBOUND
        thread = append_turn(thread, role, f"message {i}", TurnAttributes(tool=tool), max_turns=max_turns)
    return thread


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_config() -> MemoryConfig:
    return MemoryConfig(ttl_seconds=3600)


@pytest.fixture
def budget() -> BudgetPolicy:
    return BudgetPolicy(reserved_overhead=100)


@pytest.fixture
def memory_store(memory_config, clock) -> InMemoryThreadStore:
    return InMemoryThreadStore(memory_config, clock=clock)


@pytest.fixture
async def sqlite_store(tmp_path, memory_config, clock):
    store = SqliteThreadStore(Database(str(tmp_path / "threads.db")), memory_config, clock=clock)
    await store.open()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, memory_config, clock, tmp_path):
    if request.param == "memory":
        store = InMemoryThreadStore(memory_config, clock=clock)
    else:
        store = SqliteThreadStore(Database(str(tmp_path / "threads.db")), memory_config, clock=clock)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def models() -> ModelRegistry:
    return ModelRegistry({"small": 1000, "large": 200_000}, default_model="large")


@pytest.fixture
async def engine(store, memory_config, budget, models):
    memory = ConversationMemory(store, memory=memory_config, budget=budget, models=models)
    await memory.open()
    yield memory
    await memory.close()
