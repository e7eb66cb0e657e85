"""Application orchestrator - wires store, model registry and engine and manages lifecycle."""

from __future__ import annotations

from thread_memory.config import AppConfig
from thread_memory.core.types import StoreBackend, TokenCounter
from thread_memory.log import get_logger
from thread_memory.memory.engine import ConversationMemory
from thread_memory.memory.model_context import ModelRegistry
from thread_memory.memory.tokens import TokenEstimator, estimate_tokens, tiktoken_estimator
from thread_memory.storage.database import Database
from thread_memory.storage.thread_store import InMemoryThreadStore, SqliteThreadStore, ThreadStore

logger = get_logger(__name__)


class ThreadMemoryApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, estimator: TokenEstimator | None = None):
        self.config = config
        self.estimator = estimator or self._create_estimator(config)
        self.store = self._create_store(config)
        self.models = ModelRegistry(config.models, default_model=config.default_model)
        self.memory = ConversationMemory(
            store=self.store,
            memory=config.memory,
            budget=config.budget,
            models=self.models,
            estimator=self.estimator,
        )

    async def start(self) -> None:
        await self.memory.open()
        logger.info(
            "thread_memory_started",
            backend=self.config.storage.backend.value,
            models=len(self.models.names()),
        )

    async def stop(self) -> None:
        await self.memory.close()
        logger.info("thread_memory_stopped")

    async def __aenter__(self) -> ThreadMemoryApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @staticmethod
    def _create_estimator(config: AppConfig) -> TokenEstimator:
        if config.budget.token_counter == TokenCounter.TIKTOKEN:
            return tiktoken_estimator(config.default_model or "gpt-4")
        return estimate_tokens

    @staticmethod
    def _create_store(config: AppConfig) -> ThreadStore:
        storage = config.storage
        if storage.backend == StoreBackend.MEMORY:
            return InMemoryThreadStore(config.memory, timeout_seconds=storage.timeout_seconds)
        return SqliteThreadStore(
            Database(storage.db_path),
            config.memory,
            timeout_seconds=storage.timeout_seconds,
        )
