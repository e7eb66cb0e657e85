"""Conversation memory engine: thread lifecycle and continuation reconstruction."""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Mapping

from thread_memory.config import BudgetPolicy, MemoryConfig
from thread_memory.core.types import Role
from thread_memory.errors import StoreUnavailable, ThreadNotFound, VersionConflict
from thread_memory.log import get_logger
from thread_memory.memory.accumulator import TurnAttributes, append_turn
from thread_memory.memory.model_context import ModelContext, ModelRegistry
from thread_memory.memory.renderer import conversation_files, render_history
from thread_memory.memory.request import (
    PER_CALL_KEYS,
    EnrichedRequest,
    ToolRequest,
    carried_parameters,
)
from thread_memory.memory.tokens import TokenEstimator, estimate_tokens
from thread_memory.storage.models import Thread, ThreadAggregate, ThreadStats
from thread_memory.storage.thread_store import InMemoryThreadStore, ThreadStore

logger = get_logger(__name__)

NEW_INPUT_SEPARATOR = "\n\n=== NEW USER INPUT ===\n"
MAX_CHAIN_DEPTH = 20


class ConversationMemory:
    """Makes independent tool calls behave as one conversation.

    Holds no conversation state of its own: every call round-trips through
    the store. When the store is unreachable, threads are kept in a
    process-local fallback store (if enabled) so the caller still gets a
    usable continuation id that simply does not survive a restart.
    """

    def __init__(
        self,
        store: ThreadStore,
        memory: MemoryConfig | None = None,
        budget: BudgetPolicy | None = None,
        models: ModelRegistry | None = None,
        estimator: TokenEstimator = estimate_tokens,
        fallback: ThreadStore | None = None,
    ):
        self._store = store
        self._memory = memory or MemoryConfig()
        self._budget = budget or BudgetPolicy()
        self._models = models or ModelRegistry()
        self._estimator = estimator
        if fallback is None and self._memory.local_fallback:
            fallback = InMemoryThreadStore(self._memory)
        self._fallback = fallback

    @property
    def store(self) -> ThreadStore:
        return self._store

    @property
    def models(self) -> ModelRegistry:
        return self._models

    async def open(self) -> None:
        if self._fallback is not None:
            await self._fallback.open()
        try:
            await self._store.open()
        except StoreUnavailable as e:
            logger.warning("store_unavailable", operation="open", error=str(e), degraded=True)

    async def close(self) -> None:
        await self._store.close()
        if self._fallback is not None:
            await self._fallback.close()

    # ------------------------------------------------------------------
    # Thread lifecycle
    # ------------------------------------------------------------------

    async def create_thread(
        self,
        tool_name: str,
        initial_parameters: Mapping[str, Any] | None = None,
        parent_thread_id: str | None = None,
    ) -> str:
        """Start a new conversation and return its continuation id."""
        thread = Thread(
            thread_id=str(uuid.uuid4()),
            tool_name=tool_name,
            initial_parameters=carried_parameters(initial_parameters or {}),
            aggregate=ThreadAggregate(tools_used=[tool_name]),
            parent_thread_id=parent_thread_id,
        )

        try:
            await self._store.create(thread)
        except StoreUnavailable as e:
            logger.warning(
                "store_unavailable",
                operation="create",
                thread_id=thread.thread_id,
                error=str(e),
                degraded=self._fallback is not None,
            )
            if self._fallback is not None:
                await self._fallback.create(thread)

        logger.info(
            "thread_created",
            thread_id=thread.thread_id,
            tool=tool_name,
            parent_thread_id=parent_thread_id,
        )
        return thread.thread_id

    async def record_turn(
        self,
        thread_id: str,
        role: Role,
        content: str,
        attrs: TurnAttributes | None = None,
    ) -> bool:
        """Append a turn to an existing thread. Returns False if it was not stored."""
        located = await self._locate(thread_id)
        if located is None:
            logger.warning("thread_not_found", thread_id=thread_id, operation="record_turn")
            return False
        thread, store = located
        saved = await self._persist_turn(thread, store, role, content, attrs or TurnAttributes())
        return saved is not None

    async def record_outbound_turn(
        self,
        thread_id: str,
        content: str,
        attrs: TurnAttributes | None = None,
    ) -> bool:
        """Store the model's answer and its token usage once the tool layer has it."""
        return await self.record_turn(thread_id, Role.OUTBOUND, content, attrs)

    async def get_thread(self, thread_id: str) -> Thread | None:
        located = await self._locate(thread_id)
        return located[0] if located else None

    async def get_stats(self, thread_id: str) -> ThreadStats | None:
        thread = await self.get_thread(thread_id)
        if thread is None:
            return None

        models_used: list[str] = []
        for turn in thread.turns:
            if turn.model and turn.model not in models_used:
                models_used.append(turn.model)

        return ThreadStats(
            thread_id=thread.thread_id,
            turn_count=len(thread.turns),
            total_input_tokens=thread.aggregate.total_input_tokens,
            total_output_tokens=thread.aggregate.total_output_tokens,
            models_used=models_used,
            tools_used=list(thread.aggregate.tools_used),
        )

    async def get_thread_chain(self, thread_id: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[Thread]:
        """Follow parent links from *thread_id*; returns the chain oldest first."""
        thread = await self.get_thread(thread_id)
        if thread is None:
            return []
        return await self._chain_from(thread, max_depth)

    # ------------------------------------------------------------------
    # Continuation
    # ------------------------------------------------------------------

    async def reconstruct(
        self,
        continuation_id: str,
        request: ToolRequest | Mapping[str, Any],
        model_capacity: int | None = None,
    ) -> EnrichedRequest:
        """Fold the thread's history into *request* for the next model call.

        The caller's new prompt is stored as an inbound turn before anything
        else can fail, so it survives even if the model call later does not.
        History is rendered from the thread as it was before this prompt; the
        prompt itself follows the history as the new input.
        """
        if not isinstance(request, ToolRequest):
            request = ToolRequest.from_arguments(request)

        located = await self._locate(continuation_id)
        if located is None:
            logger.warning("thread_not_found", thread_id=continuation_id, operation="reconstruct")
            raise ThreadNotFound(continuation_id, self._memory.ttl_seconds)
        thread, store = located

        history_thread = await self._merged_chain(thread)

        if request.prompt:
            await self._persist_turn(
                thread,
                store,
                Role.INBOUND,
                request.prompt,
                TurnAttributes(tool=request.tool_name, files=request.files),
            )

        model_context = self._resolve_model_context(request, model_capacity)
        allocation = model_context.allocation
        rendered = render_history(history_thread, allocation.history_tokens, self._estimator)
        remaining_tokens = max(0, allocation.content_tokens - rendered.tokens_used)

        if rendered.text:
            prompt = f"{rendered.text}{NEW_INPUT_SEPARATOR}{request.prompt}"
        else:
            prompt = request.prompt

        parameters = dict(request.parameters)
        for key, value in thread.initial_parameters.items():
            if key in parameters or key in PER_CALL_KEYS or key in ToolRequest.model_fields:
                continue
            parameters[key] = value

        files = list(request.files)
        for path in conversation_files(history_thread.turns):
            if path not in files:
                files.append(path)

        logger.info(
            "context_reconstructed",
            thread_id=continuation_id,
            model=model_context.model_name,
            history_tokens=rendered.tokens_used,
            remaining_tokens=remaining_tokens,
            turns_included=rendered.turns_included,
            turns_total=rendered.turns_total,
        )

        return EnrichedRequest(
            prompt=prompt,
            original_prompt=request.prompt,
            continuation_id=continuation_id,
            tool_name=request.tool_name,
            model=request.model,
            files=files,
            parameters=parameters,
            remaining_tokens=remaining_tokens,
            model_context=model_context,
            history_tokens=rendered.tokens_used,
            turns_included=rendered.turns_included,
            turns_total=rendered.turns_total,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_model_context(self, request: ToolRequest, model_capacity: int | None) -> ModelContext:
        capacity = model_capacity if model_capacity is not None else request.model_capacity
        if capacity is not None:
            name = request.model or "unspecified"
        else:
            name, capacity = self._models.resolve(request.model)
        return ModelContext.build(name, capacity, self._budget)

    async def _locate(self, thread_id: str) -> tuple[Thread, ThreadStore] | None:
        # Threads that fell back to local storage stay there for the process
        # lifetime, so the local copy is always the newest one.
        if self._fallback is not None:
            thread = await self._fallback.load(thread_id)
            if thread is not None:
                return thread, self._fallback
        try:
            thread = await self._store.load(thread_id)
        except StoreUnavailable as e:
            logger.warning("store_unavailable", operation="load", thread_id=thread_id, error=str(e))
            return None
        if thread is None:
            return None
        return thread, self._store

    async def _persist_turn(
        self,
        thread: Thread,
        store: ThreadStore,
        role: Role,
        content: str,
        attrs: TurnAttributes,
    ) -> Thread | None:
        """Append and save with compare-and-set, retrying on concurrent writes.

        Returns the saved thread, or None when the turn could not be stored.
        """
        base = thread
        for attempt in range(self._memory.save_retries + 1):
            updated = append_turn(base, role, content, attrs, max_turns=self._memory.max_turns)
            try:
                saved = await store.save(updated, expected_version=base.version)
            except VersionConflict as e:
                logger.debug("thread_version_conflict", thread_id=base.thread_id, attempt=attempt, error=str(e))
                try:
                    fresh = await store.load(base.thread_id)
                except StoreUnavailable as load_error:
                    return await self._persist_locally(updated, store, "load", load_error)
                if fresh is None:
                    break
                base = fresh
                continue
            except ThreadNotFound:
                logger.warning("thread_expired_during_save", thread_id=base.thread_id)
                return None
            except StoreUnavailable as e:
                return await self._persist_locally(updated, store, "save", e)

            logger.debug(
                "turn_appended",
                thread_id=saved.thread_id,
                role=role.value,
                tool=attrs.tool,
                turns=len(saved.turns),
                version=saved.version,
            )
            return saved

        logger.warning("turn_not_persisted", thread_id=thread.thread_id, role=role.value)
        return None

    async def _persist_locally(
        self,
        thread: Thread,
        failed_store: ThreadStore,
        operation: str,
        error: StoreUnavailable,
    ) -> Thread | None:
        degraded = self._fallback is not None and failed_store is not self._fallback
        logger.warning(
            "store_unavailable",
            operation=operation,
            thread_id=thread.thread_id,
            error=str(error),
            degraded=degraded,
        )
        if not degraded:
            return None
        await self._fallback.create(thread)
        return thread

    async def _chain_from(self, thread: Thread, max_depth: int) -> list[Thread]:
        chain = [thread]
        seen = {thread.thread_id}
        parent_id = thread.parent_thread_id
        while parent_id and len(chain) < max_depth:
            if parent_id in seen:
                logger.warning("thread_chain_cycle", thread_id=thread.thread_id, at=parent_id)
                break
            seen.add(parent_id)
            parent = await self.get_thread(parent_id)
            if parent is None:
                logger.debug("thread_chain_parent_missing", thread_id=thread.thread_id, parent=parent_id)
                break
            chain.append(parent)
            parent_id = parent.parent_thread_id
        chain.reverse()
        return chain

    async def _merged_chain(self, thread: Thread) -> Thread:
        if not thread.parent_thread_id:
            return thread
        chain = await self._chain_from(thread, MAX_CHAIN_DEPTH)
        turns = [turn for member in chain for turn in member.turns]
        return replace(thread, turns=turns)
