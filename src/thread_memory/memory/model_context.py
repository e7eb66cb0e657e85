"""Model capacity lookup and per-call token allocation."""

from __future__ import annotations

from dataclasses import dataclass

from thread_memory.config import BudgetPolicy
from thread_memory.log import get_logger
from thread_memory.memory.budget import TokenAllocation, allocate

logger = get_logger(__name__)


class UnknownModel(LookupError):
    pass


class ModelRegistry:
    """Context-window sizes per model, as reported by the provider layer."""

    def __init__(self, capacities: dict[str, int] | None = None, default_model: str = ""):
        self._capacities: dict[str, int] = dict(capacities or {})
        self._default_model = default_model

    def register(self, model_name: str, context_window: int) -> None:
        if context_window < 0:
            raise ValueError("context_window must be >= 0")
        self._capacities[model_name] = context_window

    def get(self, model_name: str) -> int | None:
        return self._capacities.get(model_name)

    def names(self) -> list[str]:
        return list(self._capacities.keys())

    def resolve(self, model_name: str | None) -> tuple[str, int]:
        """Return (model name, capacity), falling back to the default model."""
        if model_name and model_name.lower() != "auto":
            capacity = self._capacities.get(model_name)
            if capacity is not None:
                return model_name, capacity
            logger.warning("model_capacity_unknown", model=model_name, fallback=self._default_model)
        capacity = self._capacities.get(self._default_model)
        if capacity is None:
            raise UnknownModel(
                f"No context window known for model '{model_name or self._default_model}'"
            )
        return self._default_model, capacity


@dataclass(frozen=True, slots=True)
class ModelContext:
    model_name: str
    capacity: int
    allocation: TokenAllocation

    @classmethod
    def build(cls, model_name: str, capacity: int, policy: BudgetPolicy) -> ModelContext:
        allocation = allocate(capacity, policy)
        logger.debug(
            "token_allocation",
            model=model_name,
            total=allocation.total_tokens,
            content=allocation.content_tokens,
            history=allocation.history_tokens,
            response=allocation.response_tokens,
        )
        return cls(model_name=model_name, capacity=capacity, allocation=allocation)
