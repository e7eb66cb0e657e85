"""Token budget allocation for a model's context window."""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction

from thread_memory.config import BudgetPolicy


@dataclass(frozen=True, slots=True)
class TokenAllocation:
    total_tokens: int
    content_tokens: int
    history_tokens: int
    response_tokens: int
    overhead_tokens: int

    @property
    def prompt_tokens(self) -> int:
        """Share of the content budget left for this turn's fresh input."""
        return self.content_tokens - self.history_tokens

    @property
    def exhausted(self) -> bool:
        return self.history_tokens == 0


def _share(amount: int, fraction: float) -> int:
    # Floor on the exact decimal ratio; 0.6 is not exact as a binary float.
    return math.floor(amount * Fraction(str(fraction)))


def allocate(model_capacity: int, policy: BudgetPolicy | None = None) -> TokenAllocation:
    """Split *model_capacity* into response, overhead, history and prompt shares.

    Capacities too small to cover the fixed overhead and the response reserve
    floor every derived budget to zero instead of failing.
    """
    if model_capacity < 0:
        raise ValueError("model_capacity must be >= 0")
    policy = policy or BudgetPolicy()

    response_tokens = _share(model_capacity, policy.response_fraction)
    content_tokens = max(0, model_capacity - policy.reserved_overhead - response_tokens)
    history_tokens = _share(content_tokens, policy.history_fraction)

    return TokenAllocation(
        total_tokens=model_capacity,
        content_tokens=content_tokens,
        history_tokens=history_tokens,
        response_tokens=response_tokens,
        overhead_tokens=policy.reserved_overhead,
    )
