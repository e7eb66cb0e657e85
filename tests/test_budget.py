from __future__ import annotations

import pytest

from thread_memory.config import BudgetPolicy
from thread_memory.memory.budget import allocate


def test_reference_split():
    allocation = allocate(1000, BudgetPolicy(reserved_overhead=100))

    assert allocation.total_tokens == 1000
    assert allocation.response_tokens == 250
    assert allocation.content_tokens == 650
    assert allocation.history_tokens == 390
    assert allocation.prompt_tokens == 260


def test_default_policy():
    allocation = allocate(200_000)

    assert allocation.response_tokens == 50_000
    assert allocation.content_tokens == 149_000
    assert allocation.history_tokens == 89_400


@pytest.mark.parametrize("capacity", [0, 50, 133])
def test_small_capacity_floors_to_zero(capacity):
    allocation = allocate(capacity, BudgetPolicy(reserved_overhead=100))

    assert allocation.content_tokens == 0
    assert allocation.history_tokens == 0
    assert allocation.exhausted


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        allocate(-1)


def test_policy_fractions_validated():
    with pytest.raises(ValueError):
        BudgetPolicy(history_fraction=1.5)
