"""Turn accumulation: append a turn, enforce the turn cap, update aggregates."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Sequence

from thread_memory.core.types import Role
from thread_memory.storage.models import Thread, ThreadAggregate, Turn, utcnow

DEFAULT_MAX_TURNS = 20


@dataclass(frozen=True, slots=True)
class TurnAttributes:
    model: Optional[str] = None
    tool: Optional[str] = None
    files: Sequence[str] = ()
    input_tokens: int = 0
    output_tokens: int = 0


def append_turn(
    thread: Thread,
    role: Role,
    content: str,
    attrs: TurnAttributes | None = None,
    *,
    max_turns: int = DEFAULT_MAX_TURNS,
    now: datetime | None = None,
) -> Thread:
    """Return a copy of *thread* with one more turn.

    The input thread is left untouched. When the turn cap is exceeded the
    oldest turns are dropped, so the newest ``max_turns`` survive in their
    original order. Nothing here touches storage.
    """
    if max_turns < 1:
        raise ValueError("max_turns must be at least 1")

    attrs = attrs or TurnAttributes()
    timestamp = now or utcnow()

    turn = Turn(
        role=role,
        content=content,
        timestamp=timestamp,
        model=attrs.model,
        tool=attrs.tool,
        files=tuple(attrs.files),
    )

    turns = [*thread.turns, turn]
    if len(turns) > max_turns:
        turns = turns[len(turns) - max_turns:]

    tools_used = list(thread.aggregate.tools_used)
    if attrs.tool and attrs.tool not in tools_used:
        tools_used.append(attrs.tool)

    aggregate = ThreadAggregate(
        tools_used=tools_used,
        total_input_tokens=thread.aggregate.total_input_tokens + max(0, attrs.input_tokens),
        total_output_tokens=thread.aggregate.total_output_tokens + max(0, attrs.output_tokens),
    )

    return replace(
        thread,
        turns=turns,
        aggregate=aggregate,
        initial_parameters=dict(thread.initial_parameters),
        last_updated_at=timestamp,
    )
