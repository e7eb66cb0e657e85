"""Render a token-bounded, chronological transcript of a thread.

Selection walks turns newest to oldest so recent context wins when the budget
is tight; presentation is always oldest to newest. The budget covers the
turns themselves; the fixed header and footer are paid for by the allocator's
reserved overhead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from thread_memory.core.types import Role
from thread_memory.log import get_logger
from thread_memory.memory.tokens import TokenEstimator, estimate_tokens
from thread_memory.storage.models import Thread, Turn

logger = get_logger(__name__)

HISTORY_HEADER = "=== CONVERSATION HISTORY (CONTINUATION) ==="
HISTORY_FOOTER = "=== END CONVERSATION HISTORY ==="

_CONTINUATION_GUIDANCE = (
    "IMPORTANT: You are continuing an existing conversation thread. Build upon the "
    "previous exchanges shown above, reference earlier points, and maintain consistency "
    "with what has been discussed.\n"
    "\n"
    "DO NOT repeat or summarize previous analysis, findings, or instructions that are "
    "already covered in the conversation history. Provide only new insights, additional "
    "analysis, or direct answers to the follow-up. Assume the reader has seen the prior "
    "conversation."
)

_ROLE_LABELS = {
    Role.INBOUND: "User",
    Role.OUTBOUND: "Assistant",
}


@dataclass(frozen=True, slots=True)
class RenderedHistory:
    text: str
    tokens_used: int
    turns_included: int
    turns_total: int

    @property
    def truncated(self) -> bool:
        return self.turns_included < self.turns_total


def format_turn(turn: Turn, number: int) -> str:
    """Format one turn with its role, tool/model attribution and file list."""
    header = f"--- Turn {number} ({_ROLE_LABELS[turn.role]}"
    if turn.tool:
        header += f" using {turn.tool}"
    if turn.model:
        header += f" via {turn.model}"
    header += ") ---"

    parts = [header]
    if turn.files:
        parts.append(f"Files used in this turn: {', '.join(turn.files)}")
        parts.append("")
    parts.append(turn.content)
    return "\n".join(parts)


def truncation_note(included: int, total: int) -> str:
    return (
        f"[Note: Showing {included} of {total} turns; "
        "older turns were omitted to fit the token budget]"
    )


def render_history(
    thread: Thread,
    history_token_budget: int,
    estimator: TokenEstimator = estimate_tokens,
) -> RenderedHistory:
    turns = thread.turns
    total = len(turns)
    if total == 0:
        return RenderedHistory(text="", tokens_used=0, turns_included=0, turns_total=0)

    budget = max(0, history_token_budget)

    # Newest first, stop at the first turn that does not fit.
    selected: list[str] = []
    used = 0
    for index in range(total - 1, -1, -1):
        formatted = format_turn(turns[index], index + 1)
        cost = estimator(formatted)
        if used + cost > budget:
            logger.debug(
                "history_budget_reached",
                thread_id=thread.thread_id,
                stopped_at_turn=index + 1,
                tokens_used=used,
                turn_tokens=cost,
                budget=budget,
            )
            break
        selected.append(formatted)
        used += cost
    selected.reverse()

    included = len(selected)
    lines = [
        HISTORY_HEADER,
        f"Thread: {thread.thread_id}",
        f"Tool: {thread.tool_name}",
        f"Turns in thread: {total}",
        "You are continuing this conversation thread from where it left off.",
        "",
        "Previous conversation turns:",
    ]
    for formatted in selected:
        lines.append("")
        lines.append(formatted)

    if included < total:
        lines.append("")
        lines.append(truncation_note(included, total))
        logger.info(
            "history_truncated",
            thread_id=thread.thread_id,
            turns_included=included,
            turns_total=total,
        )

    lines.extend([
        "",
        HISTORY_FOOTER,
        "",
        _CONTINUATION_GUIDANCE,
        "",
        f"This is turn {total + 1} of the conversation - use the conversation history "
        "above to provide a coherent continuation.",
    ])

    return RenderedHistory(
        text="\n".join(lines),
        tokens_used=used,
        turns_included=included,
        turns_total=total,
    )


def conversation_files(turns: Iterable[Turn]) -> list[str]:
    """Unique file references across *turns*, newest turn first.

    When a file appears in several turns only its newest reference counts.
    """
    seen: set[str] = set()
    files: list[str] = []
    for turn in reversed(list(turns)):
        for path in turn.files:
            if path not in seen:
                seen.add(path)
                files.append(path)
    return files
