"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from thread_memory.core.types import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Turn:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    model: Optional[str] = None
    tool: Optional[str] = None
    files: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "tool": self.tool,
            "files": list(self.files),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            model=data.get("model"),
            tool=data.get("tool"),
            files=tuple(data.get("files") or ()),
        )


@dataclass
class ThreadAggregate:
    tools_used: list[str] = field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0


@dataclass
class Thread:
    thread_id: str
    tool_name: str
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)
    turns: list[Turn] = field(default_factory=list)
    initial_parameters: dict[str, Any] = field(default_factory=dict)
    aggregate: ThreadAggregate = field(default_factory=ThreadAggregate)
    parent_thread_id: Optional[str] = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict; the inverse of ``from_dict``."""
        return {
            "thread_id": self.thread_id,
            "tool_name": self.tool_name,
            "created_at": self.created_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
            "turns": [turn.to_dict() for turn in self.turns],
            "initial_parameters": dict(self.initial_parameters),
            "aggregate": {
                "tools_used": list(self.aggregate.tools_used),
                "total_input_tokens": self.aggregate.total_input_tokens,
                "total_output_tokens": self.aggregate.total_output_tokens,
            },
            "parent_thread_id": self.parent_thread_id,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Thread:
        aggregate = data.get("aggregate") or {}
        return cls(
            thread_id=data["thread_id"],
            tool_name=data["tool_name"],
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated_at=datetime.fromisoformat(data["last_updated_at"]),
            turns=[Turn.from_dict(t) for t in data.get("turns", [])],
            initial_parameters=dict(data.get("initial_parameters") or {}),
            aggregate=ThreadAggregate(
                tools_used=list(aggregate.get("tools_used", [])),
                total_input_tokens=aggregate.get("total_input_tokens", 0),
                total_output_tokens=aggregate.get("total_output_tokens", 0),
            ),
            parent_thread_id=data.get("parent_thread_id"),
            version=data.get("version", 0),
        )


@dataclass(frozen=True, slots=True)
class ThreadStats:
    thread_id: str
    turn_count: int
    total_input_tokens: int
    total_output_tokens: int
    models_used: list[str]
    tools_used: list[str]
