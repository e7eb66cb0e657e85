"""Structured request types exchanged with the tool layer."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from thread_memory.memory.model_context import ModelContext

# Per-call knobs that never carry over into a later continuation.
PER_CALL_KEYS = frozenset({
    "prompt",
    "continuation_id",
    "files",
    "model",
    "temperature",
    "thinking_mode",
})

_FIELD_KEYS = frozenset({"prompt", "continuation_id", "tool_name", "model", "model_capacity", "files"})


def carried_parameters(parameters: Mapping[str, Any]) -> dict[str, Any]:
    """Drop per-call keys and request fields so only durable analysis options are remembered."""
    return {
        k: v for k, v in parameters.items() if k not in PER_CALL_KEYS and k not in _FIELD_KEYS
    }


class ToolRequest(BaseModel):
    """One inbound tool call."""

    model_config = ConfigDict(protected_namespaces=())

    prompt: str = ""
    continuation_id: Optional[str] = None
    tool_name: str = "unknown"
    model: Optional[str] = None
    model_capacity: Optional[int] = Field(default=None, ge=0)
    files: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any], tool_name: str | None = None) -> ToolRequest:
        """Lift an untyped argument map; unrecognised keys become ``parameters``."""
        known = {k: v for k, v in arguments.items() if k in _FIELD_KEYS and v is not None}
        extra = {k: v for k, v in arguments.items() if k not in _FIELD_KEYS}
        if tool_name:
            known["tool_name"] = tool_name
        return cls(**known, parameters=extra)


class EnrichedRequest(BaseModel):
    """A request with conversation history folded in, ready for the model call."""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    prompt: str
    original_prompt: str
    continuation_id: str
    tool_name: str
    model: Optional[str] = None
    files: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    remaining_tokens: int = 0
    model_context: ModelContext
    history_tokens: int = 0
    turns_included: int = 0
    turns_total: int = 0

    def to_arguments(self) -> dict[str, Any]:
        """Flatten back into the argument map the tool layer consumes."""
        arguments: dict[str, Any] = dict(self.parameters)
        arguments.update({
            "prompt": self.prompt,
            "continuation_id": self.continuation_id,
            "files": list(self.files),
            "_remaining_tokens": self.remaining_tokens,
            "_model_context": self.model_context,
        })
        if self.model:
            arguments["model"] = self.model
        return arguments
