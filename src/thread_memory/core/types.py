"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    """Direction of a turn, spelled in the caller-facing vocabulary."""

    INBOUND = "user"
    OUTBOUND = "assistant"


class StoreBackend(StrEnum):
    SQLITE = "sqlite"
    MEMORY = "memory"


class TokenCounter(StrEnum):
    CHARS = "chars"
    TIKTOKEN = "tiktoken"
