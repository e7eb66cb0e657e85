"""Exception taxonomy for the conversation memory engine."""

from __future__ import annotations


class ThreadMemoryError(Exception):
    """Base class for all thread-memory errors."""


class ThreadNotFound(ThreadMemoryError):
    """A continuation id did not resolve to a live thread.

    Raised to the caller; the message explains how to recover.
    """

    def __init__(self, thread_id: str, ttl_seconds: int | None = None):
        self.thread_id = thread_id
        self.ttl_seconds = ttl_seconds
        window = ""
        if ttl_seconds:
            hours = ttl_seconds / 3600
            window = f" This happens when the conversation is older than {hours:g} hours."
        super().__init__(
            f"Conversation thread '{thread_id}' was not found or has expired.{window} "
            "Please restart the conversation by providing your full question/prompt "
            "without the continuation_id parameter. This will create a new "
            "conversation thread that can continue with follow-up exchanges."
        )


class StoreUnavailable(ThreadMemoryError):
    """The backing store could not be reached or timed out."""

    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Thread store unavailable during {operation}{detail}")


class VersionConflict(ThreadMemoryError):
    """A save lost an optimistic-concurrency race with another writer."""

    def __init__(self, thread_id: str, expected: int, actual: int | None):
        self.thread_id = thread_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Thread '{thread_id}' changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
