"""Token estimation helpers.

Two estimators share the ``TokenEstimator`` shape: a cheap character-based
estimate used for history budgeting by default, and an exact tiktoken count
for deployments that want the real number.
"""

from __future__ import annotations

import functools
from typing import Callable

import tiktoken

TokenEstimator = Callable[[str], int]

CHARS_PER_TOKEN = 3
DEFAULT_ENCODING_MODEL = "gpt-3.5-turbo"


def estimate_tokens(text: str) -> int:
    """Conservative character-based estimate (about 3 characters per token)."""
    return len(text) // CHARS_PER_TOKEN


def encoding_model_for(model_name: str) -> str:
    """Map a provider model name onto a model tiktoken knows."""
    name = model_name.lower()
    if any(marker in name for marker in ("gpt-4", "o3", "o4", "claude")):
        return "gpt-4"
    return DEFAULT_ENCODING_MODEL


@functools.lru_cache(maxsize=None)
def _encoder(encoding_model: str) -> tiktoken.Encoding:
    return tiktoken.encoding_for_model(encoding_model)


def count_tokens(text: str, model_name: str = DEFAULT_ENCODING_MODEL) -> int:
    """Exact token count of *text* under the model's tiktoken encoding."""
    return len(_encoder(encoding_model_for(model_name)).encode(text))


def tiktoken_estimator(model_name: str = DEFAULT_ENCODING_MODEL) -> TokenEstimator:
    return functools.partial(count_tokens, model_name=model_name)
