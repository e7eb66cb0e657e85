"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from thread_memory.core.types import StoreBackend, TokenCounter


class MemoryConfig(BaseModel):
    max_turns: int = Field(default=20, ge=1)
    ttl_seconds: int = Field(default=86400, ge=1)  # sliding, refreshed on every write
    key_prefix: str = "thread_memory:conversation:"
    local_fallback: bool = True  # keep threads in-process when the store is down
    save_retries: int = Field(default=3, ge=0)


class BudgetPolicy(BaseModel):
    reserved_overhead: int = Field(default=1000, ge=0)  # system prompt + tool framing
    response_fraction: float = Field(default=0.25, ge=0.0, le=1.0)
    history_fraction: float = Field(default=0.6, ge=0.0, le=1.0)
    token_counter: TokenCounter = TokenCounter.CHARS


class StorageConfig(BaseModel):
    backend: StoreBackend = StoreBackend.SQLITE
    db_path: str = "./data/thread_memory.db"
    timeout_seconds: float = Field(default=5.0, gt=0)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    budget: BudgetPolicy = Field(default_factory=BudgetPolicy)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    models: dict[str, int] = Field(default_factory=dict)  # model name -> context window
    default_model: str = ""

    @field_validator("models")
    @classmethod
    def _positive_capacities(cls, value: dict[str, int]) -> dict[str, int]:
        for name, capacity in value.items():
            if capacity < 0:
                raise ValueError(f"context window for '{name}' must be >= 0")
        return value


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load the memory, budget, storage and model-capacity settings.

    `.env` is read first so `${VAR}` references (typically `default_model`)
    resolve from it; `${data_dir}` resolves to the file's own `data_dir`, which
    is how `storage.db_path` lands next to the rest of the data.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may itself reference env vars; resolve it before the rest
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Capacities and budget fractions are plain numbers once substituted
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
