from __future__ import annotations

import pytest

from thread_memory.__main__ import main
from thread_memory.app import ThreadMemoryApp
from thread_memory.config import AppConfig, StorageConfig
from thread_memory.core.types import StoreBackend, TokenCounter
from thread_memory.memory.tokens import estimate_tokens
from thread_memory.storage.thread_store import InMemoryThreadStore, SqliteThreadStore


def _config(tmp_path, backend=StoreBackend.MEMORY) -> AppConfig:
    return AppConfig(
        data_dir=str(tmp_path),
        storage=StorageConfig(backend=backend, db_path=str(tmp_path / "threads.db")),
        models={"small": 1000, "large": 200000},
        default_model="large",
    )


@pytest.mark.parametrize(
    ("backend", "store_type"),
    [(StoreBackend.MEMORY, InMemoryThreadStore), (StoreBackend.SQLITE, SqliteThreadStore)],
)
async def test_app_builds_configured_store(tmp_path, backend, store_type):
    async with ThreadMemoryApp(_config(tmp_path, backend)) as app:
        assert isinstance(app.store, store_type)
        thread_id = await app.memory.create_thread("chat")
        enriched = await app.memory.reconstruct(thread_id, {"prompt": "hello", "model": "small"})

    assert enriched.model_context.model_name == "small"


async def test_sqlite_threads_survive_restart(tmp_path):
    config = _config(tmp_path, StoreBackend.SQLITE)

    async with ThreadMemoryApp(config) as app:
        thread_id = await app.memory.create_thread("chat")
        await app.memory.reconstruct(thread_id, {"prompt": "remember me"})

    async with ThreadMemoryApp(config) as app:
        thread = await app.memory.get_thread(thread_id)

    assert [t.content for t in thread.turns] == ["remember me"]


def _write_config(tmp_path) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage:\n"
        "  backend: sqlite\n"
        f"  db_path: {tmp_path / 'threads.db'}\n"
        "default_model: large\n"
        "models:\n"
        "  large: 200000\n"
    )
    return str(config_file)


def test_config_check(tmp_path, capsys):
    main(["config-check", "-c", _write_config(tmp_path), "-e", str(tmp_path / ".env")])

    out = capsys.readouterr().out
    assert "Configuration valid" in out
    assert "large: 200,000 tokens (default)" in out


def test_config_check_missing_file(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main(["config-check", "-c", str(tmp_path / "missing.yaml"), "-e", str(tmp_path / ".env")])

    assert exc_info.value.code == 1


def test_stats_for_unknown_thread(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr("thread_memory.__main__.setup_logging", lambda *args, **kwargs: None)

    with pytest.raises(SystemExit) as exc_info:
        main(["stats", "nope", "-c", _write_config(tmp_path), "-e", str(tmp_path / ".env")])

    assert exc_info.value.code == 1
    assert "not found" in capsys.readouterr().err


def test_tiktoken_counter_is_selected_from_config(tmp_path):
    config = _config(tmp_path)
    config.budget.token_counter = TokenCounter.TIKTOKEN

    app = ThreadMemoryApp(config)

    assert app.estimator("hello world") == 2


def test_chars_counter_is_the_default(tmp_path):
    app = ThreadMemoryApp(_config(tmp_path))

    assert app.estimator is estimate_tokens
