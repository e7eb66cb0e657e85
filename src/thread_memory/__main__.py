"""CLI entry point for thread-memory."""

from __future__ import annotations

import argparse
import asyncio
import sys

from thread_memory.app import ThreadMemoryApp
from thread_memory.config import AppConfig, load_config
from thread_memory.log import setup_logging
from thread_memory.memory.model_context import ModelContext, UnknownModel
from thread_memory.memory.renderer import render_history


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="thread-memory",
        description="Conversation memory and token-budgeted context reconstruction",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show statistics for a thread")
    _add_config_args(stats_parser)
    stats_parser.add_argument("thread_id", help="Continuation id of the thread")

    # history command
    history_parser = subparsers.add_parser("history", help="Render a thread's history under a model budget")
    _add_config_args(history_parser)
    history_parser.add_argument("thread_id", help="Continuation id of the thread")
    history_parser.add_argument("-m", "--model", default=None, help="Model whose context window sets the budget")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(2)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level, json_output=config.log_json)

    if args.command == "stats":
        sys.exit(asyncio.run(_stats(config, args.thread_id)))
    elif args.command == "history":
        sys.exit(asyncio.run(_history(config, args.thread_id, args.model)))


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.backend.value} ({config.storage.db_path})")
    print(f"  Max turns: {config.memory.max_turns}")
    print(f"  TTL: {config.memory.ttl_seconds}s")
    print(
        f"  Budget: overhead={config.budget.reserved_overhead} "
        f"response={config.budget.response_fraction:.0%} "
        f"history={config.budget.history_fraction:.0%}"
    )
    print(f"  Models configured: {len(config.models)}")
    for name, capacity in config.models.items():
        marker = " (default)" if name == config.default_model else ""
        print(f"    - {name}: {capacity:,} tokens{marker}")


async def _stats(config: AppConfig, thread_id: str) -> int:
    async with ThreadMemoryApp(config) as app:
        stats = await app.memory.get_stats(thread_id)
    if stats is None:
        print(f"Thread not found or expired: {thread_id}", file=sys.stderr)
        return 1
    print(f"Thread: {stats.thread_id}")
    print(f"  Turns         : {stats.turn_count}")
    print(f"  Input tokens  : {stats.total_input_tokens:,}")
    print(f"  Output tokens : {stats.total_output_tokens:,}")
    print(f"  Models        : {', '.join(stats.models_used) or '(none)'}")
    print(f"  Tools         : {', '.join(stats.tools_used) or '(none)'}")
    return 0


async def _history(config: AppConfig, thread_id: str, model: str | None) -> int:
    async with ThreadMemoryApp(config) as app:
        thread = await app.memory.get_thread(thread_id)
        if thread is None:
            print(f"Thread not found or expired: {thread_id}", file=sys.stderr)
            return 1
        try:
            name, capacity = app.models.resolve(model)
        except UnknownModel as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        context = ModelContext.build(name, capacity, config.budget)
        rendered = render_history(thread, context.allocation.history_tokens, app.estimator)
    print(rendered.text or "(no turns)")
    print()
    print(
        f"[{rendered.turns_included}/{rendered.turns_total} turns, "
        f"{rendered.tokens_used:,} of {context.allocation.history_tokens:,} history tokens, "
        f"model {context.model_name}]",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    main()
