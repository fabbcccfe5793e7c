"""Command-line trigger for cron-style invocation.

Usage:
    python -m outboxd run-once --registry outboxd.apps.rental:build_registry
    python -m outboxd status --store-url sqlite+aiosqlite:///outbox.db
    python -m outboxd init-db --store-url sqlite+aiosqlite:///outbox.db
    python -m outboxd serve --registry outboxd.apps.rental:build_registry --port 8080
"""

import argparse
import asyncio
import importlib
import json
import sys
from collections.abc import Sequence

from outboxd.core.config import DispatcherConfig, get_config
from outboxd.core.dispatcher import Dispatcher
from outboxd.core.errors import StoreUnavailableError
from outboxd.core.registry import HandlerRegistry
from outboxd.stores import create_store
from outboxd.stores.sql import SQLAlchemyEventStore


def load_registry(ref: str) -> HandlerRegistry:
    """Import ``module:attribute`` and return the registry it names.

    The attribute may be a HandlerRegistry or a zero-argument callable
    returning one.
    """
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Registry must look like 'package.module:attribute', got {ref!r}")
    target = getattr(importlib.import_module(module_name), attr)
    registry = target() if callable(target) and not isinstance(target, HandlerRegistry) else target
    if not isinstance(registry, HandlerRegistry):
        raise TypeError(f"{ref} did not produce a HandlerRegistry, got {type(registry).__name__}")
    return registry


def _build_config(args: argparse.Namespace) -> DispatcherConfig:
    overrides = {}
    if getattr(args, "store_url", None):
        overrides["store_url"] = args.store_url
    if getattr(args, "batch_limit", None) is not None:
        overrides["batch_limit"] = args.batch_limit
    if not overrides:
        return get_config()
    return DispatcherConfig(**overrides)


async def _run_once(args: argparse.Namespace) -> int:
    config = _build_config(args)
    store = create_store(config.store_url)
    dispatcher = Dispatcher(store, load_registry(args.registry), config=config)
    try:
        summary = await dispatcher.run_once()
    except StoreUnavailableError as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1
    finally:
        await store.close()
    print(json.dumps({"success": True, **summary.to_dict()}))
    return 0


async def _status(args: argparse.Namespace) -> int:
    config = _build_config(args)
    store = create_store(config.store_url)
    try:
        counts = await store.count_by_status()
    finally:
        await store.close()
    print(json.dumps(counts))
    return 0


async def _init_db(args: argparse.Namespace) -> int:
    config = _build_config(args)
    store = create_store(config.store_url)
    if not isinstance(store, SQLAlchemyEventStore):
        print(f"init-db only applies to SQL stores, got {config.store_url}", file=sys.stderr)
        return 2
    try:
        await store.create_schema()
    finally:
        await store.close()
    print("outbox table ready")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from outboxd.api import create_app

    config = _build_config(args)
    store = create_store(config.store_url)
    dispatcher = Dispatcher(store, load_registry(args.registry), config=config)
    uvicorn.run(create_app(dispatcher), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="outboxd", description="Outbox event dispatcher")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_store_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--store-url", help="Override OUTBOX_STORE_URL")

    run_once = sub.add_parser("run-once", help="Run one dispatch pass and print the summary")
    add_store_args(run_once)
    run_once.add_argument(
        "--registry", required=True, help="module:attribute of the handler registry"
    )
    run_once.add_argument("--batch-limit", type=int, help="Override OUTBOX_BATCH_LIMIT")

    status = sub.add_parser("status", help="Print event counts by status")
    add_store_args(status)

    init_db = sub.add_parser("init-db", help="Create the outbox table (SQL stores)")
    add_store_args(init_db)

    serve = sub.add_parser("serve", help="Serve the HTTP trigger")
    add_store_args(serve)
    serve.add_argument(
        "--registry", required=True, help="module:attribute of the handler registry"
    )
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "run-once":
        return asyncio.run(_run_once(args))
    if args.command == "status":
        return asyncio.run(_status(args))
    if args.command == "init-db":
        return asyncio.run(_init_db(args))
    return _serve(args)
