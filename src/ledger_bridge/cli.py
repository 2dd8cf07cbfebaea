"""
Command-line interface for the ledger bridge.

Provides CLI commands for operating the bridge:
- init-db: Initialize the local order store schema
- run: Start the API server
- reconcile: Print the reconciliation report as JSON
- sync-order: Resolve one order on the ledger and mirror it locally
- sync-all: Mirror every ledger order locally in one locked run

Usage:
    ledger-bridge init-db
    ledger-bridge run [--host HOST] [--port PORT]
    ledger-bridge reconcile [--refresh] [--detailed]
    ledger-bridge sync-order ORDER_ID [--force] [--max-wait-ms MS] [--digest DIGEST]
    ledger-bridge sync-all

Configuration comes from config/bridge.ini and BRIDGE_* environment
variables (see ledger_bridge.config).
"""

import argparse
import asyncio
import json
import logging
import sys

logger = logging.getLogger(__name__)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_init_db(args: argparse.Namespace) -> int:
    """
    Initialize the database schema.

    Returns:
        0 on success, 1 on error
    """
    from ledger_bridge.db.errors import DatabaseError
    from ledger_bridge.db.schema import init_database

    try:
        init_database()
        print("Database initialized successfully.")
        return 0
    except (DatabaseError, OSError) as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Start the API server with uvicorn."""
    import uvicorn

    from ledger_bridge.config import config

    host = args.host or config.server.host
    port = args.port or config.server.port
    print(f"Starting ledger bridge on {host}:{port}")
    uvicorn.run("ledger_bridge.api.server:app", host=host, port=port)
    return 0


async def _reconcile(refresh: bool, detailed: bool) -> dict:
    from ledger_bridge.config import config
    from ledger_bridge.services import build_services

    services = build_services(config)
    try:
        return await services.reconciler.reconcile(force_refresh=refresh, detailed=detailed)
    finally:
        await services.close()


def cmd_reconcile(args: argparse.Namespace) -> int:
    """
    Print the reconciliation report.

    Returns:
        0 when healthy, 2 when discrepancies were found, 1 on error
    """
    from ledger_bridge.errors import BridgeError

    try:
        report = asyncio.run(_reconcile(args.refresh, args.detailed))
    except BridgeError as e:
        print(f"Error: {e.message} ({e.code})", file=sys.stderr)
        return 1
    _print_json(report)
    return 0 if report["summary"]["health"]["status"] == "healthy" else 2


async def _sync_order(order_id: str, force: bool, max_wait_ms: int | None, digest: str | None) -> dict:
    from ledger_bridge.audit import record_audit_event
    from ledger_bridge.config import config
    from ledger_bridge.services import build_services
    from ledger_bridge.sync.mirror import mirror_chain_order

    services = build_services(config)
    try:
        resolved = await services.resolver.find(
            order_id, force=force, max_wait_ms=max_wait_ms, digest=digest
        )
    finally:
        await services.close()
    stored = mirror_chain_order(resolved.record)
    record_audit_event(
        "orders",
        "order.chain_synced",
        {
            "orderId": order_id,
            "chainStatus": resolved.record.status,
            "source": resolved.source,
            "retries": resolved.retries,
            "digest": resolved.record.digest,
        },
        meta={"actor": "cli"},
    )
    return {"order": stored, "syncedFrom": resolved.source, "chainStatus": resolved.record.status}


def cmd_sync_order(args: argparse.Namespace) -> int:
    """
    Sync one order from the ledger into the local store.

    Returns:
        0 on success, 1 when the order cannot be resolved or stored
    """
    from ledger_bridge.db.errors import DatabaseError
    from ledger_bridge.errors import BridgeError

    try:
        result = asyncio.run(_sync_order(args.order_id, args.force, args.max_wait_ms, args.digest))
    except BridgeError as e:
        print(f"Error: {e.message} ({e.code})", file=sys.stderr)
        if e.extra:
            _print_json(e.extra)
        return 1
    except DatabaseError as e:
        print(f"Error writing local order: {e}", file=sys.stderr)
        return 1
    _print_json(result)
    return 0


async def _sync_all() -> dict:
    from ledger_bridge.config import config
    from ledger_bridge.services import build_services

    services = build_services(config)
    try:
        return await services.bulk_sync.run(actor="cli")
    finally:
        await services.close()


def cmd_sync_all(args: argparse.Namespace) -> int:
    """
    Mirror the whole ledger snapshot into the local store.

    Returns:
        0 on success, 1 when another run holds the lock or the sync fails
    """
    from ledger_bridge.db.errors import DatabaseError
    from ledger_bridge.errors import BridgeError

    try:
        result = asyncio.run(_sync_all())
    except BridgeError as e:
        print(f"Error: {e.message} ({e.code})", file=sys.stderr)
        return 1
    except DatabaseError as e:
        print(f"Error writing local orders: {e}", file=sys.stderr)
        return 1
    _print_json(result)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    from ledger_bridge.config import config, configure_logging

    parser = argparse.ArgumentParser(
        prog="ledger-bridge",
        description="Ledger Bridge - keeps local orders consistent with the ledger",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db command
    init_parser = subparsers.add_parser(
        "init-db",
        help="Initialize the database schema",
        description="Create the local order store tables. Safe to run repeatedly.",
    )
    init_parser.set_defaults(func=cmd_init_db)

    # run command
    run_parser = subparsers.add_parser("run", help="Run the API server")
    run_parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="API server port (default: 8000, or BRIDGE_PORT env var)",
    )
    run_parser.add_argument(
        "--host",
        type=str,
        help="Host to bind to (default: 0.0.0.0, or BRIDGE_HOST env var)",
    )
    run_parser.set_defaults(func=cmd_run)

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Print the ledger/local reconciliation report",
        description="Exit status is 2 when discrepancies were found.",
    )
    reconcile_parser.add_argument(
        "--refresh", action="store_true", help="Force a fresh ledger snapshot"
    )
    reconcile_parser.add_argument(
        "--detailed", action="store_true", help="Include up to 50 items per category"
    )
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # sync-order command
    sync_parser = subparsers.add_parser(
        "sync-order", help="Resolve one order on the ledger and mirror it locally"
    )
    sync_parser.add_argument("order_id", help="Ledger order id")
    sync_parser.add_argument(
        "--force", action="store_true", help="Query the node directly if the cache misses"
    )
    sync_parser.add_argument(
        "--max-wait-ms", type=int, default=None, help="Cap on total backoff wait"
    )
    sync_parser.add_argument("--digest", help="Transaction digest to rebuild the order from")
    sync_parser.set_defaults(func=cmd_sync_order)

    # sync-all command
    sync_all_parser = subparsers.add_parser(
        "sync-all",
        help="Mirror every ledger order locally",
        description="Refuses to run while another sync holds the lock.",
    )
    sync_all_parser.set_defaults(func=cmd_sync_all)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(config)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
