"""Command line entry points.

Usage:
    python -m shipnote serve --port 3000     # webhook server + worker
    python -m shipnote worker                # worker only, until SIGINT/SIGTERM
    python -m shipnote run-once              # one reconciliation cycle
    python -m shipnote stats
    python -m shipnote purge --days 30
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys

from shipnote.config import Settings, get_settings
from shipnote.errors import StorageError
from shipnote.orders.store import OrderStore
from shipnote.shipstation.client import ShipStationClient
from shipnote.worker.loop import ReconcileLoop

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _open_store(settings: Settings) -> OrderStore:
    store = OrderStore(
        settings.database_url,
        reopen_failed_on_reingest=settings.reopen_failed_on_reingest,
    )
    try:
        return store.open()
    except StorageError as e:
        print(f"ERROR: cannot open order store: {e}", file=sys.stderr)
        sys.exit(1)


def _require_shipstation(settings: Settings) -> None:
    missing = [m for m in settings.missing_credentials() if "SHIPSTATION" in m]
    if missing:
        print(f"ERROR: missing ShipStation credentials: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args: argparse.Namespace, settings: Settings) -> None:
    """Run the webhook server with the reconcile loop in-process."""
    import uvicorn

    from shipnote.serve import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)


def cmd_worker(args: argparse.Namespace, settings: Settings) -> None:
    """Run the reconcile loop until SIGINT/SIGTERM."""
    _require_shipstation(settings)
    store = _open_store(settings)
    client = ShipStationClient.from_settings(settings)
    loop = ReconcileLoop.from_settings(settings, store, client)

    def _shutdown(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        loop.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    loop.start()
    try:
        loop.join()
    finally:
        client.close()
        store.close()


def cmd_run_once(args: argparse.Namespace, settings: Settings) -> None:
    """Run a single reconciliation cycle and print its report."""
    _require_shipstation(settings)
    store = _open_store(settings)
    client = ShipStationClient.from_settings(settings)
    try:
        report = ReconcileLoop.from_settings(settings, store, client).run_once()
    finally:
        client.close()
        store.close()
    print(json.dumps(report.to_dict(), indent=2))


def cmd_stats(args: argparse.Namespace, settings: Settings) -> None:
    """Print record counts per status and the failed orders."""
    store = _open_store(settings)
    try:
        counts = store.stats()
        failed = store.list_failed(args.limit)
    finally:
        store.close()

    for status, count in counts.items():
        print(f"  {status:10s} {count:6d}")
    if failed:
        print()
        print("Failed orders:")
        for record in failed:
            print(f"  #{record.order_number:10s} attempts={record.attempts:3d}  {record.error_message}")


def cmd_purge(args: argparse.Namespace, settings: Settings) -> None:
    """Delete completed records older than --days."""
    store = _open_store(settings)
    try:
        deleted = store.purge_completed_older_than(args.days)
    finally:
        store.close()
    print(f"Deleted {deleted} completed orders older than {args.days} days")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="shipnote",
        description="Shopify -> ShipStation gift note relay",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run webhook server + worker")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=3000)
    p_serve.set_defaults(func=cmd_serve)

    p_worker = sub.add_parser("worker", help="Run the reconcile loop only")
    p_worker.set_defaults(func=cmd_worker)

    p_once = sub.add_parser("run-once", help="Run one reconciliation cycle")
    p_once.set_defaults(func=cmd_run_once)

    p_stats = sub.add_parser("stats", help="Print queue statistics")
    p_stats.add_argument("--limit", type=int, default=20, help="Failed orders to list")
    p_stats.set_defaults(func=cmd_stats)

    p_purge = sub.add_parser("purge", help="Delete old completed orders")
    p_purge.add_argument("--days", type=int, default=None, help="Retention window (default from settings)")
    p_purge.set_defaults(func=cmd_purge)

    args = parser.parse_args(argv)
    settings = get_settings()
    if getattr(args, "days", 0) is None:
        args.days = settings.retention_days
    configure_logging(settings.log_level)
    args.func(args, settings)


if __name__ == "__main__":
    main()
