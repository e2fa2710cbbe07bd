"""Order record store — Postgres-backed reconciliation queue.

One table, one row per Shopify order id. Every mutation is a single
SQL statement, so concurrent webhook deliveries and the worker never
need an application-level read-then-write:

- upsert   INSERT ... ON CONFLICT (shopify_order_id) DO UPDATE ... RETURNING id
- advance  UPDATE ... attempts = attempts + 1 ... RETURNING attempts

The store owns exactly one connection (autocommit, dict rows), guarded
by a lock so the HTTP threadpool and the worker thread can share it.
Any psycopg error surfaces as StorageError; callers do not retry.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

import psycopg
from psycopg.rows import dict_row

from shipnote.errors import StorageError
from shipnote.orders.models import OrderRecord, OrderStatus, TagType

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        id                   BIGSERIAL PRIMARY KEY,
        shopify_order_id     BIGINT NOT NULL UNIQUE,
        order_number         TEXT NOT NULL,
        formatted_note       TEXT NOT NULL,
        tag_type             TEXT NOT NULL,
        status               TEXT NOT NULL DEFAULT 'pending',
        shipstation_order_id BIGINT,
        created_at           TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at           TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        last_check_at        TIMESTAMPTZ,
        attempts             INT NOT NULL DEFAULT 0,
        error_message        TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders (status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_orders_order_number ON orders (order_number)",
)

_UPSERT_SQL = """
    INSERT INTO orders (shopify_order_id, order_number, formatted_note, tag_type, status)
    VALUES (%(shopify_order_id)s, %(order_number)s, %(note)s, %(tag)s, 'pending')
    ON CONFLICT (shopify_order_id) DO UPDATE SET
        formatted_note = EXCLUDED.formatted_note,
        tag_type = EXCLUDED.tag_type,
        updated_at = clock_timestamp(),
        status = CASE
            WHEN %(reopen)s
                 AND orders.status = 'failed'
                 AND orders.shipstation_order_id IS NULL
            THEN 'pending'
            ELSE orders.status
        END
    RETURNING id
"""

_ADVANCE_SQL = """
    UPDATE orders
    SET status = %(status)s,
        shipstation_order_id = COALESCE(%(shipstation_order_id)s, shipstation_order_id),
        error_message = %(error)s,
        updated_at = clock_timestamp(),
        last_check_at = clock_timestamp(),
        attempts = attempts + 1
    WHERE id = %(id)s
    RETURNING attempts
"""


class OrderStore:
    """Postgres order queue with explicit open/close lifecycle."""

    def __init__(self, dsn: str, *, reopen_failed_on_reingest: bool = True):
        self._dsn = dsn
        self._reopen_failed = reopen_failed_on_reingest
        self._conn: psycopg.Connection | None = None
        self._lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def open(self) -> OrderStore:
        """Connect and create the schema if needed.  Idempotent."""
        with self._lock:
            if self._conn is None or self._conn.closed:
                try:
                    self._conn = psycopg.connect(
                        self._dsn, autocommit=True, row_factory=dict_row,
                    )
                    for statement in _SCHEMA:
                        self._conn.execute(statement)
                except psycopg.Error as e:
                    self._conn = None
                    raise StorageError(f"Failed to open order store: {e}") from e
        logger.info("Order store ready")
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except psycopg.Error:
                    logger.warning("Error closing order store", exc_info=True)
                self._conn = None
        logger.info("Order store closed")

    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def __enter__(self) -> OrderStore:
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _run(self, sql: str, params: Any = None, fetch: str = "none") -> Any:
        """Execute one statement under the connection lock."""
        with self._lock:
            if self._conn is None or self._conn.closed:
                raise StorageError("Order store is not open")
            try:
                cur = self._conn.execute(sql, params)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                return cur.rowcount
            except psycopg.Error as e:
                raise StorageError(str(e)) from e

    # ── Queue operations ──────────────────────────────────────────────────

    def upsert(
        self,
        shopify_order_id: int,
        order_number: str,
        formatted_note: str,
        tag_type: TagType | str,
    ) -> int:
        """Insert a pending record or refresh note/tag of an existing one.

        Returns the record id (existing id on conflict).  Status is never
        changed by re-ingestion, except that a ``failed`` record that never
        matched a ShipStation order goes back to ``pending`` when the store
        was built with ``reopen_failed_on_reingest``.  Attempts are never reset.
        """
        row = self._run(
            _UPSERT_SQL,
            {
                "shopify_order_id": shopify_order_id,
                "order_number": order_number,
                "note": formatted_note,
                "tag": TagType(tag_type).value,
                "reopen": self._reopen_failed,
            },
            fetch="one",
        )
        if row is None:
            raise StorageError(f"Upsert returned no id for Shopify order {shopify_order_id}")
        logger.info("Queued order %s (record %d)", order_number, row["id"])
        return row["id"]

    def list_pending(self, limit: int = 50) -> list[OrderRecord]:
        """Pending records, oldest first."""
        rows = self._run(
            """SELECT * FROM orders
               WHERE status = 'pending'
               ORDER BY created_at ASC, id ASC
               LIMIT %s""",
            (limit,),
            fetch="all",
        )
        return [OrderRecord.from_row(r) for r in rows]

    def advance(
        self,
        record_id: int,
        status: OrderStatus | str,
        shipstation_order_id: int | None = None,
        error_message: str | None = None,
    ) -> int:
        """Record one processing attempt.  Returns the new attempt count.

        The ShipStation id is only written when provided; the error message
        is always overwritten (``None`` clears it).
        """
        row = self._run(
            _ADVANCE_SQL,
            {
                "status": OrderStatus(status).value,
                "shipstation_order_id": shipstation_order_id,
                "error": error_message,
                "id": record_id,
            },
            fetch="one",
        )
        if row is None:
            raise StorageError(f"Order record {record_id} not found")
        return row["attempts"]

    def stats(self) -> dict[str, int]:
        """Record count per status (every status present, zero-filled)."""
        counts = {s.value: 0 for s in OrderStatus}
        rows = self._run(
            "SELECT status, COUNT(*) AS count FROM orders GROUP BY status",
            fetch="all",
        )
        for r in rows:
            counts[r["status"]] = r["count"]
        return counts

    def stats_detail(self) -> list[dict[str, Any]]:
        """Count plus oldest/newest creation time per status."""
        rows = self._run(
            """SELECT status, COUNT(*) AS count,
                      MIN(created_at) AS oldest, MAX(created_at) AS newest
               FROM orders
               GROUP BY status
               ORDER BY status""",
            fetch="all",
        )
        return [
            {
                "status": r["status"],
                "count": r["count"],
                "oldest": str(r["oldest"]) if r["oldest"] else None,
                "newest": str(r["newest"]) if r["newest"] else None,
            }
            for r in rows
        ]

    def purge_completed_older_than(self, days: int = 30) -> int:
        """Delete completed records last updated more than ``days`` ago."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        deleted = self._run(
            "DELETE FROM orders WHERE status = 'completed' AND updated_at < %s",
            (cutoff,),
        )
        logger.info("Deleted %d completed orders older than %d days", deleted, days)
        return deleted

    # ── Lookups ───────────────────────────────────────────────────────────

    def get(self, record_id: int) -> OrderRecord | None:
        row = self._run("SELECT * FROM orders WHERE id = %s", (record_id,), fetch="one")
        return OrderRecord.from_row(row) if row else None

    def find_by_shopify_id(self, shopify_order_id: int) -> OrderRecord | None:
        row = self._run(
            "SELECT * FROM orders WHERE shopify_order_id = %s",
            (shopify_order_id,),
            fetch="one",
        )
        return OrderRecord.from_row(row) if row else None

    def list_recent(self, limit: int = 100) -> list[OrderRecord]:
        """Most recently created records first (operator listing)."""
        rows = self._run(
            "SELECT * FROM orders ORDER BY created_at DESC, id DESC LIMIT %s",
            (limit,),
            fetch="all",
        )
        return [OrderRecord.from_row(r) for r in rows]

    def list_failed(self, limit: int = 100) -> list[OrderRecord]:
        """Records needing manual intervention, most recently updated first."""
        rows = self._run(
            """SELECT * FROM orders
               WHERE status = 'failed'
               ORDER BY updated_at DESC
               LIMIT %s""",
            (limit,),
            fetch="all",
        )
        return [OrderRecord.from_row(r) for r in rows]
