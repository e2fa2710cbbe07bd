"""Reconciliation worker — drives queued orders from pending to a terminal state.

Per record, once per cycle:

    find_order_by_number ──(none)──> advance(pending, "Order not yet synced")
          │
        found
          │
    get_order -> build_order_update -> create_or_update_order
          │
    tag lookup ──(no such tag)──> skip, logged
          │
    advance(completed, shipstation_order_id)

Any remote failure advances the record to ``pending`` with the error
text while the post-increment attempt count is below ``max_attempts``,
and to ``failed`` once it reaches it.  "Not yet synced" shares the same
attempt counter but only fails a record when ``not_found_max_attempts``
is set (0 = never).

Records are processed strictly one at a time, oldest first, with a
fixed delay between them to stay under ShipStation's rate limit.  One
record's failure never aborts the batch.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from shipnote.errors import DownstreamCallFailure, NotYetSynced, StorageError
from shipnote.orders.models import OrderRecord, OrderStatus
from shipnote.shipstation.packaging import build_order_update

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_BATCH_SIZE = 50
DEFAULT_RECORD_DELAY_S = 1.0


@dataclass
class CycleReport:
    """Outcome counts for one polling cycle."""
    loaded: int = 0
    completed: int = 0
    pending: int = 0
    failed: int = 0
    errors: int = 0  # records whose processing raised (e.g. StorageError)
    aborted: str | None = None
    stats: dict[str, int] = field(default_factory=dict)

    def record(self, status: OrderStatus) -> None:
        if status is OrderStatus.COMPLETED:
            self.completed += 1
        elif status is OrderStatus.FAILED:
            self.failed += 1
        else:
            self.pending += 1

    @property
    def processed(self) -> int:
        return self.completed + self.pending + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "loaded": self.loaded,
            "processed": self.processed,
            "completed": self.completed,
            "pending": self.pending,
            "failed": self.failed,
            "errors": self.errors,
            "aborted": self.aborted,
            "stats": dict(self.stats),
        }


class Reconciler:
    """Applies queued gift notes to ShipStation orders."""

    def __init__(
        self,
        store: Any,
        client: Any,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        not_found_max_attempts: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        record_delay_s: float = DEFAULT_RECORD_DELAY_S,
        stop_event: threading.Event | None = None,
    ):
        self._store = store
        self._client = client
        self._max_attempts = max_attempts
        self._not_found_max_attempts = not_found_max_attempts
        self._batch_size = batch_size
        self._record_delay_s = record_delay_s
        self._stop = stop_event or threading.Event()

    @classmethod
    def from_settings(
        cls, settings: Any, store: Any, client: Any, stop_event: threading.Event | None = None,
    ) -> Reconciler:
        return cls(
            store,
            client,
            max_attempts=settings.max_attempts,
            not_found_max_attempts=settings.not_found_max_attempts,
            batch_size=settings.batch_size,
            record_delay_s=settings.record_delay_s,
            stop_event=stop_event,
        )

    # ── Single record ─────────────────────────────────────────────────────

    def process(self, record: OrderRecord) -> OrderStatus:
        """Run one attempt for ``record`` and persist the outcome.

        Returns the status written.  StorageError from ``advance``
        propagates to the caller.
        """
        attempt = record.attempts + 1
        logger.info(
            "Processing order %s (record %d, tag=%s, attempt %d)",
            record.order_number, record.id, record.tag_type.value, attempt,
        )

        try:
            shipstation_order_id = self._apply(record)
        except NotYetSynced as e:
            status = OrderStatus.PENDING
            if self._not_found_max_attempts and attempt >= self._not_found_max_attempts:
                status = OrderStatus.FAILED
                logger.warning(
                    "Order %s still not in ShipStation after %d attempts, marking failed",
                    record.order_number, attempt,
                )
            else:
                logger.info("Order %s not in ShipStation yet, will retry", record.order_number)
            self._store.advance(record.id, status, None, str(e))
            return status
        except Exception as e:
            if not isinstance(e, DownstreamCallFailure):
                logger.exception("Unexpected error processing order %s", record.order_number)
            status = OrderStatus.PENDING if attempt < self._max_attempts else OrderStatus.FAILED
            self._store.advance(record.id, status, None, str(e) or type(e).__name__)
            if status is OrderStatus.FAILED:
                logger.error(
                    "Order %s marked failed after %d attempts: %s",
                    record.order_number, attempt, e,
                )
            else:
                logger.warning(
                    "Order %s attempt %d/%d failed, will retry: %s",
                    record.order_number, attempt, self._max_attempts, e,
                )
            return status

        self._store.advance(record.id, OrderStatus.COMPLETED, shipstation_order_id, None)
        logger.info(
            "Order %s completed (ShipStation order %s)",
            record.order_number, shipstation_order_id,
        )
        return OrderStatus.COMPLETED

    def _apply(self, record: OrderRecord) -> int:
        """Push note, package and tag to ShipStation.  Returns the ShipStation id."""
        found = self._client.find_order_by_number(record.order_number)
        if not found:
            raise NotYetSynced(record.order_number)

        shipstation_order_id = found.get("orderId")
        if shipstation_order_id is None:
            raise DownstreamCallFailure(
                f"ShipStation order {record.order_number} has no orderId"
            )

        full_order = self._client.get_order(shipstation_order_id)
        update = build_order_update(full_order, record.formatted_note)
        self._client.create_or_update_order(update)

        tag_id = self._client.find_tag_id(record.tag_type.value)
        if tag_id is None:
            logger.warning(
                "Tag %r not found in ShipStation, skipping tag for order %s",
                record.tag_type.value, record.order_number,
            )
        else:
            self._client.add_tag(shipstation_order_id, tag_id)

        return shipstation_order_id

    # ── Cycle ─────────────────────────────────────────────────────────────

    def run_cycle(self) -> CycleReport:
        """Process up to ``batch_size`` pending records, oldest first."""
        report = CycleReport()
        try:
            records = self._store.list_pending(self._batch_size)
        except StorageError as e:
            logger.exception("Could not load pending orders, skipping cycle")
            report.aborted = str(e)
            return report

        report.loaded = len(records)
        if not records:
            logger.info("No pending orders to process")
            return report

        logger.info("Found %d pending orders", len(records))
        for i, record in enumerate(records):
            if self._stop.is_set():
                logger.info("Stop requested, leaving %d orders for the next run", len(records) - i)
                break
            try:
                report.record(self.process(record))
            except Exception:
                report.errors += 1
                logger.exception("Failed to record attempt for order %s", record.order_number)
            if i < len(records) - 1 and self._record_delay_s > 0:
                self._pause(self._record_delay_s)

        try:
            report.stats = self._store.stats()
            logger.info(
                "Cycle done: %d completed, %d pending, %d failed, %d errors | queue %s",
                report.completed, report.pending, report.failed, report.errors, report.stats,
            )
        except StorageError:
            logger.warning("Could not read queue stats", exc_info=True)
        return report

    def _pause(self, seconds: float) -> None:
        # Returns early when a stop is requested
        self._stop.wait(seconds)
