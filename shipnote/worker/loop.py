"""Reconciliation loop — background polling daemon.

The loop runs in one daemon thread:

    ┌─────────────────────────────────────────────┐
    │  run_cycle()  (up to 50 pending, oldest 1st) │
    │       │                                      │
    │  retention sweep (once per cleanup interval) │
    │       │                                      │
    │  wait poll_interval  ── stop() wakes it ──>  exit
    └─────────────────────────────────────────────┘

A cycle always runs to completion before the next wait, so cycles never
overlap and the sweep never races a cycle.  stop() lets the record in
flight finish; the owner closes the store after stop() returns.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any

from shipnote.errors import StorageError
from shipnote.worker.reconciler import CycleReport, Reconciler

logger = logging.getLogger(__name__)


class ReconcileLoop:
    """Timer-driven reconciliation daemon."""

    def __init__(
        self,
        store: Any,
        client: Any,
        *,
        poll_interval_s: float = 300.0,
        cleanup_interval_s: float = 86400.0,
        retention_days: int = 30,
        reconciler_options: dict[str, Any] | None = None,
    ):
        self._store = store
        self._poll_interval_s = poll_interval_s
        self._cleanup_interval_s = cleanup_interval_s
        self._retention_days = retention_days
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._reconciler = Reconciler(
            store, client, stop_event=self._stop, **(reconciler_options or {}),
        )
        self._last_cleanup: float | None = None
        self._cycles = 0
        self._last_report: CycleReport | None = None
        self._last_cycle_at: str | None = None

    @classmethod
    def from_settings(cls, settings: Any, store: Any, client: Any) -> ReconcileLoop:
        return cls(
            store,
            client,
            poll_interval_s=settings.poll_interval_s,
            cleanup_interval_s=settings.cleanup_interval_s,
            retention_days=settings.retention_days,
            reconciler_options={
                "max_attempts": settings.max_attempts,
                "not_found_max_attempts": settings.not_found_max_attempts,
                "batch_size": settings.batch_size,
                "record_delay_s": settings.record_delay_s,
            },
        )

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="shipnote-reconcile",
        )
        self._thread.start()
        logger.info(
            "Reconcile loop STARTED (poll=%ss, cleanup=%ss, retention=%dd)",
            self._poll_interval_s, self._cleanup_interval_s, self._retention_days,
        )

    def stop(self, timeout: float | None = None) -> bool:
        """Signal the loop and wait for the current record to finish.

        With the default ``timeout=None`` this blocks until the thread has
        exited, so the caller may close the store afterwards.  Returns False
        if a finite timeout expired with a record still in flight.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Reconcile loop did not stop within %ss", timeout)
                return False
        logger.info("Reconcile loop STOPPED (%d cycles)", self._cycles)
        return True

    def join(self) -> None:
        if self._thread is not None:
            self._thread.join()

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            if self._cleanup_due():
                self.purge()
            self._stop.wait(self._poll_interval_s)

    def run_once(self) -> CycleReport:
        """Run one reconciliation cycle synchronously."""
        logger.info("Checking for pending orders")
        try:
            report = self._reconciler.run_cycle()
        except Exception as e:
            # run_cycle isolates records; this only guards the loop itself
            logger.exception("Reconcile cycle crashed")
            report = CycleReport(aborted=str(e))
        self._cycles += 1
        self._last_report = report
        self._last_cycle_at = datetime.now(timezone.utc).isoformat()
        return report

    def _cleanup_due(self) -> bool:
        now = time.monotonic()
        return self._last_cleanup is None or now - self._last_cleanup >= self._cleanup_interval_s

    def purge(self) -> int:
        """Delete completed records older than the retention window."""
        self._last_cleanup = time.monotonic()
        try:
            return self._store.purge_completed_older_than(self._retention_days)
        except StorageError:
            logger.exception("Retention sweep failed")
            return 0

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "cycles": self._cycles,
            "poll_interval_s": self._poll_interval_s,
            "last_cycle_at": self._last_cycle_at,
            "last_cycle": self._last_report.to_dict() if self._last_report else None,
        }
