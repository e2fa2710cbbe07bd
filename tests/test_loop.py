"""Tests for the background reconcile loop."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

from shipnote.errors import StorageError
from shipnote.orders.models import OrderStatus, TagType
from shipnote.worker.loop import ReconcileLoop
from tests.fakes import SlowShipStation, StrictOrderStore


def _loop(store, shipstation, **kwargs) -> ReconcileLoop:
    kwargs.setdefault("poll_interval_s", 0.01)
    return ReconcileLoop(
        store, shipstation, reconciler_options={"record_delay_s": 0}, **kwargs,
    )


class TestRunOnce:

    def test_processes_pending(self, store, shipstation):
        store.upsert(1, "1", "NOTE", TagType.CHARM)
        shipstation.add_order("1", 500)

        report = _loop(store, shipstation).run_once()

        assert report.completed == 1
        assert store.find_by_shopify_id(1).status is OrderStatus.COMPLETED

    def test_crash_is_contained(self, store, shipstation):
        loop = _loop(store, shipstation)
        with patch.object(loop._reconciler, "run_cycle", side_effect=RuntimeError("boom")):
            report = loop.run_once()
        assert report.aborted == "boom"
        assert loop.status()["cycles"] == 1

    def test_status_reports_last_cycle(self, store, shipstation):
        loop = _loop(store, shipstation)
        assert loop.status()["last_cycle"] is None
        loop.run_once()
        status = loop.status()
        assert status["running"] is False
        assert status["cycles"] == 1
        assert status["last_cycle_at"] is not None
        assert status["last_cycle"]["loaded"] == 0


class TestPurge:

    def test_uses_retention_window(self, shipstation):
        store = MagicMock()
        store.purge_completed_older_than.return_value = 3
        assert _loop(store, shipstation, retention_days=14).purge() == 3
        store.purge_completed_older_than.assert_called_once_with(14)

    def test_storage_error_is_logged(self, shipstation):
        store = MagicMock()
        store.purge_completed_older_than.side_effect = StorageError("db down")
        assert _loop(store, shipstation).purge() == 0

    def test_first_sweep_due_immediately(self, store, shipstation):
        loop = _loop(store, shipstation, cleanup_interval_s=3600)
        assert loop._cleanup_due() is True
        loop.purge()
        assert loop._cleanup_due() is False


class TestThread:

    def test_start_and_stop(self, store, shipstation):
        store.upsert(1, "1", "NOTE", TagType.CHARM)
        shipstation.add_order("1", 500)
        loop = _loop(store, shipstation)

        loop.start()
        assert loop.running
        deadline = time.monotonic() + 5
        while loop.status()["cycles"] < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=5)

        assert not loop.running
        assert loop.status()["cycles"] >= 2
        assert store.find_by_shopify_id(1).status is OrderStatus.COMPLETED

    def test_stop_wakes_long_wait(self, store, shipstation):
        loop = _loop(store, shipstation, poll_interval_s=3600)
        loop.start()
        deadline = time.monotonic() + 5
        while loop.status()["cycles"] < 1 and time.monotonic() < deadline:
            time.sleep(0.01)

        started = time.monotonic()
        loop.stop(timeout=5)
        assert time.monotonic() - started < 2
        assert not loop.running

    def test_start_is_idempotent(self, store, shipstation):
        loop = _loop(store, shipstation, poll_interval_s=3600)
        loop.start()
        thread = loop._thread
        loop.start()
        assert loop._thread is thread
        loop.stop(timeout=5)

    def test_stop_waits_for_record_in_flight(self):
        store = StrictOrderStore()
        shipstation = SlowShipStation(delay_s=0.5)
        store.upsert(1, "1", "NOTE", TagType.CHARM)
        shipstation.add_order("1", 500)
        loop = _loop(store, shipstation, poll_interval_s=3600)

        loop.start()
        assert shipstation.lookup_started.wait(5)
        assert loop.stop() is True
        store.close()

        assert not loop.running
        assert len(store.advance_calls) == 1
        assert store.find_by_shopify_id(1).status is OrderStatus.COMPLETED

    def test_stop_timeout_reports_record_in_flight(self):
        store = StrictOrderStore()
        shipstation = SlowShipStation(delay_s=0.5)
        store.upsert(1, "1", "NOTE", TagType.CHARM)
        loop = _loop(store, shipstation, poll_interval_s=3600)

        loop.start()
        assert shipstation.lookup_started.wait(5)
        assert loop.stop(timeout=0.05) is False
        assert loop.running
        loop.join()
        assert not loop.running
