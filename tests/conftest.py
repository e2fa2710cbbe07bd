"""Shared fixtures for the shipnote test suite."""

from __future__ import annotations

import pytest

from tests.fakes import FakeOrderStore, FakeShipStation


@pytest.fixture
def store() -> FakeOrderStore:
    return FakeOrderStore()


@pytest.fixture
def shipstation() -> FakeShipStation:
    return FakeShipStation()


@pytest.fixture
def order_payload():
    """Factory for Shopify orders/create payloads."""

    def _make(order_id: int = 1001, name: str = "#1001", line_items: list | None = None) -> dict:
        if line_items is None:
            line_items = [
                {
                    "title": "Ribbon Charm",
                    "properties": [{"name": "Letter", "value": "M"}],
                }
            ]
        return {"id": order_id, "name": name, "line_items": line_items}

    return _make
