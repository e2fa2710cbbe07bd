"""Order record data model.

One row per Shopify order id. The record is a reconciliation job:
ingress creates it, the worker drives it from ``pending`` to
``completed`` or ``failed``, the retention sweep deletes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    """Reconciliation job lifecycle states."""
    PENDING = "pending"
    COMPLETED = "completed"  # Terminal: note applied in ShipStation
    FAILED = "failed"        # Terminal: attempts exhausted

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class TagType(str, Enum):
    """ShipStation workflow tag applied to the order."""
    CHARM = "charm"
    CUSTOMIZATION = "customization"


@dataclass
class OrderRecord:
    """A queued reconciliation job."""
    id: int
    shopify_order_id: int
    order_number: str
    formatted_note: str
    tag_type: TagType
    status: OrderStatus = OrderStatus.PENDING
    shipstation_order_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_check_at: datetime | None = None
    attempts: int = 0
    error_message: str | None = None

    @staticmethod
    def from_row(row: dict[str, Any]) -> OrderRecord:
        return OrderRecord(
            id=row["id"],
            shopify_order_id=row["shopify_order_id"],
            order_number=row["order_number"],
            formatted_note=row["formatted_note"],
            tag_type=TagType(row["tag_type"]),
            status=OrderStatus(row["status"]),
            shipstation_order_id=row.get("shipstation_order_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            last_check_at=row.get("last_check_at"),
            attempts=row.get("attempts") or 0,
            error_message=row.get("error_message"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shopify_order_id": self.shopify_order_id,
            "order_number": self.order_number,
            "formatted_note": self.formatted_note,
            "tag_type": self.tag_type.value,
            "status": self.status.value,
            "shipstation_order_id": self.shipstation_order_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "last_check_at": _iso(self.last_check_at),
            "attempts": self.attempts,
            "error_message": self.error_message,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
