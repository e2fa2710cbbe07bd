"""Ingress handler — one authenticated orders/create event -> at most one upsert.

Algorithm:
1. Verify HMAC over the raw body        (fail -> UNAUTHORIZED, no mutation)
2. Parse the JSON order                  (fail -> MALFORMED, no mutation)
3. Format the gift note from line items  (empty -> SKIPPED_NO_CUSTOMIZATIONS)
4. Classify the tag (charm / customization)
5. Upsert the order record               (-> QUEUED)

No ShipStation call is made here; the reconciliation worker picks the
record up on its next cycle.  StorageError from the upsert propagates:
the HTTP layer logs it and still acknowledges the sender.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from shipnote.errors import MalformedEvent
from shipnote.orders.models import TagType
from shipnote.webhooks.formatter import classify_tag, format_customizations

logger = logging.getLogger(__name__)

Verifier = Callable[[bytes, str | None], bool]


class IngestOutcome(str, Enum):
    QUEUED = "queued"
    SKIPPED_NO_CUSTOMIZATIONS = "skipped-no-customizations"
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    shopify_order_id: int | None = None
    order_number: str = ""
    record_id: int | None = None
    tag_type: TagType | None = None


@dataclass
class ParsedOrder:
    shopify_order_id: int
    order_number: str
    line_items: list[dict[str, Any]]


def parse_order(body: bytes) -> ParsedOrder:
    """Parse an orders/create payload.  Raises MalformedEvent."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEvent(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedEvent("Order payload is not an object")

    try:
        shopify_order_id = int(payload["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEvent("Order payload has no usable id") from e

    name = payload.get("name") or payload.get("order_number")
    if name is None or str(name).strip() == "":
        raise MalformedEvent(f"Order {shopify_order_id} has no name")

    line_items = payload.get("line_items") or []
    if not isinstance(line_items, list):
        raise MalformedEvent(f"Order {shopify_order_id} line_items is not a list")

    return ParsedOrder(
        shopify_order_id=shopify_order_id,
        order_number=str(name).strip().lstrip("#"),
        line_items=[li for li in line_items if isinstance(li, dict)],
    )


class OrderIngress:
    """Turns inbound Shopify order events into queued order records."""

    def __init__(
        self,
        store: Any,
        verifier: Verifier,
        *,
        formatter: Callable[[list[dict[str, Any]]], str] = format_customizations,
        classifier: Callable[[list[dict[str, Any]]], TagType] = classify_tag,
    ):
        self._store = store
        self._verify = verifier
        self._format = formatter
        self._classify = classifier

    def handle(self, body: bytes, signature: str | None) -> IngestResult:
        if not self._verify(body, signature):
            logger.warning("Shopify HMAC verification failed")
            return IngestResult(IngestOutcome.UNAUTHORIZED)

        try:
            order = parse_order(body)
        except MalformedEvent as e:
            logger.warning("Malformed order webhook: %s", e)
            return IngestResult(IngestOutcome.MALFORMED)

        note = self._format(order.line_items)
        if not note:
            logger.info("Order %s has no customizations, skipping", order.order_number)
            return IngestResult(
                IngestOutcome.SKIPPED_NO_CUSTOMIZATIONS,
                shopify_order_id=order.shopify_order_id,
                order_number=order.order_number,
            )

        tag = self._classify(order.line_items)
        record_id = self._store.upsert(
            order.shopify_order_id, order.order_number, note, tag,
        )
        logger.info(
            "Order %s (Shopify %d) queued as record %d, tag=%s",
            order.order_number, order.shopify_order_id, record_id, tag.value,
        )
        return IngestResult(
            IngestOutcome.QUEUED,
            shopify_order_id=order.shopify_order_id,
            order_number=order.order_number,
            record_id=record_id,
            tag_type=tag,
        )
