"""ShipStation REST API client (V1, basic auth).

Wraps the five calls the reconciliation worker needs:

    GET  /orders?orderNumber=...   find_order_by_number
    GET  /orders/{orderId}         get_order
    POST /orders/createorder       create_or_update_order
    GET  /accounts/listtags        list_tags
    POST /orders/addtag            add_tag

Every call has a bounded timeout (15s default).  Failures that survive
the short in-call retry are raised as DownstreamCallFailure; the worker
owns the long-horizon retry policy.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from shipnote.errors import DownstreamCallFailure
from shipnote.shipstation.retry import Backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ssapi.shipstation.com"


class ShipStationClient:
    """Thin synchronous ShipStation client."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        backoff: Backoff | None = None,
    ):
        self._backoff = backoff or Backoff()
        self._http = httpx.Client(
            base_url=base_url,
            auth=(api_key, api_secret),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> ShipStationClient:
        return cls(
            settings.shipstation_api_key,
            settings.shipstation_api_secret,
            base_url=settings.shipstation_base_url,
            timeout=settings.request_timeout_s,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> ShipStationClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ── Transport ─────────────────────────────────────────────────────────

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = self._http.request(method, path, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                if not self._backoff.pause(attempt, e, f"{method} {path}"):
                    raise
                attempt += 1

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:200]
            raise DownstreamCallFailure(
                f"ShipStation {method} {path} returned HTTP {status}: {detail}",
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            raise DownstreamCallFailure(
                f"ShipStation {method} {path} failed: {type(e).__name__}: {e}"
            ) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DownstreamCallFailure(
                f"ShipStation {method} {path} returned invalid JSON"
            ) from e

    # ── Operations ────────────────────────────────────────────────────────

    def find_order_by_number(self, order_number: str) -> dict[str, Any] | None:
        """First ShipStation order with this order number, or None."""
        data = self._request("GET", "/orders", params={"orderNumber": order_number})
        orders = (data or {}).get("orders") or []
        return orders[0] if orders else None

    def get_order(self, order_id: int) -> dict[str, Any]:
        """Full order document (needed because createorder replaces the order)."""
        data = self._request("GET", f"/orders/{order_id}")
        if not isinstance(data, dict):
            raise DownstreamCallFailure(f"ShipStation order {order_id} came back empty")
        return data

    def create_or_update_order(self, order: dict[str, Any]) -> dict[str, Any]:
        """Upsert an order; an existing ``orderKey``/``orderId`` updates in place."""
        return self._request("POST", "/orders/createorder", json=order) or {}

    def list_tags(self) -> list[dict[str, Any]]:
        data = self._request("GET", "/accounts/listtags")
        if isinstance(data, dict):
            data = data.get("tags") or []
        return data or []

    def find_tag_id(self, name: str) -> int | None:
        """Case-insensitive tag lookup.  None when the account has no such tag."""
        wanted = name.lower()
        for tag in self.list_tags():
            if str(tag.get("name", "")).lower() == wanted:
                return tag.get("tagId")
        return None

    def add_tag(self, order_id: int, tag_id: int) -> None:
        self._request("POST", "/orders/addtag", json={"orderId": order_id, "tagId": tag_id})
        logger.info("Tag %s added to ShipStation order %s", tag_id, order_id)
