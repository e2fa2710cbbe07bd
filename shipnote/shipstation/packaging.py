"""Package and carrier selection from a ShipStation order.

Weight picks the smallest BoxMaster that fits; destinations outside the
US and Canada get UPS Worldwide Expedited.  Pure functions over the
order document returned by ``GET /orders/{id}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Package:
    name: str
    length: float
    width: float
    height: float
    units: str = "centimeters"

    def dimensions(self) -> dict[str, Any]:
        return {
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "units": self.units,
        }


BOX_SMALL = Package('BoxMaster 2"', 25.4, 17.78, 5)
BOX_MEDIUM = Package('BoxMaster 3"', 27.94, 20.95, 7.62)
BOX_LARGE = Package('BoxMaster 6"', 29.21, 24.13, 15.24)

# Upper bounds (exclusive), kilograms
SMALL_MAX_KG = 1.5
MEDIUM_MAX_KG = 2.5

DOMESTIC_COUNTRIES = frozenset({"US", "USA", "CA", "CAN", "CANADA"})
INTERNATIONAL_CARRIER_CODE = "ups"
INTERNATIONAL_SERVICE_CODE = "ups_worldwide_expedited"

_KG_PER_UNIT = {
    "ounces": 0.0283495,
    "oz": 0.0283495,
    "pounds": 0.453592,
    "lbs": 0.453592,
    "lb": 0.453592,
    "grams": 0.001,
    "g": 0.001,
    "kilograms": 1.0,
    "kg": 1.0,
}


def weight_in_kg(weight: dict[str, Any] | None) -> float:
    """Convert a ShipStation ``weight`` object to kilograms.

    Missing weight counts as 0; unknown units are taken as kilograms.
    """
    if not weight or weight.get("value") is None:
        return 0.0
    units = str(weight.get("units") or "").lower()
    return float(weight["value"]) * _KG_PER_UNIT.get(units, 1.0)


def select_package(weight_kg: float) -> Package:
    if weight_kg < SMALL_MAX_KG:
        return BOX_SMALL
    if weight_kg < MEDIUM_MAX_KG:
        return BOX_MEDIUM
    return BOX_LARGE


def is_international(ship_to: dict[str, Any] | None) -> bool:
    """True unless the destination is the US or Canada (or unknown)."""
    country = (ship_to or {}).get("country")
    if not country:
        return False
    return str(country).upper() not in DOMESTIC_COUNTRIES


def build_order_update(order: dict[str, Any], gift_message: str) -> dict[str, Any]:
    """Full-order payload for ``POST /orders/createorder``.

    createorder replaces the whole order, so the update starts from the
    complete document and only overrides the gift message, dimensions and,
    for international shipments, carrier/service.
    """
    update = dict(order)
    update["giftMessage"] = gift_message

    weight_kg = weight_in_kg(order.get("weight"))
    package = select_package(weight_kg)
    update["dimensions"] = package.dimensions()

    country = (order.get("shipTo") or {}).get("country")
    if is_international(order.get("shipTo")):
        update["carrierCode"] = INTERNATIONAL_CARRIER_CODE
        update["serviceCode"] = INTERNATIONAL_SERVICE_CODE
        logger.info(
            "Order %s: %.2f kg -> %s, international (%s) -> UPS Worldwide Expedited",
            order.get("orderNumber"), weight_kg, package.name, country,
        )
    else:
        logger.info(
            "Order %s: %.2f kg -> %s, domestic (%s)",
            order.get("orderNumber"), weight_kg, package.name, country,
        )
    return update
