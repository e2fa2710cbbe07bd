"""Gift note formatting: line-item properties to a packing-slip note.

Customer-entered customizations arrive as line-item ``properties``
(``[{"name": ..., "value": ...}]``).  Internal properties added by the
product-options app are dropped; everything else is rendered as a
checklist the packer ticks off:

    CUSTOMIZATIONS:

    Ribbon Charm
    ☐ Ribbon one monogram: 'M'

    ════════════════════════════════════════
    Charm(s) handplaced by: ____________________________

Both functions are pure: they see only the parsed line items.
"""

from __future__ import annotations

import re
from typing import Any

from shipnote.orders.models import TagType

NOTE_HEADER = "CUSTOMIZATIONS:\n\n"
CHECKBOX = "☐"
SIGNATURE_RULE = "═" * 40
SIGNATURE_LINE = "Charm(s) handplaced by: ____________________________"

# Property names containing any of these are options-app bookkeeping
_HIDDEN_PROPERTY_MARKERS = ("optionSetId", "hc_default", "copy")

# Measurement parentheticals like "(12.5 mm x 3 mm)"
_MEASUREMENT_RE = re.compile(r"\([^)]*\d+\.?\d*\s*mm[^)]*\)", re.IGNORECASE)
_SINGLE_LETTER_RE = re.compile(r"^[a-z]$", re.IGNORECASE)
_MONOGRAM_NAME_MARKERS = ("monogram", "letter", "initial")


def _properties(item: dict[str, Any]) -> list[dict[str, Any]]:
    props = item.get("properties") or []
    if isinstance(props, dict):
        return [{"name": k, "value": v} for k, v in props.items()]
    return [p for p in props if isinstance(p, dict)]


def _is_customer_property(prop: dict[str, Any]) -> bool:
    name = str(prop.get("name") or "")
    if name.startswith("_"):
        return False
    return not any(marker in name for marker in _HIDDEN_PROPERTY_MARKERS)


def _product_name(item: dict[str, Any]) -> str:
    # Shopify's line item "name" already carries the variant title
    return str(item.get("name") or item.get("title") or "Unknown Product")


def _clean_value(value: Any) -> str:
    text = "" if value is None else str(value)
    return _MEASUREMENT_RE.sub("", text).strip()


def _is_monogram_property(name: str, value: str) -> bool:
    lowered = name.lower()
    return any(m in lowered for m in _MONOGRAM_NAME_MARKERS) or bool(
        _SINGLE_LETTER_RE.match(value)
    )


def format_customizations(line_items: list[dict[str, Any]] | None) -> str:
    """Render customer customizations as a gift note.

    Returns an empty string when no line item carries a customer-entered
    property; such orders are not queued.
    """
    lines = [NOTE_HEADER]
    has_any = False
    has_charms = False

    for item in line_items or []:
        props = [p for p in _properties(item) if _is_customer_property(p)]
        if not props:
            continue
        has_any = True

        product_name = _product_name(item)
        lowered = product_name.lower()
        if "charm" in lowered:
            has_charms = True
        is_monogram_item = "monogram" in lowered or "ribbon" in lowered

        lines.append(f"{product_name}\n")
        for prop in props:
            name = str(prop.get("name") or "")
            value = _clean_value(prop.get("value"))
            if is_monogram_item and _is_monogram_property(name, value):
                lines.append(f"{CHECKBOX} Ribbon one monogram: '{value.upper()}'\n")
            else:
                lines.append(f"{CHECKBOX} {name}: {value}\n")
        lines.append("\n")

    if not has_any:
        return ""

    if has_charms:
        lines.append(f"{SIGNATURE_RULE}\n")
        lines.append(f"{SIGNATURE_LINE}\n")

    return "".join(lines)


def classify_tag(line_items: list[dict[str, Any]] | None) -> TagType:
    """``charm`` if any customized item is a charm, else ``customization``."""
    for item in line_items or []:
        props = _properties(item)
        if not props:
            continue

        if "charm" in _product_name(item).lower():
            return TagType.CHARM

        for prop in props:
            name = str(prop.get("name") or "").lower()
            value = str(prop.get("value") or "").lower()
            if "charm" in name or "charm" in value:
                return TagType.CHARM

    return TagType.CUSTOMIZATION
