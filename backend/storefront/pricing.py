"""Server-side pricing of requested line items.

Catalog-backed items are always priced from the catalog. Items whose product
reference is missing, malformed or unknown keep the price the client sent
(or the one embedded in their snapshot) so that demo and externally sourced
items can still be ordered.
"""

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from .errors import ValidationError
from .helpers import parse_object_id, safe_float, safe_positive_int

logger = logging.getLogger(__name__)

UNKNOWN_ITEM_TITLE = "Unknown item"
SNAPSHOT_FIELDS = ("title", "images", "slug", "price")
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}


def _first_present(payload: Dict, *keys):
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def normalize_snapshot(raw_snapshot) -> Optional[Dict[str, object]]:
    if not isinstance(raw_snapshot, dict):
        return None
    snapshot = {key: raw_snapshot[key] for key in SNAPSHOT_FIELDS if key in raw_snapshot}
    return snapshot or None


def catalog_snapshot(product_document) -> Dict[str, object]:
    return {
        "title": product_document.get("title") or "",
        "images": list(product_document.get("images") or []),
        "slug": product_document.get("slug") or "",
    }


def resolve_line_item(payload, catalog) -> Dict[str, object]:
    """Price a single requested item. Never raises for a malformed item."""
    if not isinstance(payload, dict):
        logger.warning("Ignoring malformed line item %r; pricing it as an unknown item", payload)
        payload = {}

    quantity = safe_positive_int(_first_present(payload, "qty", "quantity"), 1)
    customization = payload.get("customization")
    if not isinstance(customization, dict):
        customization = None
    snapshot = normalize_snapshot(payload.get("snapshot"))

    reference = _first_present(payload, "productId", "product_id", "product")
    object_id = parse_object_id(reference) if reference is not None else None
    if object_id is not None:
        product_document = None
        try:
            product_document = catalog.find_by_id(object_id)
        except PyMongoError as exc:
            logger.warning("Catalog lookup for %s failed, using fallback price: %s", object_id, exc)
        if product_document:
            return {
                "product_id": product_document["_id"],
                "title": product_document.get("title") or UNKNOWN_ITEM_TITLE,
                "quantity": quantity,
                "unit_price": max(safe_float(product_document.get("price"), 0.0), 0.0),
                "customization": customization,
                "snapshot": catalog_snapshot(product_document),
            }
        logger.info("Product %s is not in the catalog, using fallback price", object_id)
    elif reference is not None:
        logger.info("Product reference %r is not a catalog identifier, using fallback price", reference)

    raw_price = _first_present(payload, "unitPrice", "unit_price", "price")
    if raw_price is None and snapshot:
        raw_price = snapshot.get("price")
    unit_price = safe_float(raw_price, 0.0)
    if unit_price < 0:
        logger.warning("Negative unit price %s clamped to 0", unit_price)
        unit_price = 0.0

    title = str(
        _first_present(payload, "title", "name")
        or (snapshot or {}).get("title")
        or UNKNOWN_ITEM_TITLE
    ).strip() or UNKNOWN_ITEM_TITLE

    return {
        "product_id": None,
        "title": title,
        "quantity": quantity,
        "unit_price": unit_price,
        "customization": customization,
        "snapshot": snapshot,
    }


def resolve_line_items(raw_items, catalog) -> Tuple[List[Dict[str, object]], float]:
    """Resolve every requested item and return ``(items, total)``."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Include at least one item.")

    items = [resolve_line_item(entry, catalog) for entry in raw_items]
    total = calculate_total(items)
    if not math.isfinite(total):
        raise ValidationError("Order total is out of range.")
    return items, total


def calculate_total(items: List[Dict[str, object]]) -> float:
    return sum(item["unit_price"] * item["quantity"] for item in items)


def to_minor_units(total: float, currency: str) -> int:
    multiplier = 1 if str(currency or "").lower() in ZERO_DECIMAL_CURRENCIES else 100
    amount = Decimal(str(total)) * multiplier
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
