import logging
import math
import re
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, AliasChoices
from pydantic import ValidationError as SchemaError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .catalog import describe_schema_error
from .errors import NotFoundError, UpstreamError, ValidationError
from .helpers import (
    is_valid_email,
    isoformat,
    normalize_email,
    parse_object_id,
    utcnow,
)
from .pricing import resolve_line_items

logger = logging.getLogger(__name__)

PAYMENT_PENDING = "pending"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = {PAYMENT_PENDING, PAYMENT_SUCCEEDED, PAYMENT_FAILED}

FULFILLMENT_STATUSES = ("processing", "shipped", "delivered")
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
ORDER_NUMBER_ATTEMPTS = 5


class ShippingAddress(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = Field(
        None, validation_alias=AliasChoices("postcode", "postalCode", "postal_code", "zip")
    )
    country: Optional[str] = None


def generate_order_number() -> str:
    return f"ORD-{uuid4().hex[:10].upper()}"


def normalize_shipping_address(payload) -> Optional[Dict[str, str]]:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValidationError("shippingAddress must be an object.")
    try:
        address = ShippingAddress.model_validate(payload)
    except SchemaError as exc:
        raise ValidationError(describe_schema_error(exc))
    normalized = {
        field: str(value).strip()
        for field, value in address.model_dump(exclude_none=True).items()
        if str(value).strip()
    }
    return normalized or None


def parse_page_params(page, page_size):
    try:
        page_number = int(page or 1)
    except (TypeError, ValueError):
        page_number = 1
    try:
        size = int(page_size or DEFAULT_PAGE_SIZE)
    except (TypeError, ValueError):
        size = DEFAULT_PAGE_SIZE
    return max(page_number, 1), min(max(size, 1), MAX_PAGE_SIZE)


def serialize_line_item(item) -> Dict[str, object]:
    product_id = item.get("product_id")
    quantity = item.get("quantity") or 1
    unit_price = item.get("unit_price") or 0
    return {
        "productId": str(product_id) if product_id else None,
        "title": item.get("title") or "",
        "qty": quantity,
        "unitPrice": unit_price,
        "lineTotal": unit_price * quantity,
        "customization": item.get("customization"),
        "snapshot": item.get("snapshot"),
    }


def serialize_order(order_document) -> Optional[Dict[str, object]]:
    if not order_document:
        return None

    return {
        "id": str(order_document.get("_id") or ""),
        "orderNumber": order_document.get("order_number") or "",
        "userEmail": order_document.get("user_email") or None,
        "items": [
            serialize_line_item(item)
            for item in order_document.get("items") or []
            if isinstance(item, dict)
        ],
        "shippingAddress": order_document.get("shipping_address"),
        "paymentIntentId": order_document.get("payment_intent_id"),
        "paymentStatus": order_document.get("payment_status") or PAYMENT_PENDING,
        "fulfillmentStatus": order_document.get("fulfillment_status") or FULFILLMENT_STATUSES[0],
        "totalAmount": order_document.get("total_amount", 0),
        "createdAt": isoformat(order_document.get("created_at")),
        "updatedAt": isoformat(order_document.get("updated_at")),
    }


class OrderService:
    def __init__(self, db, catalog):
        self.collection = db.orders
        self.catalog = catalog

    def ensure_indexes(self):
        try:
            self.collection.create_index([("order_number", ASCENDING)], unique=True)
            self.collection.create_index([("payment_intent_id", ASCENDING)])
            self.collection.create_index([("created_at", DESCENDING)])
        except PyMongoError as exc:
            logger.warning("Unable to ensure indexes for orders: %s", exc)

    def create_order(
        self,
        requested_items,
        shipping_address=None,
        customer_email: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ) -> Dict:
        if not isinstance(requested_items, list) or not requested_items:
            raise ValidationError("Include at least one item to place an order.")

        normalized_email = normalize_email(customer_email)
        if normalized_email and not is_valid_email(normalized_email):
            raise ValidationError("Please provide a valid email address.")
        address = normalize_shipping_address(shipping_address)

        items, total = resolve_line_items(requested_items, self.catalog)

        timestamp = utcnow()
        order_document = {
            "user_email": normalized_email or None,
            "items": items,
            "shipping_address": address,
            "payment_intent_id": str(payment_intent_id or "").strip() or None,
            "payment_status": PAYMENT_PENDING,
            "fulfillment_status": FULFILLMENT_STATUSES[0],
            "total_amount": total,
            "created_at": timestamp,
            "updated_at": timestamp,
        }

        for _ in range(ORDER_NUMBER_ATTEMPTS):
            order_document["order_number"] = generate_order_number()
            order_document.pop("_id", None)
            try:
                result = self.collection.insert_one(order_document)
            except DuplicateKeyError:
                logger.warning(
                    "Order number %s already taken, generating another",
                    order_document["order_number"],
                )
                continue
            order_document["_id"] = result.inserted_id
            logger.info(
                "Created order %s (%s) for %s items, total %s",
                order_document["order_number"],
                result.inserted_id,
                len(items),
                total,
            )
            return order_document

        raise UpstreamError("Could not allocate an order number. Please try again.", retryable=True)

    def get_order(self, order_id: str) -> Dict:
        object_id = parse_object_id(order_id)
        if object_id is None:
            raise ValidationError("Invalid order identifier.")
        order_document = self.collection.find_one({"_id": object_id})
        if not order_document:
            raise NotFoundError("Order not found.")
        return order_document

    def list_orders(self, page=1, page_size=DEFAULT_PAGE_SIZE, search: str = "") -> Dict:
        page, page_size = parse_page_params(page, page_size)
        search_term = str(search or "").strip()

        query: Dict[str, object] = {}
        if search_term:
            regex = re.compile(re.escape(search_term), re.IGNORECASE)
            query["$or"] = [{"order_number": regex}, {"user_email": regex}]

        total = self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * page_size)
            .limit(page_size)
        )
        return {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "pages": math.ceil(total / page_size) if total else 0,
            "orders": [serialize_order(document) for document in cursor],
        }

    def update_fulfillment_status(self, order_id: str, status) -> Dict:
        object_id = parse_object_id(order_id)
        if object_id is None:
            raise ValidationError("Invalid order identifier.")
        normalized_status = str(status or "").strip().lower()
        if normalized_status not in FULFILLMENT_STATUSES:
            raise ValidationError(
                f"Fulfillment status must be one of: {', '.join(FULFILLMENT_STATUSES)}."
            )

        order_document = self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": {"fulfillment_status": normalized_status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not order_document:
            raise NotFoundError("Order not found.")
        logger.info("Order %s fulfillment status set to %s", object_id, normalized_status)
        return order_document

    def attach_payment_intent(self, order_id, payment_intent_id: str) -> bool:
        object_id = parse_object_id(order_id)
        if object_id is None:
            logger.warning("Payment intent %s names invalid order id %r", payment_intent_id, order_id)
            return False
        result = self.collection.update_one(
            {"_id": object_id},
            {"$set": {"payment_intent_id": payment_intent_id, "updated_at": utcnow()}},
        )
        if not result.matched_count:
            logger.warning("Payment intent %s names unknown order %s", payment_intent_id, object_id)
            return False
        return True

    def find_for_payment(self, payment_intent_id: str, order_id=None) -> Optional[Dict]:
        """Locate an order by correlation id, falling back to the intent id."""
        if order_id:
            object_id = parse_object_id(order_id)
            order_document = (
                self.collection.find_one({"_id": object_id}) if object_id is not None else None
            )
            if order_document:
                return order_document
            logger.warning(
                "Order %r from payment metadata not found, trying payment intent %s",
                order_id,
                payment_intent_id,
            )
        if not payment_intent_id:
            return None
        return self.collection.find_one({"payment_intent_id": payment_intent_id})

    def apply_payment_result(self, payment_intent_id: str, status: str, order_id=None) -> Optional[Dict]:
        """Move a pending order to a terminal payment status.

        Re-applying the status an order already has is a no-op success.
        Returns the updated order, or None when no order matched.
        """
        if status not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
            raise ValueError(f"Not a terminal payment status: {status!r}")

        order_document = self.find_for_payment(payment_intent_id, order_id)
        if not order_document:
            return None

        current_status = order_document.get("payment_status") or PAYMENT_PENDING
        if current_status not in (PAYMENT_PENDING, status):
            logger.warning(
                "Order %s is already %s; ignoring %s notification for %s",
                order_document["_id"],
                current_status,
                status,
                payment_intent_id,
            )
            return order_document

        changes = {"payment_status": status, "updated_at": utcnow()}
        if payment_intent_id:
            changes["payment_intent_id"] = payment_intent_id
        updated = self.collection.find_one_and_update(
            {"_id": order_document["_id"], "payment_status": {"$in": [PAYMENT_PENDING, status]}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # another notification won the race to a different terminal status
            return self.collection.find_one({"_id": order_document["_id"]})
        logger.info("Order %s marked as %s (%s)", updated["_id"], status, payment_intent_id)
        return updated
