"""Product catalog stored in the ``products`` collection."""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as SchemaError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import NotFoundError, ValidationError
from .helpers import isoformat, parse_object_id, slugify, utcnow

logger = logging.getLogger(__name__)

READ_ONLY_PRODUCT_FIELDS = ("id", "_id", "createdAt", "updatedAt", "created_at", "updated_at")


class CustomizationField(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["text", "select", "color", "range"]
    label: Optional[str] = None
    default: Any = None
    options: Optional[List[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_kind_constraints(self):
        if self.type == "select" and not self.options:
            raise ValueError("select fields need at least one option")
        if (
            self.type == "range"
            and self.min is not None
            and self.max is not None
            and self.min > self.max
        ):
            raise ValueError("range fields need min <= max")
        return self


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    is_customizable: Optional[bool] = Field(None, alias="isCustomizable")
    customization_schema: Optional[Dict[str, CustomizationField]] = Field(
        None, alias="customizationSchema"
    )
    inventory_count: Optional[int] = Field(None, ge=0, alias="inventoryCount")


class ProductCreate(ProductUpdate):
    title: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)


def describe_schema_error(exc: SchemaError) -> str:
    problems = []
    for error in exc.errors(include_url=False):
        location = ".".join(str(part) for part in error.get("loc", ())) or "body"
        problems.append(f"{location}: {error.get('msg')}")
    return "; ".join(problems) or "Invalid request body."


def serialize_product(product_document) -> Optional[Dict[str, object]]:
    if not product_document:
        return None

    schema = product_document.get("customization_schema") or {}
    return {
        "id": str(product_document.get("_id") or ""),
        "title": product_document.get("title") or "",
        "slug": product_document.get("slug") or "",
        "description": product_document.get("description") or "",
        "price": product_document.get("price", 0),
        "category": product_document.get("category") or "",
        "images": list(product_document.get("images") or []),
        "isCustomizable": bool(product_document.get("is_customizable")),
        "customizationSchema": {
            name: {key: value for key, value in field.items() if value is not None}
            for name, field in schema.items()
            if isinstance(field, dict)
        },
        "inventoryCount": int(product_document.get("inventory_count") or 0),
        "createdAt": isoformat(product_document.get("created_at")),
        "updatedAt": isoformat(product_document.get("updated_at")),
    }


class ProductCatalog:
    def __init__(self, db):
        self.collection = db.products

    def ensure_indexes(self):
        try:
            self.collection.create_index([("slug", ASCENDING)], unique=True)
            self.collection.create_index([("created_at", DESCENDING)])
        except PyMongoError as exc:
            logger.warning("Unable to ensure indexes for products: %s", exc)

    def list_products(self, category: Optional[str] = None) -> List[Dict]:
        query: Dict[str, object] = {}
        if category:
            query["category"] = category
        return list(self.collection.find(query).sort([("created_at", -1), ("_id", -1)]))

    def get_by_slug(self, slug: str) -> Dict:
        product_document = self.collection.find_one({"slug": str(slug or "").strip()})
        if not product_document:
            raise NotFoundError("Product not found.")
        return product_document

    def get_product(self, product_id: str) -> Dict:
        object_id = parse_object_id(product_id)
        if object_id is None:
            raise ValidationError("Invalid product identifier.")
        product_document = self.collection.find_one({"_id": object_id})
        if not product_document:
            raise NotFoundError("Product not found.")
        return product_document

    def find_by_id(self, product_id) -> Optional[Dict]:
        object_id = parse_object_id(product_id)
        if object_id is None:
            return None
        return self.collection.find_one({"_id": object_id})

    def create_product(self, body) -> Dict:
        if not isinstance(body, dict):
            raise ValidationError("Product details must be a JSON object.")
        try:
            payload = ProductCreate.model_validate(body)
        except SchemaError as exc:
            raise ValidationError(describe_schema_error(exc))

        product_document = payload.model_dump(exclude_unset=True)
        product_document["slug"] = slugify(payload.slug or payload.title)
        product_document.setdefault("is_customizable", False)
        product_document.setdefault("customization_schema", {})
        product_document.setdefault("inventory_count", 0)
        product_document.setdefault("images", [])
        timestamp = utcnow()
        product_document["created_at"] = timestamp
        product_document["updated_at"] = timestamp

        try:
            result = self.collection.insert_one(product_document)
        except DuplicateKeyError:
            raise ValidationError(
                f"A product with slug '{product_document['slug']}' already exists."
            )
        product_document["_id"] = result.inserted_id
        logger.info("Created product %s (%s)", result.inserted_id, product_document["slug"])
        return product_document

    def update_product(self, product_id: str, body) -> Dict:
        object_id = parse_object_id(product_id)
        if object_id is None:
            raise ValidationError("Invalid product identifier.")
        if not isinstance(body, dict):
            raise ValidationError("Product details must be a JSON object.")

        editable = {
            key: value for key, value in body.items() if key not in READ_ONLY_PRODUCT_FIELDS
        }
        try:
            payload = ProductUpdate.model_validate(editable)
        except SchemaError as exc:
            raise ValidationError(describe_schema_error(exc))

        changes = payload.model_dump(exclude_unset=True)
        for required_field in ("title", "slug", "price"):
            if required_field in changes and changes[required_field] is None:
                raise ValidationError(f"{required_field} cannot be empty.")
        if changes.get("slug"):
            changes["slug"] = slugify(changes["slug"])
        changes["updated_at"] = utcnow()

        try:
            product_document = self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ValidationError(f"A product with slug '{changes.get('slug')}' already exists.")
        if not product_document:
            raise NotFoundError("Product not found.")
        return product_document

    def seed(self, products: List[Dict]) -> int:
        """Upsert the given products by slug; returns how many were inserted."""
        inserted = 0
        for raw_product in products:
            payload = ProductCreate.model_validate(raw_product)
            fields = payload.model_dump(exclude_unset=True)
            fields["slug"] = slugify(payload.slug or payload.title)
            timestamp = utcnow()
            fields["updated_at"] = timestamp
            result = self.collection.update_one(
                {"slug": fields["slug"]},
                {"$set": fields, "$setOnInsert": {"created_at": timestamp}},
                upsert=True,
            )
            if result.upserted_id is not None:
                inserted += 1
        return inserted
