import os
import logging
from datetime import timezone
from numbers import Number
from typing import Optional

from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument

from database import DocumentNotFound, as_utc, object_id, serialize, utcnow
from schemas import ORDER_STATUSES, Order

logger = logging.getLogger(__name__)

SHIPPING_FLAT_RATE = float(os.getenv("SHIPPING_FLAT_RATE", "10"))
TAX_RATE = float(os.getenv("TAX_RATE", "0.08"))


class OrderValidationError(ValueError):
    pass


def remove_none_values(value):
    if isinstance(value, dict):
        return {k: remove_none_values(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [remove_none_values(v) for v in value]
    return value


def _is_number(value) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def validate_order(data: dict) -> dict:
    """Check an order payload before it is written. Returns the cleaned payload."""
    order = remove_none_values(data)

    items = order.get("items")
    if not items or not isinstance(items, list):
        raise OrderValidationError("Order must have at least one item")

    if not _is_number(order.get("total_amount")):
        raise OrderValidationError("Order must have a valid total amount")

    address = order.get("shipping_address")
    if not isinstance(address, dict) or not address.get("name"):
        raise OrderValidationError("Order must have valid shipping address information")

    if not order.get("payment_method"):
        raise OrderValidationError("Order must have a payment method")

    for index, item in enumerate(items):
        if (
            not isinstance(item, dict)
            or not item.get("product_id")
            or not item.get("title")
            or not _is_number(item.get("price"))
            or not _is_number(item.get("quantity"))
        ):
            raise OrderValidationError(f"Invalid item at index {index}")

    return order


def compute_totals(subtotal: float, discount: float = 0.0) -> dict:
    shipping = SHIPPING_FLAT_RATE
    tax = round(subtotal * TAX_RATE, 2)
    total = round(subtotal + shipping + tax - discount, 2)
    return {
        "subtotal": round(subtotal, 2),
        "shipping_cost": shipping,
        "tax": tax,
        "discount_amount": round(discount, 2),
        "total_amount": total,
    }


def track_order_completion(db) -> None:
    db["analytics_counter"].update_one(
        {"_id": "orders"},
        {"$inc": {"completed": 1}, "$set": {"last_completed_at": utcnow()}},
        upsert=True,
    )


def create_order(db, data: dict, user_id: Optional[str] = None) -> dict:
    cleaned = validate_order(data)
    cleaned["user_id"] = user_id or cleaned.get("user_id") or "guest"
    try:
        order = Order(**cleaned)
    except ValidationError as e:
        raise OrderValidationError(str(e))

    doc = order.model_dump()
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    doc["_id"] = db["order"].insert_one(doc).inserted_id
    logger.info("Order %s created for %s (%.2f)", doc["_id"], doc["user_id"], doc["total_amount"])

    track_order_completion(db)
    return doc


def get_order(db, order_id: str) -> dict:
    doc = db["order"].find_one({"_id": object_id(order_id)})
    if not doc:
        raise DocumentNotFound(order_id)
    return doc


def list_orders(db, user_id: Optional[str] = None, since=None) -> list:
    query = {}
    if user_id is not None:
        query["user_id"] = user_id
    if since is not None:
        # stored dates are naive UTC
        query["created_at"] = {"$gte": as_utc(since).astimezone(timezone.utc).replace(tzinfo=None)}
    return list(db["order"].find(query).sort("created_at", DESCENDING))


def update_order_status(db, order_id: str, status: str):
    """Set any status from any status. Returns (before, after) documents."""
    if status not in ORDER_STATUSES:
        raise OrderValidationError(f"Invalid status: {status}")
    before = db["order"].find_one_and_update(
        {"_id": object_id(order_id)},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        raise DocumentNotFound(order_id)
    after = {**before, "status": status}
    logger.info("Order %s status %s -> %s", order_id, before.get("status"), status)
    return before, after


def order_summary(order: dict) -> dict:
    order = serialize(order)
    return {
        "order_id": order["id"],
        "date": order.get("created_at"),
        "items": order.get("items", []),
        "shipping_address": order.get("shipping_address"),
        "payment_method": order.get("payment_method"),
        "subtotal": order.get("subtotal"),
        "shipping_cost": order.get("shipping_cost"),
        "tax": order.get("tax"),
        "discount": order.get("discount_amount", 0),
        "coupon_code": order.get("coupon_code"),
        "total": order.get("total_amount"),
        "status": order.get("status"),
    }
