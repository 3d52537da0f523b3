import logging
from datetime import datetime
from typing import Optional, Tuple

from pymongo import ReturnDocument

from database import as_utc, utcnow

logger = logging.getLogger(__name__)


class CouponError(ValueError):
    """Raised when a coupon cannot be applied to an amount."""


def normalize_code(code: str) -> str:
    return code.strip().upper()


def find_coupon(db, code: str) -> Optional[dict]:
    return db["coupon"].find_one({"code": normalize_code(code)})


def validate_coupon(coupon: Optional[dict], amount: float, now: Optional[datetime] = None) -> float:
    """Return the discount `coupon` gives on `amount`, or raise CouponError."""
    if not coupon:
        raise CouponError("Invalid coupon code")

    now = now or utcnow()

    if not coupon.get("is_active", True):
        raise CouponError("Coupon is inactive")

    start = as_utc(coupon.get("start_date"))
    end = as_utc(coupon.get("end_date"))
    if (start and start > now) or (end and end < now):
        raise CouponError("Coupon has expired")

    limit = coupon.get("usage_limit")
    if limit and coupon.get("usage_count", 0) >= limit:
        raise CouponError("Coupon usage limit reached")

    min_purchase = coupon.get("min_purchase")
    if min_purchase and amount < min_purchase:
        raise CouponError(f"Minimum purchase amount of ${min_purchase:.2f} required")

    if coupon["discount_type"] == "percentage":
        discount = amount * float(coupon["discount_value"]) / 100
    else:
        discount = float(coupon["discount_value"])

    return round(min(discount, amount), 2)


def apply_coupon(db, code: str, amount: float, now: Optional[datetime] = None) -> Tuple[dict, float]:
    coupon = find_coupon(db, code)
    return coupon, validate_coupon(coupon, amount, now)


def increment_usage(db, coupon_id) -> Optional[dict]:
    updated = db["coupon"].find_one_and_update(
        {"_id": coupon_id},
        {"$inc": {"usage_count": 1}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.error("Coupon %s not found while recording usage", coupon_id)
    else:
        logger.info("Coupon %s redeemed (%s uses)", updated.get("code"), updated.get("usage_count"))
    return updated
