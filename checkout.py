"""
Checkout wizard.

A checkout session walks cart -> shipping -> payment -> confirmation and only
moves forward. Submitting payment is guarded by the `form_submitted` flag,
set with a conditional update so a double click or a retried request cannot
place the same session's order twice. Once `order_complete` is set, further
submits return the order that was already placed.
"""
import logging
from typing import Iterable, Optional

from pymongo import ReturnDocument

import coupons
import orders
from cart import Cart, CartItem
from database import DocumentNotFound, object_id, serialize, utcnow
from payments import get_payment_method
from schemas import ShippingAddress
from store_settings import get_store_settings

logger = logging.getLogger(__name__)

STEPS = ("cart", "shipping", "payment", "confirmation")


class CheckoutError(ValueError):
    pass


class CheckoutConflict(CheckoutError):
    """Payment for this session is already being processed."""


def get_session(db, session_id: str) -> dict:
    session = db["checkout_session"].find_one({"_id": object_id(session_id)})
    if not session:
        raise DocumentNotFound(session_id)
    return session


def _require_step(session: dict, *allowed: str) -> None:
    if session["step"] not in allowed:
        raise CheckoutError(f"Checkout is at the {session['step']} step, expected {' or '.join(allowed)}")


def _update(db, session_id, fields: dict) -> dict:
    fields["updated_at"] = utcnow()
    return db["checkout_session"].find_one_and_update(
        {"_id": session_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )


def session_view(session: dict) -> dict:
    view = serialize(session)
    if session.get("order_complete"):
        # the cart moved into the order, nothing is left to pay here
        view.update(subtotal=0.0, shipping_cost=0.0, tax=0.0, discount_amount=0.0, total_amount=0.0)
    else:
        view.update(orders.compute_totals(session.get("subtotal", 0.0), session.get("discount_amount", 0.0)))
    view["current_step"] = STEPS.index(session["step"])
    return view


def start_session(db, items: Iterable[CartItem], user_id: Optional[str] = None) -> dict:
    cart = Cart.from_items(items)
    now = utcnow()
    session = {
        "user_id": user_id or "guest",
        "step": "cart",
        "items": cart.to_dicts(),
        "subtotal": cart.total,
        "shipping_address": None,
        "coupon_code": None,
        "discount_amount": 0.0,
        "form_submitted": False,
        "order_complete": False,
        "order_id": None,
        "created_at": now,
        "updated_at": now,
    }
    session["_id"] = db["checkout_session"].insert_one(session).inserted_id
    return session


def confirm_cart(db, session_id: str) -> dict:
    session = get_session(db, session_id)
    _require_step(session, "cart")
    if not session["items"]:
        raise CheckoutError("Your cart is empty")
    return _update(db, session["_id"], {"step": "shipping"})


def submit_shipping(db, session_id: str, address: ShippingAddress) -> dict:
    session = get_session(db, session_id)
    _require_step(session, "shipping", "payment")
    return _update(db, session["_id"], {"shipping_address": address.model_dump(), "step": "payment"})


def apply_coupon(db, session_id: str, code: str) -> dict:
    session = get_session(db, session_id)
    _require_step(session, "cart", "shipping", "payment")
    _, discount = coupons.apply_coupon(db, code, session["subtotal"])
    return _update(db, session["_id"], {"coupon_code": coupons.normalize_code(code), "discount_amount": discount})


def submit_payment(db, session_id: str, method: str, details: Optional[dict] = None):
    """Pay and place the order. Returns (order, created)."""
    session = get_session(db, session_id)
    if session.get("order_complete"):
        return orders.get_order(db, str(session["order_id"])), False
    _require_step(session, "payment")

    locked = db["checkout_session"].find_one_and_update(
        {"_id": session["_id"], "form_submitted": False, "order_complete": False},
        {"$set": {"form_submitted": True, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if locked is None:
        raise CheckoutConflict("Order is already being submitted")

    try:
        coupon = None
        discount = 0.0
        if locked.get("coupon_code"):
            # re-check, the coupon may have run out since it was applied
            coupon, discount = coupons.apply_coupon(db, locked["coupon_code"], locked["subtotal"])

        totals = orders.compute_totals(locked["subtotal"], discount)
        processor = get_payment_method(method)
        currency = get_store_settings(db).currency.code
        payment = processor.process(totals["total_amount"], currency=currency, details=details)

        order = orders.create_order(
            db,
            {
                "items": locked["items"],
                "shipping_address": locked.get("shipping_address"),
                "payment_method": payment.label,
                "payment_reference": payment.reference,
                "coupon_code": locked.get("coupon_code"),
                **totals,
            },
            user_id=locked["user_id"],
        )
    except Exception:
        logger.exception("Checkout %s failed, releasing submit guard", session_id)
        _update(db, session["_id"], {"form_submitted": False})
        raise

    _update(db, session["_id"], {
        "order_complete": True,
        "order_id": order["_id"],
        "step": "confirmation",
        "items": [],
        "subtotal": 0.0,
        "discount_amount": 0.0,
    })
    if coupon is not None:
        coupons.increment_usage(db, coupon["_id"])
    return order, True
