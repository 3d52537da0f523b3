"""
Payment methods available at checkout.

- card: demo card form, waits a moment and reports success. No tokenization, no charge.
- paypal: hosted button checkout. The client creates a PayPal order, the buyer
  approves it in the PayPal popup and the approve callback hands the PayPal
  order id back to us for capture.
- cod: cash on delivery, nothing to capture.

PayPal falls back to simulated order ids when no API credentials are set.
"""
import os
import time
import uuid
import logging
from typing import Optional

import requests
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

CARD_PAYMENT_DELAY_SECONDS = float(os.getenv("CARD_PAYMENT_DELAY_SECONDS", "1"))
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
PAYPAL_API_BASE = os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com")
REQUEST_TIMEOUT = 15


class PaymentError(Exception):
    pass


class PaymentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    label: str
    reference: Optional[str] = None


class CardPayment:
    name = "card"
    label = "Credit Card"

    def __init__(self, delay: Optional[float] = None):
        self.delay = CARD_PAYMENT_DELAY_SECONDS if delay is None else delay

    def process(self, amount: float, currency: str = "USD", details: Optional[dict] = None) -> PaymentResult:
        logger.info("Processing demo card payment of %.2f %s", amount, currency)
        if self.delay:
            time.sleep(self.delay)
        return PaymentResult(method=self.name, label=self.label, reference=f"card_{uuid.uuid4().hex[:12]}")


class CashOnDelivery:
    name = "cod"
    label = "Cash on Delivery"

    def process(self, amount: float, currency: str = "USD", details: Optional[dict] = None) -> PaymentResult:
        logger.info("Cash on delivery order for %.2f %s", amount, currency)
        return PaymentResult(method=self.name, label=self.label)


class PayPalPayment:
    name = "paypal"
    label = "PayPal"

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None, api_base: Optional[str] = None):
        self.client_id = client_id if client_id is not None else PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else PAYPAL_CLIENT_SECRET
        self.api_base = api_base or PAYPAL_API_BASE

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _access_token(self) -> str:
        response = requests.post(
            f"{self.api_base}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()["access_token"]

    def create_order(self, amount: float, currency: str = "USD") -> str:
        if not self.configured:
            order_id = f"MOCK-{uuid.uuid4().hex[:16].upper()}"
            logger.warning("PayPal credentials missing, created simulated order %s", order_id)
            return order_id
        try:
            token = self._access_token()
            response = requests.post(
                f"{self.api_base}/v2/checkout/orders",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "intent": "CAPTURE",
                    "purchase_units": [{"amount": {"currency_code": currency, "value": f"{amount:.2f}"}}],
                },
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            return response.json()["id"]
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error("PayPal order creation failed: %s", e)
            raise PaymentError("Could not create PayPal order")

    def capture(self, paypal_order_id: str, amount: float, currency: str = "USD") -> dict:
        """Capture an approved order. Returns the PayPal capture response."""
        if not self.configured:
            logger.warning("PayPal credentials missing, treating %s as captured", paypal_order_id)
            return {
                "id": paypal_order_id,
                "status": "COMPLETED",
                "purchase_units": [{"payments": {"captures": [
                    {"amount": {"currency_code": currency, "value": f"{amount:.2f}"}},
                ]}}],
            }
        try:
            token = self._access_token()
            response = requests.post(
                f"{self.api_base}/v2/checkout/orders/{paypal_order_id}/capture",
                headers={"Authorization": f"Bearer {token}"},
                json={},
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error("PayPal capture of %s failed: %s", paypal_order_id, e)
            raise PaymentError("Could not capture PayPal payment")

    def process(self, amount: float, currency: str = "USD", details: Optional[dict] = None) -> PaymentResult:
        paypal_order_id = (details or {}).get("paypal_order_id")
        if not paypal_order_id:
            raise PaymentError("paypal_order_id is required for PayPal payments")
        captured = self.capture(paypal_order_id, amount, currency)
        status = captured.get("status", "")
        if status != "COMPLETED":
            raise PaymentError(f"PayPal payment not completed ({status})")
        if captured_amount(captured) != (round(amount, 2), currency):
            logger.error("PayPal order %s captured %s, expected %.2f %s",
                         paypal_order_id, captured_amount(captured), amount, currency)
            raise PaymentError("PayPal payment amount does not match the order total")
        return PaymentResult(method=self.name, label=self.label, reference=paypal_order_id)


def captured_amount(capture: dict):
    """(value, currency) of the first capture in a PayPal capture response, or None."""
    try:
        amount = capture["purchase_units"][0]["payments"]["captures"][0]["amount"]
        return round(float(amount["value"]), 2), amount["currency_code"]
    except (KeyError, IndexError, TypeError, ValueError):
        return None


PAYMENT_METHODS = {
    CardPayment.name: CardPayment,
    PayPalPayment.name: PayPalPayment,
    CashOnDelivery.name: CashOnDelivery,
}


def get_payment_method(name: str):
    try:
        return PAYMENT_METHODS[name]()
    except KeyError:
        raise PaymentError(f"Unsupported payment method: {name}")
