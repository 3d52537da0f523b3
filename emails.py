"""
Transactional email.

Orders trigger email through `handle_order_write`, which is called after every
order write (creation or status change). It is the only path that sends order
email, so a customer gets one confirmation per order.

Providers:
    resend  - Resend HTTP API, plain text body built from the template params
    emailjs - EmailJS template API, params are rendered by the hosted template
    mock    - logs and reports success; also used when credentials are missing
"""
import os
import json
import time
import logging
from typing import Optional

import requests

from database import as_utc
from store_settings import format_price

logger = logging.getLogger(__name__)

EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "mock")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Store <orders@example.com>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = "https://api.resend.com/emails"
EMAILJS_API_URL = "https://api.emailjs.com/api/v1.0/email/send"
EMAILJS_SERVICE_ID = os.getenv("EMAILJS_SERVICE_ID")
EMAILJS_USER_ID = os.getenv("EMAILJS_USER_ID")
EMAILJS_TEMPLATES = {
    "confirmation": os.getenv("EMAILJS_TEMPLATE_ID_CONFIRMATION"),
    "admin": os.getenv("EMAILJS_TEMPLATE_ID_ADMIN"),
    # status updates reuse the confirmation template
    "status": os.getenv("EMAILJS_TEMPLATE_ID_CONFIRMATION"),
}
REQUEST_TIMEOUT = 10


class EmailClient:
    def __init__(self, provider: Optional[str] = None):
        self.provider = (provider or EMAIL_PROVIDER).lower()

    def _configured(self, template: str) -> bool:
        if self.provider == "resend":
            return bool(RESEND_API_KEY)
        if self.provider == "emailjs":
            return bool(EMAILJS_SERVICE_ID and EMAILJS_USER_ID and EMAILJS_TEMPLATES.get(template))
        return False

    def send(self, to: str, subject: str, template: str, params: dict) -> dict:
        if not self._configured(template):
            if self.provider != "mock":
                logger.warning("Email provider %s is missing configuration, using mock", self.provider)
            return self._send_mock(to, subject)
        try:
            if self.provider == "resend":
                return self._send_resend(to, subject, params)
            return self._send_emailjs(to, template, params)
        except requests.RequestException as e:
            logger.error("Failed to send %s email to %s: %s", template, to, e)
            return {"success": False, "error": str(e)}

    def _send_mock(self, to, subject):
        logger.info("[Mock] Sending email to %s: %s", to, subject)
        return {"success": True, "data": {"id": f"mock-email-{int(time.time() * 1000)}"}}

    def _send_resend(self, to, subject, params):
        response = requests.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {RESEND_API_KEY}"},
            json={"from": EMAIL_FROM, "to": to, "subject": subject, "text": render_text(params)},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        logger.info("Email sent to %s via Resend", to)
        return {"success": True, "data": response.json()}

    def _send_emailjs(self, to, template, params):
        response = requests.post(
            EMAILJS_API_URL,
            json={
                "service_id": EMAILJS_SERVICE_ID,
                "template_id": EMAILJS_TEMPLATES[template],
                "user_id": EMAILJS_USER_ID,
                "template_params": {**params, "to_email": to},
            },
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        logger.info("Email sent to %s via EmailJS template %s", to, template)
        return {"success": True}


def render_text(params: dict) -> str:
    lines = [f"{key.replace('_', ' ').capitalize()}: {value}" for key, value in params.items() if key != "order_items"]
    items = params.get("order_items")
    if items:
        lines.append("Items:")
        lines.extend(f"  {i['quantity']} x {i['name']} @ {i['price']}" for i in json.loads(items))
    return "\n".join(lines)


def order_email_params(order: dict) -> dict:
    address = order.get("shipping_address") or {}
    created = as_utc(order.get("created_at"))
    return {
        "order_id": str(order.get("_id") or order.get("id")),
        "customer_name": address.get("name") or "Customer",
        "customer_email": address.get("email") or "No email provided",
        "order_date": created.strftime("%Y-%m-%d") if created else "",
        "order_total": format_price(order.get("total_amount", 0)),
        "shipping_address": (
            f"{address.get('address', '')}, {address.get('city', '')}, "
            f"{address.get('state') or ''} {address.get('postal_code') or ''}"
        ).strip(),
        "order_items": json.dumps([
            {"name": i.get("title"), "quantity": i.get("quantity"), "price": format_price(i.get("price", 0))}
            for i in order.get("items", [])
        ]),
        "payment_method": order.get("payment_method"),
    }


def send_order_confirmation(order: dict, client: Optional[EmailClient] = None) -> Optional[dict]:
    email = (order.get("shipping_address") or {}).get("email")
    if not email:
        return None
    params = order_email_params(order)
    return (client or EmailClient()).send(email, f"Order Confirmation #{params['order_id']}", "confirmation", params)


def send_admin_notification(order: dict, client: Optional[EmailClient] = None) -> dict:
    params = order_email_params(order)
    return (client or EmailClient()).send(ADMIN_EMAIL, f"New Order #{params['order_id']}", "admin", params)


def send_status_update(order: dict, client: Optional[EmailClient] = None) -> Optional[dict]:
    email = (order.get("shipping_address") or {}).get("email")
    if not email:
        return None
    params = order_email_params(order)
    params.pop("order_items")
    params["order_status"] = order.get("status")
    params["status_message"] = f"Your order has been {order.get('status')}!"
    return (client or EmailClient()).send(email, f"Order #{params['order_id']} {order.get('status')}", "status", params)


def handle_order_write(before: Optional[dict], after: Optional[dict], client: Optional[EmailClient] = None) -> list:
    """Send the emails an order write calls for. Returns the provider results."""
    client = client or EmailClient()
    results = []
    try:
        if after is None:
            logger.info("Order %s was deleted, no email sent", before and before.get("_id"))
            return results

        if before is None:
            logger.info("New order %s created, sending emails", after.get("_id"))
            confirmation = send_order_confirmation(after, client)
            if confirmation is not None:
                results.append(confirmation)
            results.append(send_admin_notification(after, client))
            return results

        old_status, new_status = before.get("status"), after.get("status")
        if old_status != new_status:
            logger.info("Order %s status changed from %s to %s", after.get("_id"), old_status, new_status)
            if new_status == "shipped":
                update = send_status_update(after, client)
                if update is not None:
                    results.append(update)
    except Exception:
        # email is best effort, the order write already succeeded
        logger.exception("Error sending order emails")
    return results
