from unittest.mock import MagicMock, patch

import pytest

from payments import (
    CardPayment, CashOnDelivery, PaymentError, PayPalPayment, captured_amount, get_payment_method,
)


def json_response(body):
    response = MagicMock()
    response.json.return_value = body
    return response


def capture_body(value, currency="USD", status="COMPLETED"):
    return {
        "id": "PAYPAL-1",
        "status": status,
        "purchase_units": [{"payments": {"captures": [{"amount": {"currency_code": currency, "value": value}}]}}],
    }


@pytest.fixture
def paypal():
    return PayPalPayment(client_id="client", client_secret="secret", api_base="https://paypal.test")


def test_capture_matching_total(paypal):
    with patch("payments.requests.post", side_effect=[
        json_response({"access_token": "tok"}), json_response(capture_body("37.00")),
    ]) as post:
        result = paypal.process(37.0, details={"paypal_order_id": "PAYPAL-1"})

    assert result.reference == "PAYPAL-1"
    assert result.label == "PayPal"
    assert post.call_args.args[0] == "https://paypal.test/v2/checkout/orders/PAYPAL-1/capture"


@pytest.mark.parametrize("body", [
    capture_body("1.00"),
    capture_body("500.00", currency="EUR"),
    {"id": "PAYPAL-1", "status": "COMPLETED"},
])
def test_capture_for_a_different_amount_is_rejected(paypal, body):
    with patch("payments.requests.post", side_effect=[json_response({"access_token": "tok"}), json_response(body)]):
        with pytest.raises(PaymentError, match="does not match"):
            paypal.process(500.0, details={"paypal_order_id": "PAYPAL-1"})


def test_incomplete_capture_is_rejected(paypal):
    with patch("payments.requests.post", side_effect=[
        json_response({"access_token": "tok"}), json_response(capture_body("37.00", status="PENDING")),
    ]):
        with pytest.raises(PaymentError, match="not completed"):
            paypal.process(37.0, details={"paypal_order_id": "PAYPAL-1"})


def test_malformed_token_response_is_a_payment_error(paypal):
    with patch("payments.requests.post", return_value=json_response({})):
        with pytest.raises(PaymentError, match="Could not capture"):
            paypal.process(37.0, details={"paypal_order_id": "PAYPAL-1"})


def test_simulated_paypal_without_credentials():
    paypal = PayPalPayment(client_id="", client_secret="")

    with patch("payments.requests.post") as post:
        order_id = paypal.create_order(12.5)
        result = paypal.process(12.5, details={"paypal_order_id": order_id})

    post.assert_not_called()
    assert order_id.startswith("MOCK-")
    assert result.reference == order_id


def test_captured_amount():
    assert captured_amount(capture_body("12.50", "GBP")) == (12.5, "GBP")
    assert captured_amount({"purchase_units": []}) is None


def test_card_and_cash_on_delivery():
    card = CardPayment(delay=0).process(10)
    assert card.label == "Credit Card"
    assert card.reference.startswith("card_")
    assert CashOnDelivery().process(10).reference is None


def test_unknown_method():
    assert isinstance(get_payment_method("cod"), CashOnDelivery)
    with pytest.raises(PaymentError):
        get_payment_method("bitcoin")
