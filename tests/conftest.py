import mongomock
import pytest
from fastapi.testclient import TestClient

import payments
from database import get_db
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture(autouse=True)
def no_card_delay(monkeypatch):
    monkeypatch.setattr(payments, "CARD_PAYMENT_DELAY_SECONDS", 0)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register_and_login(client, email, password="secret123"):
    client.post("/api/register", json={"email": email, "password": password, "display_name": email.split("@")[0]})
    response = client.post("/api/login", data={"username": email, "password": password})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def user_headers(client):
    return register_and_login(client, "shopper@example.com")


@pytest.fixture
def admin_headers(client, db):
    headers = register_and_login(client, "admin@example.com")
    user = db["user"].find_one({"email": "admin@example.com"})
    db["user_role"].update_one({"user_id": str(user["_id"])}, {"$set": {"is_admin": True}})
    return headers


@pytest.fixture
def shipping_address():
    return {
        "name": "Ada Lovelace",
        "address": "12 Analytical Way",
        "city": "London",
        "state": "LDN",
        "postal_code": "N1 9GU",
        "country": "United Kingdom",
        "email": "ada@example.com",
        "phone": "+44 20 0000 0000",
    }


@pytest.fixture
def cart_lines():
    return [
        {"product_id": "a", "title": "Linen Shirt", "price": 10.0, "quantity": 2, "size": "M"},
        {"product_id": "b", "title": "Canvas Tote", "price": 5.0, "quantity": 1},
    ]
