from datetime import datetime, timedelta, timezone

import pytest

import storage
from orders import create_order


@pytest.fixture
def product_payload():
    return {
        "title": "Linen Shirt",
        "description": "Breathable summer shirt",
        "price": 49.0,
        "category": "Shirts",
        "image": "/uploads/products/shirt.jpg",
        "available_colors": "white, sand ,",
        "available_sizes": "S,M,L",
        "featured": True,
    }


def coupon_payload(**overrides):
    now = datetime.now(timezone.utc)
    payload = {
        "code": " spring20 ",
        "discount_type": "percentage",
        "discount_value": 20,
        "min_purchase": 50,
        "start_date": (now - timedelta(days=1)).isoformat(),
        "end_date": (now + timedelta(days=30)).isoformat(),
        "usage_limit": 100,
    }
    payload.update(overrides)
    return payload


def test_product_crud(client, db, admin_headers, product_payload):
    created = client.post("/api/admin/products", json=product_payload, headers=admin_headers).json()
    assert created["available_colors"] == ["white", "sand"]
    assert created["available_sizes"] == ["S", "M", "L"]
    assert created["images"] == ["/uploads/products/shirt.jpg"]
    assert "created_at" in created

    product_payload.update(price=39.0, available_colors=["white"])
    updated = client.put(f"/api/admin/products/{created['id']}", json=product_payload, headers=admin_headers).json()
    assert updated["price"] == 39.0
    assert updated["available_colors"] == ["white"]

    assert client.delete(f"/api/admin/products/{created['id']}", headers=admin_headers).json() == {"ok": True}
    assert db["product"].count_documents({}) == 0
    assert client.delete(f"/api/admin/products/{created['id']}", headers=admin_headers).status_code == 404


def test_shoppers_cannot_write_products(client, user_headers, product_payload):
    assert client.post("/api/admin/products", json=product_payload, headers=user_headers).status_code == 403


def test_image_upload(client, admin_headers, monkeypatch, tmp_path):
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))

    response = client.post(
        "/api/admin/uploads",
        files={"file": ("shirt.png", b"\x89PNG fake", "image/png")},
        headers=admin_headers,
    )

    url = response.json()["url"]
    assert url.startswith("/uploads/products/") and url.endswith(".png")
    stored = tmp_path / "products" / url.rsplit("/", 1)[1]
    assert stored.read_bytes() == b"\x89PNG fake"


def test_upload_rejects_non_images(client, admin_headers, monkeypatch, tmp_path):
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))

    response = client.post(
        "/api/admin/uploads",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Only image uploads are allowed"


def test_blog_crud_removes_comments(client, db, admin_headers):
    blog = {"title": "Summer edit", "content": "Linen all season.", "author": "Store", "tags": ["style"]}
    created = client.post("/api/admin/blogs", json=blog, headers=admin_headers).json()
    client.post(f"/api/blogs/{created['id']}/comments", json={"author": "Ada", "body": "Nice"})

    blog["featured"] = True
    updated = client.put(f"/api/admin/blogs/{created['id']}", json=blog, headers=admin_headers).json()
    assert updated["featured"] is True

    client.delete(f"/api/admin/blogs/{created['id']}", headers=admin_headers)
    assert db["blog"].count_documents({}) == 0
    assert db["comment"].count_documents({}) == 0


def test_coupon_crud_and_status(client, db, admin_headers):
    created = client.post("/api/admin/coupons", json=coupon_payload(), headers=admin_headers).json()
    assert created["code"] == "SPRING20"
    assert created["usage_count"] == 0

    client.post(
        "/api/admin/coupons",
        json=coupon_payload(code="LATER", start_date=(datetime.now(timezone.utc) + timedelta(days=5)).isoformat()),
        headers=admin_headers,
    )
    listed = {c["code"]: c["status"] for c in client.get("/api/admin/coupons", headers=admin_headers).json()}
    assert listed == {"SPRING20": "active", "LATER": "scheduled"}

    updated = client.put(
        f"/api/admin/coupons/{created['id']}", json=coupon_payload(is_active=False), headers=admin_headers
    ).json()
    assert updated["is_active"] is False

    assert client.delete(f"/api/admin/coupons/{created['id']}", headers=admin_headers).json() == {"ok": True}
    assert db["coupon"].count_documents({}) == 1


@pytest.mark.parametrize("overrides", [
    {"discount_value": 150},
    {"end_date": (datetime.now(timezone.utc) - timedelta(days=10)).isoformat()},
])
def test_invalid_coupons_are_rejected(client, admin_headers, overrides):
    response = client.post("/api/admin/coupons", json=coupon_payload(**overrides), headers=admin_headers)
    assert response.status_code == 400


def test_duplicate_coupon_code(client, admin_headers):
    client.post("/api/admin/coupons", json=coupon_payload(), headers=admin_headers)
    response = client.post("/api/admin/coupons", json=coupon_payload(code="SPRING20"), headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Coupon code already exists"


def test_order_status_update_and_filter(client, db, admin_headers, shipping_address):
    order = create_order(db, {
        "items": [{"product_id": "a", "title": "Linen Shirt", "price": 10.0, "quantity": 1}],
        "total_amount": 20.8,
        "shipping_address": shipping_address,
        "payment_method": "Credit Card",
    })

    response = client.patch(
        f"/api/admin/orders/{order['_id']}/status", json={"status": "shipped"}, headers=admin_headers
    )
    assert response.json()["status"] == "shipped"

    shipped = client.get("/api/admin/orders?status=shipped", headers=admin_headers).json()
    assert [o["id"] for o in shipped] == [str(order["_id"])]
    assert client.get("/api/admin/orders?status=pending", headers=admin_headers).json() == []

    bad = client.patch(f"/api/admin/orders/{order['_id']}/status", json={"status": "lost"}, headers=admin_headers)
    assert bad.status_code == 422


def test_analytics_route(client, db, admin_headers, shipping_address):
    for total in (20.0, 40.0):
        create_order(db, {
            "items": [{"product_id": "a", "title": "Linen Shirt", "price": 10.0, "quantity": 1}],
            "total_amount": total,
            "shipping_address": shipping_address,
            "payment_method": "Cash on Delivery",
        })

    summary = client.get("/api/admin/analytics?period=week", headers=admin_headers).json()

    assert summary["period"] == "week"
    assert summary["total_orders"] == 2
    assert summary["total_revenue"] == 60.0
    assert summary["average_order_value"] == 30.0
    assert summary["completed_orders_all_time"] == 2
    assert summary["top_products"][0]["quantity"] == 2


def test_settings_update(client, admin_headers):
    settings = {
        "currency": {"code": "EUR", "symbol": "€", "position": "after"},
        "region": {"country": "European Union", "country_code": "EU", "timezone": "Europe/Brussels"},
    }

    assert client.put("/api/admin/settings", json=settings, headers=admin_headers).json() == settings
    assert client.get("/api/settings").json() == settings


def test_upload_folder_must_be_known(client, admin_headers, monkeypatch, tmp_path):
    upload_dir = tmp_path / "uploads"
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(upload_dir))

    response = client.post(
        "/api/admin/uploads?folder=../escaped",
        files={"file": ("shirt.png", b"\x89PNG fake", "image/png")},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert [p.name for p in tmp_path.iterdir()] == []


def test_upload_extension_comes_from_content_type(client, admin_headers, monkeypatch, tmp_path):
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(tmp_path))

    rejected = client.post(
        "/api/admin/uploads",
        files={"file": ("page.html", b"<script></script>", "image/x-icon")},
        headers=admin_headers,
    )
    renamed = client.post(
        "/api/admin/uploads?folder=blogs",
        files={"file": ("page.html", b"\xff\xd8 fake", "image/jpeg")},
        headers=admin_headers,
    )

    assert rejected.status_code == 400
    assert renamed.json()["url"].startswith("/uploads/blogs/")
    assert renamed.json()["url"].endswith(".jpg")
