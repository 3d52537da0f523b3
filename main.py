import os
import re
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo import DESCENDING

import analytics
import checkout
import coupons
import emails
import orders
import storage
from auth import (
    Token, UserOut, create_access_token, get_current_user, get_optional_user, get_password_hash,
    oauth2_scheme, require_admin, revoke_token, user_out, verify_password,
)
from cart import Cart, CartItem
from database import DocumentNotFound, as_utc, create_document, get_db, get_documents, object_id, serialize, utcnow
from payments import PayPalPayment, PaymentError
from schemas import (
    Blog as BlogSchema, Comment as CommentSchema, Coupon as CouponSchema, OrderStatus,
    Product as ProductSchema, Review as ReviewSchema, ShippingAddress, StoreSettings,
    User as UserSchema, UserRole as UserRoleSchema,
)
from store_settings import CURRENCY_OPTIONS, REGION_OPTIONS, get_store_settings, update_store_settings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(storage.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=storage.UPLOAD_DIR, check_dir=False), name="uploads")


# Error mapping
def _error(status_code: int, detail: str):
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(DocumentNotFound)
def not_found_handler(request: Request, exc: DocumentNotFound):
    return _error(404, "Not found")


@app.exception_handler(checkout.CheckoutConflict)
def conflict_handler(request: Request, exc: checkout.CheckoutConflict):
    return _error(409, str(exc))


@app.exception_handler(checkout.CheckoutError)
@app.exception_handler(coupons.CouponError)
@app.exception_handler(orders.OrderValidationError)
@app.exception_handler(PaymentError)
@app.exception_handler(storage.UploadError)
def bad_request_handler(request: Request, exc: Exception):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return _error(400, str(exc))


# Helpers
def require_db(db=Depends(get_db)):
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def split_csv(value):
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
        return parts or None
    return value or None


def _owner_or_admin(order: dict, current: Optional[UserOut]):
    if order.get("user_id") == "guest":
        return
    if current is None or (current.id != order.get("user_id") and not current.is_admin):
        raise HTTPException(403, "Not allowed to view this order")


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# Auth
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    display_name: str = ""


@app.post("/api/register", response_model=UserOut)
def register(payload: RegisterRequest, db=Depends(require_db)):
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(400, "Email already registered")
    user_id = create_document(db, "user", UserSchema(
        email=payload.email,
        display_name=payload.display_name,
        password_hash=get_password_hash(payload.password),
    ))
    create_document(db, "user_role", UserRoleSchema(user_id=user_id))
    logger.info("User %s registered", user_id)
    return user_out(db, db["user"].find_one({"_id": object_id(user_id)}))


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(require_db)):
    user = db["user"].find_one({"email": form_data.username})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(400, "Incorrect email or password")
    access_token = create_access_token({"sub": str(user["_id"])})
    return Token(access_token=access_token)


@app.post("/api/logout")
def logout(token: str = Depends(oauth2_scheme), current: UserOut = Depends(get_current_user), db=Depends(require_db)):
    revoke_token(db, token)
    return {"ok": True}


@app.get("/api/me", response_model=UserOut)
def me(current: UserOut = Depends(get_current_user)):
    return current


@app.get("/api/me/orders")
def my_orders(current: UserOut = Depends(get_current_user), db=Depends(require_db)):
    return [serialize(o) for o in orders.list_orders(db, user_id=current.id)]


# Catalog
@app.get("/api/categories")
def list_categories(db=Depends(require_db)):
    return sorted(db["product"].distinct("category"))


@app.get("/api/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|rating_desc"),
    db=Depends(require_db),
):
    filter_q = {}
    if q:
        filter_q["$or"] = [
            {"title": {"$regex": re.escape(q), "$options": "i"}},
            {"description": {"$regex": re.escape(q), "$options": "i"}},
        ]
    if category:
        filter_q["category"] = category
    if featured is not None:
        filter_q["featured"] = featured
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["price"] = price_filter

    sort_spec = None
    if sort == "price_asc":
        sort_spec = [("price", 1)]
    elif sort == "price_desc":
        sort_spec = [("price", -1)]
    elif sort == "rating_desc":
        sort_spec = [("rating", -1)]

    total = db["product"].count_documents(filter_q)
    cursor = db["product"].find(filter_q)
    if sort_spec:
        cursor = cursor.sort(sort_spec)
    cursor = cursor.skip((page - 1) * limit).limit(limit)

    return {"items": [serialize(d) for d in cursor], "page": page, "limit": limit, "total": total}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(require_db)):
    prod = db["product"].find_one({"_id": object_id(product_id)})
    if not prod:
        raise HTTPException(404, "Product not found")
    related = get_documents(db, "product", {"category": prod["category"], "_id": {"$ne": prod["_id"]}}, limit=4)
    return {"product": serialize(prod), "related": [serialize(r) for r in related]}


@app.get("/api/products/{product_id}/reviews")
def get_reviews(product_id: str, db=Depends(require_db)):
    revs = db["review"].find({"product_id": product_id}).sort("created_at", DESCENDING)
    return [serialize(r) for r in revs]


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


@app.post("/api/products/{product_id}/reviews")
def add_review(product_id: str, payload: ReviewRequest, current: UserOut = Depends(get_current_user), db=Depends(require_db)):
    pid = object_id(product_id)
    if not db["product"].find_one({"_id": pid}):
        raise HTTPException(404, "Product not found")
    review = ReviewSchema(
        product_id=product_id,
        user_id=current.id,
        user_name=current.display_name or current.email,
        rating=payload.rating,
        comment=payload.comment,
    )
    data = review.model_dump()
    data["created_at"] = utcnow()
    rid = db["review"].insert_one(data).inserted_id
    # update product rating
    revs = list(db["review"].find({"product_id": product_id}))
    avg = sum(r.get("rating", 0) for r in revs) / len(revs)
    db["product"].update_one({"_id": pid}, {"$set": {"rating": round(avg, 2), "rating_count": len(revs)}})
    return {"id": str(rid)}


@app.get("/api/search")
def search_suggestions(q: str, db=Depends(require_db)):
    cursor = db["product"].find({"title": {"$regex": re.escape(q), "$options": "i"}}, {"title": 1}).limit(8)
    return [{"id": str(d["_id"]), "title": d.get("title")} for d in cursor]


# Blog
@app.get("/api/blogs")
def list_blogs(featured: Optional[bool] = None, tag: Optional[str] = None, db=Depends(require_db)):
    filter_q = {}
    if featured is not None:
        filter_q["featured"] = featured
    if tag:
        filter_q["tags"] = tag
    return [serialize(b) for b in db["blog"].find(filter_q).sort("created_at", DESCENDING)]


@app.get("/api/blogs/{blog_id}")
def get_blog(blog_id: str, db=Depends(require_db)):
    blog = db["blog"].find_one({"_id": object_id(blog_id)})
    if not blog:
        raise HTTPException(404, "Blog not found")
    return serialize(blog)


@app.get("/api/blogs/{blog_id}/comments")
def list_comments(blog_id: str, db=Depends(require_db)):
    return [serialize(c) for c in db["comment"].find({"blog_id": blog_id}).sort("created_at", 1)]


class CommentRequest(BaseModel):
    author: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


@app.post("/api/blogs/{blog_id}/comments")
def add_comment(blog_id: str, payload: CommentRequest, db=Depends(require_db)):
    if not db["blog"].find_one({"_id": object_id(blog_id)}):
        raise HTTPException(404, "Blog not found")
    comment = CommentSchema(blog_id=blog_id, author=payload.author, body=payload.body)
    data = comment.model_dump()
    data["created_at"] = utcnow()
    cid = db["comment"].insert_one(data).inserted_id
    return {"id": str(cid)}


# Store settings
@app.get("/api/settings", response_model=StoreSettings)
def read_settings(db=Depends(require_db)):
    return get_store_settings(db)


@app.get("/api/settings/options")
def settings_options():
    return {"currencies": CURRENCY_OPTIONS, "regions": REGION_OPTIONS}


# Cart and coupons
class CartLine(BaseModel):
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None


def _cart_items(lines: List[CartLine]):
    return [CartItem(**line.model_dump()) for line in lines]


class CartQuoteRequest(BaseModel):
    items: List[CartLine]
    coupon_code: Optional[str] = None


@app.post("/api/cart/quote")
def cart_quote(payload: CartQuoteRequest, db=Depends(require_db)):
    cart = Cart.from_items(_cart_items(payload.items))
    discount = 0.0
    coupon_error = None
    if payload.coupon_code:
        try:
            _, discount = coupons.apply_coupon(db, payload.coupon_code, cart.total)
        except coupons.CouponError as e:
            coupon_error = str(e)
    return {
        "items": cart.to_dicts(),
        "coupon_code": coupons.normalize_code(payload.coupon_code) if payload.coupon_code and not coupon_error else None,
        "coupon_error": coupon_error,
        **orders.compute_totals(cart.total, discount),
    }


class ValidateCouponRequest(BaseModel):
    code: str
    amount: float = Field(..., ge=0)


class ValidateCouponResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    discount_amount: float = 0
    final_amount: float = 0


@app.post("/api/coupons/validate", response_model=ValidateCouponResponse)
def validate_coupon(payload: ValidateCouponRequest, db=Depends(require_db)):
    code = coupons.normalize_code(payload.code)
    try:
        _, discount = coupons.apply_coupon(db, code, payload.amount)
    except coupons.CouponError as e:
        return ValidateCouponResponse(valid=False, reason=str(e), final_amount=payload.amount)
    return ValidateCouponResponse(
        valid=True, code=code, discount_amount=discount, final_amount=round(payload.amount - discount, 2)
    )


# Checkout
class StartCheckoutRequest(BaseModel):
    items: List[CartLine]


@app.post("/api/checkout")
def start_checkout(payload: StartCheckoutRequest, current: Optional[UserOut] = Depends(get_optional_user), db=Depends(require_db)):
    session = checkout.start_session(db, _cart_items(payload.items), current.id if current else None)
    return checkout.session_view(session)


@app.get("/api/checkout/{session_id}")
def get_checkout(session_id: str, db=Depends(require_db)):
    return checkout.session_view(checkout.get_session(db, session_id))


@app.post("/api/checkout/{session_id}/cart")
def confirm_checkout_cart(session_id: str, db=Depends(require_db)):
    return checkout.session_view(checkout.confirm_cart(db, session_id))


@app.post("/api/checkout/{session_id}/shipping")
def submit_checkout_shipping(session_id: str, address: ShippingAddress, db=Depends(require_db)):
    return checkout.session_view(checkout.submit_shipping(db, session_id, address))


class CheckoutCouponRequest(BaseModel):
    code: str


@app.post("/api/checkout/{session_id}/coupon")
def apply_checkout_coupon(session_id: str, payload: CheckoutCouponRequest, db=Depends(require_db)):
    return checkout.session_view(checkout.apply_coupon(db, session_id, payload.code))


class PaymentRequest(BaseModel):
    method: str = Field(..., description="card|paypal|cod")
    paypal_order_id: Optional[str] = None


@app.post("/api/checkout/{session_id}/payment")
def submit_checkout_payment(session_id: str, payload: PaymentRequest, background_tasks: BackgroundTasks, db=Depends(require_db)):
    order, created = checkout.submit_payment(db, session_id, payload.method, payload.model_dump())
    if created:
        background_tasks.add_task(emails.handle_order_write, None, order)
    return {"order": serialize(order), "created": created}


class PayPalOrderRequest(BaseModel):
    session_id: str


@app.post("/api/payments/paypal/orders")
def create_paypal_order(payload: PayPalOrderRequest, db=Depends(require_db)):
    session = checkout.get_session(db, payload.session_id)
    totals = orders.compute_totals(session["subtotal"], session.get("discount_amount", 0.0))
    currency = get_store_settings(db).currency.code
    paypal_order_id = PayPalPayment().create_order(totals["total_amount"], currency)
    return {"paypal_order_id": paypal_order_id, "amount": totals["total_amount"], "currency": currency}


# Orders
@app.post("/api/orders")
def create_order(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    current: Optional[UserOut] = Depends(get_optional_user),
    db=Depends(require_db),
):
    order = orders.create_order(db, payload, user_id=current.id if current else "guest")
    background_tasks.add_task(emails.handle_order_write, None, order)
    return {"order_id": str(order["_id"]), "status": order["status"]}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current: Optional[UserOut] = Depends(get_optional_user), db=Depends(require_db)):
    order = orders.get_order(db, order_id)
    _owner_or_admin(order, current)
    return serialize(order)


@app.get("/api/orders/{order_id}/summary")
def get_order_summary(order_id: str, current: Optional[UserOut] = Depends(get_optional_user), db=Depends(require_db)):
    order = orders.get_order(db, order_id)
    _owner_or_admin(order, current)
    return orders.order_summary(order)


# Admin: products
class ProductIn(ProductSchema):
    @field_validator("available_colors", "available_sizes", mode="before")
    @classmethod
    def _split(cls, value):
        return split_csv(value)


@app.post("/api/admin/products")
def create_product(product: ProductIn, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    data = product.model_dump()
    if data["image"] and data["image"] not in data["images"]:
        data["images"] = [data["image"], *data["images"]]
    pid = create_document(db, "product", data)
    logger.info("Product %s created by %s", pid, admin.id)
    return serialize(db["product"].find_one({"_id": object_id(pid)}))


@app.put("/api/admin/products/{product_id}")
def update_product(product_id: str, product: ProductIn, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    data = product.model_dump(exclude={"rating", "rating_count"})
    data["updated_at"] = utcnow()
    result = db["product"].update_one({"_id": object_id(product_id)}, {"$set": data})
    if result.matched_count == 0:
        raise HTTPException(404, "Product not found")
    return serialize(db["product"].find_one({"_id": object_id(product_id)}))


@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    result = db["product"].delete_one({"_id": object_id(product_id)})
    if result.deleted_count == 0:
        raise HTTPException(404, "Product not found")
    return {"ok": True}


@app.post("/api/admin/uploads")
def upload_image(file: UploadFile = File(...), folder: str = "products", admin: UserOut = Depends(require_admin)):
    return {"url": storage.save_image(file, folder)}


# Admin: blogs
@app.post("/api/admin/blogs")
def create_blog(blog: BlogSchema, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    bid = create_document(db, "blog", blog)
    return serialize(db["blog"].find_one({"_id": object_id(bid)}))


@app.put("/api/admin/blogs/{blog_id}")
def update_blog(blog_id: str, blog: BlogSchema, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    result = db["blog"].update_one({"_id": object_id(blog_id)}, {"$set": {**blog.model_dump(), "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise HTTPException(404, "Blog not found")
    return serialize(db["blog"].find_one({"_id": object_id(blog_id)}))


@app.delete("/api/admin/blogs/{blog_id}")
def delete_blog(blog_id: str, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    result = db["blog"].delete_one({"_id": object_id(blog_id)})
    if result.deleted_count == 0:
        raise HTTPException(404, "Blog not found")
    db["comment"].delete_many({"blog_id": blog_id})
    return {"ok": True}


# Admin: coupons
class CouponIn(BaseModel):
    code: str
    discount_type: str = Field(..., pattern="^(percentage|fixed)$")
    discount_value: float = Field(..., gt=0)
    min_purchase: Optional[float] = Field(None, ge=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=1)


def _coupon_status(c: dict) -> str:
    now = utcnow()
    if not c.get("is_active", True):
        return "inactive"
    if c.get("start_date") and as_utc(c["start_date"]) > now:
        return "scheduled"
    if c.get("end_date") and as_utc(c["end_date"]) < now:
        return "expired"
    if c.get("usage_limit") and c.get("usage_count", 0) >= c["usage_limit"]:
        return "exhausted"
    return "active"


def _coupon_doc(payload: CouponIn) -> dict:
    if payload.discount_type == "percentage" and payload.discount_value > 100:
        raise HTTPException(400, "Percentage discount must be between 0 and 100")
    data = payload.model_dump()
    data["start_date"] = as_utc(payload.start_date)
    data["end_date"] = as_utc(payload.end_date)
    if data["end_date"] < data["start_date"]:
        raise HTTPException(400, "end_date must be after start_date")
    data["code"] = coupons.normalize_code(payload.code)
    return data


@app.get("/api/admin/coupons")
def list_coupons(admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    return [{**serialize(c), "status": _coupon_status(c)} for c in db["coupon"].find({}).sort("created_at", DESCENDING)]


@app.post("/api/admin/coupons")
def create_coupon(payload: CouponIn, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    data = _coupon_doc(payload)
    if db["coupon"].find_one({"code": data["code"]}):
        raise HTTPException(400, "Coupon code already exists")
    cid = create_document(db, "coupon", CouponSchema(**data, usage_count=0))
    return serialize(db["coupon"].find_one({"_id": object_id(cid)}))


@app.put("/api/admin/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponIn, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    data = _coupon_doc(payload)
    clash = db["coupon"].find_one({"code": data["code"], "_id": {"$ne": object_id(coupon_id)}})
    if clash:
        raise HTTPException(400, "Coupon code already exists")
    data["updated_at"] = utcnow()
    result = db["coupon"].update_one({"_id": object_id(coupon_id)}, {"$set": data})
    if result.matched_count == 0:
        raise HTTPException(404, "Coupon not found")
    return serialize(db["coupon"].find_one({"_id": object_id(coupon_id)}))


@app.delete("/api/admin/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    result = db["coupon"].delete_one({"_id": object_id(coupon_id)})
    if result.deleted_count == 0:
        raise HTTPException(404, "Coupon not found")
    return {"ok": True}


# Admin: orders, analytics, settings, roles
@app.get("/api/admin/orders")
def list_all_orders(status: Optional[OrderStatus] = None, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    docs = orders.list_orders(db)
    if status:
        docs = [o for o in docs if o.get("status") == status]
    return [serialize(o) for o in docs]


class StatusUpdate(BaseModel):
    status: OrderStatus


@app.patch("/api/admin/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    admin: UserOut = Depends(require_admin),
    db=Depends(require_db),
):
    before, after = orders.update_order_status(db, order_id, payload.status)
    background_tasks.add_task(emails.handle_order_write, before, after)
    return serialize(after)


@app.get("/api/admin/analytics")
def get_analytics(
    period: analytics.Period = "month",
    admin: UserOut = Depends(require_admin),
    db=Depends(require_db),
):
    start = analytics.period_start(period)
    summary = analytics.summarize_orders(orders.list_orders(db, since=start), period)
    counter = db["analytics_counter"].find_one({"_id": "orders"}) or {}
    summary["completed_orders_all_time"] = counter.get("completed", 0)
    return summary


@app.put("/api/admin/settings", response_model=StoreSettings)
def save_settings(settings: StoreSettings, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    return update_store_settings(db, settings)


class RoleUpdate(BaseModel):
    is_admin: bool


@app.put("/api/admin/users/{user_id}/role")
def set_user_role(user_id: str, payload: RoleUpdate, admin: UserOut = Depends(require_admin), db=Depends(require_db)):
    if not db["user"].find_one({"_id": object_id(user_id)}):
        raise HTTPException(404, "User not found")
    db["user_role"].update_one({"user_id": user_id}, {"$set": {"is_admin": payload.is_admin}}, upsert=True)
    logger.info("User %s admin=%s set by %s", user_id, payload.is_admin, admin.id)
    return {"user_id": user_id, "is_admin": payload.is_admin}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
