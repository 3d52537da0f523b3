"""
Database Schemas for the storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name, snake_cased
(UserRole -> "user_role", StoreSettings -> "store_settings").
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class User(BaseModel):
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    display_name: str = ""


class UserRole(BaseModel):
    """Collection: "user_role", one document per user"""
    user_id: str
    is_admin: bool = False


class Variation(BaseModel):
    color: Optional[str] = None
    size: Optional[str] = None
    stock: int = Field(0, ge=0)
    price_adjustment: float = 0.0


class Product(BaseModel):
    title: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    images: List[str] = []
    category: str = Field(..., description="Category name")
    variations: List[Variation] = []
    featured: bool = False
    available_colors: Optional[List[str]] = None
    available_sizes: Optional[List[str]] = None
    shipping_info: Optional[str] = None
    return_policy: Optional[str] = None
    rating: float = 0.0
    rating_count: int = 0


class Review(BaseModel):
    product_id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Blog(BaseModel):
    title: str
    content: str
    author: str
    image_url: Optional[str] = None
    tags: List[str] = []
    featured: bool = False


class Comment(BaseModel):
    blog_id: str
    author: str
    body: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product_id: str
    title: str
    price: float
    quantity: int
    image: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None


class ShippingAddress(BaseModel):
    name: str
    address: str
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str = "United States"
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class Order(BaseModel):
    user_id: str = "guest"
    items: List[OrderItem]
    subtotal: float = 0.0
    shipping_cost: float = 0.0
    tax: float = 0.0
    total_amount: float
    status: OrderStatus = "pending"
    shipping_address: ShippingAddress
    payment_method: str
    payment_reference: Optional[str] = None
    coupon_code: Optional[str] = None
    discount_amount: float = 0.0


class Coupon(BaseModel):
    code: str
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., gt=0)
    min_purchase: Optional[float] = Field(None, ge=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_count: int = 0


class Currency(BaseModel):
    code: str = "USD"
    symbol: str = "$"
    position: Literal["before", "after"] = "before"


class Region(BaseModel):
    country: str = "United States"
    country_code: str = "US"
    timezone: str = "America/New_York"


class StoreSettings(BaseModel):
    """Collection: "store_settings", single document with _id "global" """
    currency: Currency = Currency()
    region: Region = Region()
