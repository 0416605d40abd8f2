"""
Database Schemas for the Storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

Role = Literal["buyer", "admin"]
Category = Literal["skincare", "makeup", "haircare", "fragrance", "wellness"]
SkinType = Literal["Normal", "Dry", "Oily", "Combination", "Sensitive"]
FulfillmentStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed"]

CATEGORIES = ["skincare", "makeup", "haircare", "fragrance", "wellness"]
FULFILLMENT_STATUSES = ["pending", "processing", "shipped", "delivered", "cancelled"]

DEFAULT_MIN_BUDGET = 0
DEFAULT_MAX_BUDGET = 100000


class User(BaseModel):
    email: EmailStr = Field(..., description="Email address")
    full_name: str = Field(..., description="Display name")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("buyer", description="buyer | admin")


class Preferences(BaseModel):
    """
    Collection: "preferences"
    Optional, one per user. Feeds recommendations and checkout defaults.
    """
    user_id: str
    interests: List[str] = Field(default_factory=list)
    min_budget: float = Field(DEFAULT_MIN_BUDGET, ge=0)
    max_budget: float = Field(DEFAULT_MAX_BUDGET, ge=0)
    skin_type: Optional[SkinType] = None
    preferred_brands: List[str] = Field(default_factory=list)
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    @model_validator(mode="after")
    def check_budget(self):
        if self.max_budget < self.min_budget:
            raise ValueError("Maximum budget must be greater than minimum")
        return self


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    category: Category
    brand: str
    image_url: str
    images: List[str] = Field(default_factory=list)
    stock_quantity: int = Field(0, ge=0)
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


class Order(BaseModel):
    user_id: str
    total_amount: float = Field(..., ge=0)
    status: FulfillmentStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_reference: str
    shipping_address: str
    tracking_number: Optional[str] = None


class OrderItem(BaseModel):
    """Price snapshot taken at checkout; never updated afterwards."""
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
