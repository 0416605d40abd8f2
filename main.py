import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import settings
from auth import Account, Token, authenticate, get_current_user, oauth2_scheme, register, require_admin
from cart import Cart
from catalog import annotate, filter_catalog, visible_products
from checkout import CheckoutAttempt, CheckoutOrchestrator, ShippingDetails
from database import create_document, get_db, get_document, now, serialize, to_object_id
from errors import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    OrderCreationError,
    PaymentError,
    PermissionDenied,
    RemotePersistenceError,
    StorefrontError,
    Unauthenticated,
    ValidationError,
)
from orders import get_order, list_orders, search_orders, update_status
from paystack import PaymentOutcome
from recommendations import GeminiClient, recommend
from reports import customer_report, dashboard_stats
from schemas import CATEGORIES, Category, FulfillmentStatus, Preferences, Product as ProductSchema, SkinType
from tracking import Timeline, project

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS_CODES = {
    Unauthenticated: 401,
    PermissionDenied: 403,
    NotFoundError: 404,
    ValidationError: 422,
    InvalidTransitionError: 409,
    RemotePersistenceError: 502,
    ConfigurationError: 503,
    OrderCreationError: 500,
    PaymentError: 402,
}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    if isinstance(exc, OrderCreationError) and exc.order_id:
        content["order_id"] = exc.order_id
    if isinstance(exc, (OrderCreationError, PaymentError, RemotePersistenceError)):
        content["retryable"] = True
    return JSONResponse(status_code=status_code, content=content)


# Dependencies
def get_orchestrator(db: Database = Depends(get_db)) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        db,
        public_key=settings.PAYSTACK_PUBLIC_KEY,
        currency=settings.PAYMENT_CURRENCY,
        shipping_fee=settings.SHIPPING_FEE,
    )


def get_recommender() -> Optional[GeminiClient]:
    if not settings.GEMINI_API_KEY:
        logger.warning("Gemini API key not configured")
        return None
    return GeminiClient(settings.GEMINI_API_KEY, settings.GEMINI_API_URL, timeout=settings.RECOMMENDATION_TIMEOUT)


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Optional[Account]:
    if not token:
        return None
    try:
        return get_current_user(token, db)
    except Unauthenticated:
        return None


def load_preferences(db: Database, user_id: str) -> Optional[dict]:
    try:
        return serialize(db["preferences"].find_one({"user_id": user_id}))
    except PyMongoError as e:
        raise RemotePersistenceError("read preferences", e) from e


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "paystack_key": "✅ Set" if settings.PAYSTACK_PUBLIC_KEY else "❌ Not Set",
        "gemini_key": "✅ Set" if settings.GEMINI_API_KEY else "❌ Not Set",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# Auth
class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)


@app.post("/api/register", response_model=Account, status_code=201)
def register_account(payload: RegisterIn, db: Database = Depends(get_db)):
    return register(db, payload.email, payload.password, payload.full_name)


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    return authenticate(db, form_data.username, form_data.password)


@app.get("/api/me", response_model=Account)
def me(current: Account = Depends(get_current_user)):
    return current


# Preferences
class PreferencesIn(BaseModel):
    interests: List[str] = Field(..., min_length=1)
    min_budget: float = Field(..., ge=0)
    max_budget: float = Field(..., ge=0)
    skin_type: SkinType
    preferred_brands: List[str] = []
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: str = Field(..., min_length=1)


@app.get("/api/profile")
def get_profile(current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"user": current, "preferences": load_preferences(db, current.id)}


@app.put("/api/profile")
def update_profile(payload: PreferencesIn, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    try:
        prefs = Preferences(user_id=current.id, **payload.model_dump())
    except ValueError as e:
        raise ValidationError(str(e), {"max_budget": "Maximum budget must be greater than minimum"})
    stamp = now()
    try:
        db["preferences"].update_one(
            {"user_id": current.id},
            {"$set": {**prefs.model_dump(), "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
            upsert=True,
        )
    except PyMongoError as e:
        raise RemotePersistenceError("save preferences", e) from e
    return {"user": current, "preferences": load_preferences(db, current.id)}


# Catalog
@app.get("/api/categories")
def list_categories():
    return CATEGORIES


@app.get("/api/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    current: Optional[Account] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    items = filter_catalog(visible_products(db), q, category, min_price, max_price)
    if current:
        items = annotate(items, load_preferences(db, current.id))
    return {"items": items, "total": len(items)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    prod = db["product"].find_one({"_id": to_object_id(product_id, "Product"), "is_active": True})
    if not prod:
        raise NotFoundError("Product", product_id)
    return serialize(prod)


@app.get("/api/recommendations")
def recommendations(
    current: Account = Depends(get_current_user),
    client: Optional[GeminiClient] = Depends(get_recommender),
    db: Database = Depends(get_db),
):
    prefs = load_preferences(db, current.id)
    items = recommend(prefs, visible_products(db), client)
    return {"items": items}


# Cart
class CartAdd(BaseModel):
    product_id: str
    quantity: int = 1


class CartUpdate(BaseModel):
    quantity: int


@app.get("/api/cart")
def get_cart(current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    return Cart.load(db, current.id).to_dict()


@app.post("/api/cart")
def add_to_cart(payload: CartAdd, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = Cart.load(db, current.id)
    cart.add_line(payload.product_id, payload.quantity)
    return cart.to_dict()


@app.patch("/api/cart/{item_id}")
def update_cart(item_id: str, payload: CartUpdate, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = Cart.load(db, current.id)
    cart.set_quantity(item_id, payload.quantity)
    return cart.to_dict()


@app.delete("/api/cart/{item_id}")
def remove_cart(item_id: str, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = Cart.load(db, current.id)
    cart.remove_line(item_id)
    return cart.to_dict()


@app.delete("/api/cart")
def clear_cart(current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = Cart.load(db, current.id)
    cart.clear()
    return cart.to_dict()


# Checkout
@app.post("/api/checkout", response_model=CheckoutAttempt)
def start_checkout(
    shipping: ShippingDetails,
    current: Account = Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    db: Database = Depends(get_db),
):
    return orchestrator.begin(current, Cart.load(db, current.id), shipping)


@app.post("/api/checkout/{order_id}/callback", response_model=CheckoutAttempt)
def payment_callback(
    order_id: str,
    response: dict,
    current: Account = Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    db: Database = Depends(get_db),
):
    outcome = PaymentOutcome.from_callback(response)
    return orchestrator.reconcile(current, order_id, outcome, Cart.load(db, current.id))


@app.post("/api/checkout/{order_id}/close", response_model=CheckoutAttempt)
def payment_closed(
    order_id: str,
    current: Account = Depends(get_current_user),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    db: Database = Depends(get_db),
):
    return orchestrator.reconcile(current, order_id, PaymentOutcome.closed(), Cart.load(db, current.id))


# Orders
@app.get("/api/orders")
def my_orders(current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_orders(db, current.id)


@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    return get_order(db, order_id, None if current.is_admin else current.id)


@app.get("/api/orders/{order_id}/tracking", response_model=Timeline)
def order_tracking(order_id: str, current: Account = Depends(get_current_user), db: Database = Depends(get_db)):
    return project(get_order(db, order_id, None if current.is_admin else current.id))


# Admin
class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    tags: Optional[List[str]] = None


class StatusUpdate(BaseModel):
    status: FulfillmentStatus
    tracking_number: Optional[str] = None


@app.get("/api/admin/products")
def admin_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    admin: Account = Depends(require_admin),
    db: Database = Depends(get_db),
):
    items = [serialize(p) for p in db["product"].find().sort("created_at", -1)]
    return {"items": filter_catalog(items, q, category)}


@app.post("/api/admin/products", status_code=201)
def create_product(prod: ProductSchema, admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    prod_id = create_document("product", prod, database=db)
    logger.info("Admin %s created product %s", admin.id, prod_id)
    return serialize(get_document("product", prod_id, database=db))


@app.put("/api/admin/products/{product_id}")
def edit_product(product_id: str, payload: ProductUpdate, admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    prod = get_document("product", product_id, database=db)
    changes = payload.model_dump(exclude_unset=True)
    try:
        db["product"].update_one({"_id": prod["_id"]}, {"$set": {**changes, "updated_at": now()}})
    except PyMongoError as e:
        raise RemotePersistenceError("update product", e) from e
    return serialize(get_document("product", product_id, database=db))


@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    # Order lines keep pointing at the product, so it is deactivated rather than removed.
    prod = get_document("product", product_id, database=db)
    try:
        db["product"].update_one({"_id": prod["_id"]}, {"$set": {"is_active": False, "updated_at": now()}})
    except PyMongoError as e:
        raise RemotePersistenceError("deactivate product", e) from e
    logger.info("Admin %s deactivated product %s", admin.id, product_id)
    return {"ok": True}


@app.get("/api/admin/orders")
def admin_orders(
    q: Optional[str] = None,
    status: Optional[str] = None,
    admin: Account = Depends(require_admin),
    db: Database = Depends(get_db),
):
    items = search_orders(db, q, status)
    return {"items": items, "total": len(items)}


@app.patch("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, payload: StatusUpdate, admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    return update_status(db, order_id, payload.status, payload.tracking_number)


@app.get("/api/admin/customers")
def admin_customers(q: Optional[str] = None, admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    return customer_report(db, q)


@app.get("/api/admin/stats")
def admin_stats(admin: Account = Depends(require_admin), db: Database = Depends(get_db)):
    return dashboard_stats(db)


# Seed sample data if empty
@app.post("/api/seed")
def seed(db: Database = Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"ok": True, "message": "Already seeded"}
    products = [
        ProductSchema(
            name="Hydrating Facial Serum",
            description="Hyaluronic acid serum for all-day moisture.",
            price=8500,
            category="skincare",
            brand="The Ordinary",
            image_url="https://images.unsplash.com/photo-1620916566398-39f1143ab7be?q=80&w=1200&auto=format&fit=crop",
            stock_quantity=40,
            tags=["Skincare", "Moisturizing"],
        ),
        ProductSchema(
            name="Daily Sunscreen SPF 50",
            description="Lightweight mineral sunscreen.",
            price=6000,
            category="skincare",
            brand="CeraVe",
            image_url="https://images.unsplash.com/photo-1556228578-8c89e6adf883?q=80&w=1200&auto=format&fit=crop",
            stock_quantity=25,
            tags=["Sun Protection"],
        ),
        ProductSchema(
            name="Matte Lipstick",
            description="Long-wear matte finish.",
            price=4500,
            category="makeup",
            brand="Maybelline",
            image_url="https://images.unsplash.com/photo-1586495777744-4413f21062fa?q=80&w=1200&auto=format&fit=crop",
            stock_quantity=60,
            tags=["Makeup"],
        ),
        ProductSchema(
            name="Repair Hair Mask",
            description="Deep conditioning treatment for dry hair.",
            price=7000,
            category="haircare",
            brand="Dove",
            image_url="https://images.unsplash.com/photo-1526947425960-945c6e72858f?q=80&w=1200&auto=format&fit=crop",
            stock_quantity=15,
            tags=["Hair Care"],
        ),
    ]
    for p in products:
        create_document("product", p, database=db)
    return {"ok": True, "inserted": len(products)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
