"""Pytest fixtures for storefront tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import Account, get_password_hash
from database import create_document, ensure_indexes, get_db


@pytest.fixture
def db():
    """Fresh in-memory database with the production indexes."""
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_product(db):
    """Insert a product and return its id."""

    def _make(name="Glow Serum", price=5000, category="skincare", tags=None, **extra):
        data = {
            "name": name,
            "description": f"{name} description",
            "price": price,
            "category": category,
            "brand": extra.pop("brand", "CeraVe"),
            "image_url": "https://img.example.org/p.jpg",
            "images": [],
            "stock_quantity": extra.pop("stock_quantity", 10),
            "is_active": extra.pop("is_active", True),
            "tags": tags if tags is not None else [],
        }
        data.update(extra)
        return create_document("product", data, database=db)

    return _make


def _make_user(db, email, full_name, role):
    user_id = create_document(
        "user",
        {"email": email, "full_name": full_name, "role": role, "password_hash": get_password_hash("secret123")},
        database=db,
    )
    return Account(id=user_id, email=email, full_name=full_name, role=role)


@pytest.fixture
def buyer(db):
    return _make_user(db, "ada@glowshop.com", "Ada Obi", "buyer")


@pytest.fixture
def admin(db):
    return _make_user(db, "boss@glowshop.com", "Store Admin", "admin")


@pytest.fixture
def api_client(db):
    """Test client bound to the in-memory database and a configured payment key."""
    from checkout import CheckoutOrchestrator
    from main import app, get_orchestrator, get_recommender

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_orchestrator] = lambda: CheckoutOrchestrator(db, public_key="pk_test_123")
    app.dependency_overrides[get_recommender] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, email, password="secret123"):
    response = client.post("/api/login", data={"username": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def login_as(api_client):
    """Return auth headers for an existing account."""
    return lambda email: login(api_client, email)


@pytest.fixture
def buyer_headers(api_client, buyer):
    return login(api_client, buyer.email)


@pytest.fixture
def admin_headers(api_client, admin):
    return login(api_client, admin.email)
