"""
Catalog queries and the budget/interest filter

``within_budget`` and ``match_interests`` are shared by the catalog page and
the recommendation fallback. None of the functions here mutate their inputs.
"""
from typing import Any, Dict, Iterable, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import serialize
from errors import RemotePersistenceError
from schemas import DEFAULT_MAX_BUDGET, DEFAULT_MIN_BUDGET

Product = Dict[str, Any]


def budget_range(preferences: Optional[Dict[str, Any]]):
    """(min, max) from preferences; no preferences means the default range."""
    if not preferences:
        return DEFAULT_MIN_BUDGET, DEFAULT_MAX_BUDGET
    lo = preferences.get("min_budget")
    hi = preferences.get("max_budget")
    return (
        DEFAULT_MIN_BUDGET if lo is None else lo,
        DEFAULT_MAX_BUDGET if hi is None else hi,
    )


def within_budget(products: Iterable[Product], lo: float, hi: float) -> List[Product]:
    return [p for p in products if lo <= p.get("price", 0) <= hi]


def _search_text(product: Product) -> str:
    tags = " ".join(product.get("tags") or [])
    return f"{product.get('category', '')} {product.get('name', '')} {tags}".lower()


def matches_interests(product: Product, interests: Iterable[str]) -> bool:
    text = _search_text(product)
    return any(i.lower() in text for i in interests if i)


def match_interests(products: Iterable[Product], interests: Iterable[str]) -> List[Product]:
    interests = [i for i in interests if i]
    return [p for p in products if matches_interests(p, interests)]


def annotate(products: Iterable[Product], preferences: Optional[Dict[str, Any]]) -> List[Product]:
    """Copy each product with ``in_budget`` and ``matches_interests`` flags."""
    lo, hi = budget_range(preferences)
    interests = (preferences or {}).get("interests") or []
    out = []
    for p in products:
        item = dict(p)
        item["in_budget"] = lo <= p.get("price", 0) <= hi
        item["matches_interests"] = bool(interests) and matches_interests(p, interests)
        out.append(item)
    return out


def filter_catalog(
    products: Iterable[Product],
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> List[Product]:
    filtered = list(products)
    if q:
        term = q.lower()
        filtered = [
            p for p in filtered
            if term in p.get("name", "").lower()
            or term in p.get("brand", "").lower()
            or term in p.get("category", "").lower()
        ]
    if category and category != "all":
        filtered = [p for p in filtered if p.get("category", "").lower() == category.lower()]
    if min_price is not None:
        filtered = [p for p in filtered if p.get("price", 0) >= min_price]
    if max_price is not None:
        filtered = [p for p in filtered if p.get("price", 0) <= max_price]
    return filtered


def visible_products(db: Database) -> List[Product]:
    """Active, in-stock products, newest first."""
    try:
        cursor = db["product"].find({"is_active": True, "stock_quantity": {"$gt": 0}}).sort("created_at", DESCENDING)
        return [serialize(d) for d in cursor]
    except PyMongoError as e:
        raise RemotePersistenceError("read products", e) from e
