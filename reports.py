"""Back-office reporting: dashboard numbers and the customer list."""
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import serialize
from errors import RemotePersistenceError

LOW_STOCK_THRESHOLD = 10


def dashboard_stats(db: Database) -> Dict[str, Any]:
    try:
        total_users = db["user"].count_documents({})
        products = list(db["product"].find({}, {"stock_quantity": 1, "category": 1}))
        orders = list(db["order"].find({}, {"total_amount": 1, "status": 1, "payment_status": 1, "created_at": 1}))
        recent = list(db["order"].find().sort("created_at", DESCENDING).limit(5))
    except PyMongoError as e:
        raise RemotePersistenceError("read dashboard data", e) from e

    monthly: "OrderedDict[str, float]" = OrderedDict()
    for o in sorted((o for o in orders if o.get("payment_status") == "paid"), key=lambda o: o["created_at"]):
        month = o["created_at"].strftime("%b")
        monthly[month] = monthly.get(month, 0) + o["total_amount"]

    categories: Dict[str, int] = {}
    for p in products:
        categories[p["category"]] = categories.get(p["category"], 0) + 1

    return {
        "total_users": total_users,
        "total_products": len(products),
        "total_orders": len(orders),
        "total_revenue": sum(o["total_amount"] for o in orders),
        "pending_orders": sum(1 for o in orders if o.get("status") == "pending"),
        "low_stock_products": sum(1 for p in products if p.get("stock_quantity", 0) < LOW_STOCK_THRESHOLD),
        "sales_by_month": [{"month": m, "revenue": r} for m, r in monthly.items()],
        "products_by_category": [{"name": c, "value": n} for c, n in categories.items()],
        "recent_orders": [serialize(o) for o in recent],
    }


def customer_report(db: Database, q: Optional[str] = None) -> Dict[str, Any]:
    """Buyers with their preferences, order count and total spent."""
    try:
        users = list(db["user"].find({"role": "buyer"}, {"password_hash": 0}))
        user_ids = [str(u["_id"]) for u in users]
        prefs = {p["user_id"]: serialize(p) for p in db["preferences"].find({"user_id": {"$in": user_ids}})}
        orders = list(db["order"].find({"user_id": {"$in": user_ids}}, {"user_id": 1, "total_amount": 1}))
    except PyMongoError as e:
        raise RemotePersistenceError("read customers", e) from e

    customers: List[Dict[str, Any]] = []
    for u in users:
        doc = serialize(u)
        mine = [o for o in orders if o["user_id"] == doc["id"]]
        doc["profile"] = prefs.get(doc["id"])
        doc["order_count"] = len(mine)
        doc["total_spent"] = sum(o["total_amount"] for o in mine)
        customers.append(doc)

    if q:
        term = q.lower()
        customers = [
            c for c in customers
            if term in c.get("full_name", "").lower()
            or term in c.get("email", "").lower()
            or term in ((c["profile"] or {}).get("phone") or "").lower()
        ]

    return {
        "customers": customers,
        "total_customers": len(customers),
        "active_customers": sum(1 for c in customers if c["order_count"] > 0),
        "total_revenue": sum(c["total_spent"] for c in customers),
    }
