"""Order reads and administrative status updates."""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import get_document, now, serialize
from errors import NotFoundError, RemotePersistenceError
from tracking import check_fulfillment_transition

logger = logging.getLogger(__name__)


def _attach_items(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    order_ids = [str(o["_id"]) for o in orders]
    items = list(db["orderitem"].find({"order_id": {"$in": order_ids}}))
    product_ids = list({ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])})
    products = {str(p["_id"]): serialize(p) for p in db["product"].find({"_id": {"$in": product_ids}})}

    by_order: Dict[str, List[Dict[str, Any]]] = {}
    for item in items:
        line = serialize(item)
        line["product"] = products.get(item["product_id"])
        by_order.setdefault(item["order_id"], []).append(line)

    out = []
    for o in orders:
        doc = serialize(o)
        doc["order_items"] = by_order.get(doc["id"], [])
        out.append(doc)
    return out


def list_orders(db: Database, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Orders newest first with their items; all orders when user_id is None."""
    filt = {"user_id": user_id} if user_id else {}
    try:
        orders = list(db["order"].find(filt).sort("created_at", DESCENDING))
        return _attach_items(db, orders)
    except PyMongoError as e:
        raise RemotePersistenceError("read orders", e) from e


def get_order(db: Database, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """One order with items. With a user_id, other users' orders read as missing."""
    order = get_document("order", order_id, database=db)
    if user_id and order["user_id"] != user_id:
        raise NotFoundError("Order", order_id)
    try:
        return _attach_items(db, [order])[0]
    except PyMongoError as e:
        raise RemotePersistenceError("read order items", e) from e


def search_orders(db: Database, q: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Admin view: every order with its customer's name and email."""
    orders = list_orders(db)
    try:
        user_ids = [ObjectId(o["user_id"]) for o in orders if ObjectId.is_valid(o["user_id"])]
        users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}})}
    except PyMongoError as e:
        raise RemotePersistenceError("read users", e) from e
    for o in orders:
        u = users.get(o["user_id"])
        o["customer"] = {"full_name": u.get("full_name"), "email": u.get("email")} if u else None

    if q:
        term = q.lower()
        orders = [
            o for o in orders
            if term in o["id"].lower()
            or (o["customer"] and term in (o["customer"]["full_name"] or "").lower())
            or (o["customer"] and term in (o["customer"]["email"] or "").lower())
        ]
    if status and status != "all":
        orders = [o for o in orders if o["status"] == status]
    return orders


def update_status(db: Database, order_id: str, status: str, tracking_number: Optional[str] = None) -> Dict[str, Any]:
    order = get_document("order", order_id, database=db)
    current = order.get("status", "pending")
    update: Dict[str, Any] = {"updated_at": now()}
    if status != current:
        check_fulfillment_transition(current, status)
        update["status"] = status
    if tracking_number:
        update["tracking_number"] = tracking_number
    try:
        db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    except PyMongoError as e:
        raise RemotePersistenceError("update order status", e) from e
    logger.info("Order %s status %s -> %s", order_id, current, status)
    return serialize({**order, **update})
