"""
Buyer cart

A ``Cart`` is the in-memory view of one account's ``cartitem`` documents with
their products resolved. Each mutation is applied locally, confirmed against
the store, and rolled back to the previous lines if the store call fails.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import now, serialize, to_object_id
from errors import NotFoundError, RemotePersistenceError, StorefrontError, Unauthenticated, ValidationError

logger = logging.getLogger(__name__)


class Cart:
    def __init__(self, db: Database, user_id: Optional[str], lines: Optional[List[Dict[str, Any]]] = None):
        self.db = db
        self.user_id = user_id
        self.lines: List[Dict[str, Any]] = lines or []

    @classmethod
    def load(cls, db: Database, user_id: Optional[str]) -> "Cart":
        if not user_id:
            return cls(db, None)
        try:
            items = list(db["cartitem"].find({"user_id": user_id}).sort("created_at", 1))
            ids = [ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])]
            products = {str(p["_id"]): serialize(p) for p in db["product"].find({"_id": {"$in": ids}})}
        except PyMongoError as e:
            raise RemotePersistenceError("load cart", e) from e
        lines = []
        for item in items:
            line = serialize(item)
            line["product"] = products.get(item["product_id"])
            lines.append(line)
        return cls(db, user_id, lines)

    def __len__(self):
        return len(self.lines)

    def is_empty(self) -> bool:
        return not self.lines

    def _require_account(self):
        if not self.user_id:
            raise Unauthenticated()

    def _find_line(self, line_id: str) -> Dict[str, Any]:
        for line in self.lines:
            if line["id"] == line_id:
                return line
        raise NotFoundError("Cart item", line_id)

    @contextmanager
    def _confirm(self, operation: str):
        snapshot = [dict(line) for line in self.lines]
        try:
            yield
        except PyMongoError as e:
            self.lines = snapshot
            logger.error("Cart %s failed for user %s: %s", operation, self.user_id, e)
            raise RemotePersistenceError(operation, e) from e
        except StorefrontError:
            self.lines = snapshot
            raise

    def add_line(self, product_id: str, qty: int) -> Dict[str, Any]:
        """Upsert by product: an existing line takes the new quantity."""
        self._require_account()
        if qty < 1:
            raise ValidationError("Quantity must be at least 1", {"quantity": "Must be at least 1"})
        try:
            product = self.db["product"].find_one({"_id": to_object_id(product_id, "Product"), "is_active": True})
        except PyMongoError as e:
            raise RemotePersistenceError("read product", e) from e
        if not product:
            raise NotFoundError("Product", product_id)
        if product.get("stock_quantity", 0) <= 0:
            raise ValidationError(f"{product['name']} is out of stock", {"product_id": "Out of stock"})

        existing = next((l for l in self.lines if l["product_id"] == product_id), None)
        with self._confirm("add to cart"):
            if existing:
                existing["quantity"] = qty
            else:
                existing = {"id": None, "user_id": self.user_id, "product_id": product_id, "quantity": qty}
                self.lines.append(existing)
            stamp = now()
            self.db["cartitem"].update_one(
                {"user_id": self.user_id, "product_id": product_id},
                {"$set": {"quantity": qty, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
                upsert=True,
            )
            stored = self.db["cartitem"].find_one({"user_id": self.user_id, "product_id": product_id})
            existing["id"] = str(stored["_id"])
            existing["product"] = serialize(product)
        return existing

    def set_quantity(self, line_id: str, qty: int) -> Optional[Dict[str, Any]]:
        if qty <= 0:
            self.remove_line(line_id)
            return None
        self._require_account()
        line = self._find_line(line_id)
        with self._confirm("update quantity"):
            line["quantity"] = qty
            res = self.db["cartitem"].update_one(
                {"_id": to_object_id(line_id, "Cart item"), "user_id": self.user_id},
                {"$set": {"quantity": qty, "updated_at": now()}},
            )
            if res.matched_count == 0:
                raise NotFoundError("Cart item", line_id)
        return line

    def remove_line(self, line_id: str) -> None:
        self._require_account()
        self._find_line(line_id)
        with self._confirm("remove from cart"):
            self.lines = [l for l in self.lines if l["id"] != line_id]
            self.db["cartitem"].delete_one({"_id": to_object_id(line_id, "Cart item"), "user_id": self.user_id})

    def clear(self) -> None:
        if not self.user_id:
            return
        with self._confirm("clear cart"):
            self.lines = []
            self.db["cartitem"].delete_many({"user_id": self.user_id})

    @staticmethod
    def is_available(line: Dict[str, Any]) -> bool:
        product = line.get("product")
        return bool(product) and product.get("is_active", True)

    def unavailable_lines(self) -> List[Dict[str, Any]]:
        """Lines whose product was deleted or deactivated. They count as 0."""
        return [l for l in self.lines if not self.is_available(l)]

    def total(self) -> float:
        return sum(
            l["product"]["price"] * l["quantity"] for l in self.lines if self.is_available(l)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.lines,
            "count": sum(l["quantity"] for l in self.lines),
            "total": self.total(),
            "unavailable": [l["id"] for l in self.unavailable_lines()],
        }
