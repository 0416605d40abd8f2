"""
Order status rules and the tracking timeline

The timeline is recomputed from the stored order on every read. The
transition checks guard every write of ``status`` and ``payment_status``.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from errors import InvalidTransitionError

# placed < processing < shipped < delivered; a pending order counts as placed
STAGES = [
    ("placed", "Order Placed"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
]
STATUS_ORDINAL = {"pending": 0, "processing": 1, "shipped": 2, "delivered": 3}
TERMINAL_STATUSES = {"delivered", "cancelled"}
PAYMENT_TRANSITIONS = {"pending": {"paid", "failed"}, "paid": set(), "failed": set()}


class Stage(BaseModel):
    key: str
    label: str
    completed: bool


class Timeline(BaseModel):
    order_id: Optional[str] = None
    status: str
    payment_status: str
    cancelled: bool
    banner: Optional[str] = None
    stages: List[Stage]
    progress: float
    tracking_number: Optional[str] = None


def project(order: Dict[str, Any]) -> Timeline:
    status = order.get("status", "pending")
    cancelled = status == "cancelled"
    ordinal = -1 if cancelled else STATUS_ORDINAL.get(status, 0)
    stages = [
        Stage(key=key, label=label, completed=ordinal >= i)
        for i, (key, label) in enumerate(STAGES)
    ]
    return Timeline(
        order_id=order.get("id"),
        status=status,
        payment_status=order.get("payment_status", "pending"),
        cancelled=cancelled,
        banner="This order has been cancelled" if cancelled else None,
        stages=stages,
        progress=0.0 if cancelled else (ordinal + 1) / len(STAGES),
        tracking_number=order.get("tracking_number"),
    )


def check_payment_transition(current: str, new: str) -> None:
    if new not in PAYMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError("payment_status", current, new)


def check_fulfillment_transition(current: str, new: str) -> None:
    """Forward moves only; cancelled is reachable until the order is final."""
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError("status", current, new)
    if new == "cancelled":
        return
    if new not in STATUS_ORDINAL or STATUS_ORDINAL[new] <= STATUS_ORDINAL[current]:
        raise InvalidTransitionError("status", current, new)
