"""
Paystack inline checkout

The widget runs in the browser. The server builds its configuration
(``PaymentInvocation``) and turns what the widget reports back into a
``PaymentOutcome``. Only ``status == "success"`` counts as paid.
"""
import random
import string
import time
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, EmailStr

INLINE_SCRIPT_URL = "https://js.paystack.co/v1/inline.js"

_BASE36 = string.digits + string.ascii_lowercase


def generate_payment_reference() -> str:
    """``rf_<epoch millis>_<9 base36 chars>``. Uniqueness is enforced by the order index."""
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"rf_{int(time.time() * 1000)}_{suffix}"


def to_minor_units(amount: float) -> int:
    """Naira to kobo (or any 1/100 currency), rounded to an integer."""
    return int(round(amount * 100))


class PaymentInvocation(BaseModel):
    public_key: str
    email: EmailStr
    amount: int
    currency: str
    reference: str
    order_id: str
    script_url: str = INLINE_SCRIPT_URL


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    CLOSED = "closed"
    FAILED = "failed"


class PaymentOutcome(BaseModel):
    kind: OutcomeKind
    reference: Optional[str] = None
    response: Dict[str, Any] = {}

    @classmethod
    def from_callback(cls, response: Dict[str, Any]) -> "PaymentOutcome":
        """Map the widget's callback payload. Anything but "success" is a failure."""
        kind = OutcomeKind.SUCCESS if response.get("status") == "success" else OutcomeKind.FAILED
        return cls(kind=kind, reference=response.get("reference"), response=response)

    @classmethod
    def closed(cls) -> "PaymentOutcome":
        return cls(kind=OutcomeKind.CLOSED)


class PaymentWidget(Protocol):
    def invoke(self, invocation: PaymentInvocation) -> PaymentOutcome:
        ...
