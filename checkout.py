"""
Checkout

One checkout attempt walks

    IDLE -> ORDER_CREATED -> LINES_CREATED -> PAYMENT_INVOKED
         -> PAID | FAILED | ABANDONED

``begin`` runs up to PAYMENT_INVOKED and returns the widget configuration.
``reconcile`` applies what the widget reported. ``checkout`` runs both
against a ``PaymentWidget`` in one call.

The order row is written before payment and is never deleted: if the order
lines fail, or the buyer closes the widget, the order stays pending/pending.
"""
import logging
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import Account
from cart import Cart
from database import create_document, get_document, now
from errors import (
    ConfigurationError,
    NotFoundError,
    OrderCreationError,
    PaymentError,
    RemotePersistenceError,
    Unauthenticated,
    ValidationError,
)
from paystack import (
    OutcomeKind,
    PaymentInvocation,
    PaymentOutcome,
    PaymentWidget,
    generate_payment_reference,
    to_minor_units,
)
from schemas import Order, OrderItem
from tracking import check_payment_transition

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    ORDER_CREATED = "order_created"
    LINES_CREATED = "lines_created"
    PAYMENT_INVOKED = "payment_invoked"
    PAID = "paid"
    FAILED = "failed"
    ABANDONED = "abandoned"


class ShippingDetails(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field("Nigeria", min_length=1)

    def snapshot(self) -> str:
        return f"{self.address}, {self.city}, {self.state}, {self.country}"


class CheckoutAttempt(BaseModel):
    state: CheckoutState = CheckoutState.IDLE
    order_id: Optional[str] = None
    reference: Optional[str] = None
    total_amount: Optional[float] = None
    invocation: Optional[PaymentInvocation] = None
    warning: Optional[str] = None


class CheckoutOrchestrator:
    def __init__(
        self,
        db: Database,
        public_key: Optional[str],
        currency: str = "NGN",
        shipping_fee: float = 2000,
        reference_factory: Callable[[], str] = generate_payment_reference,
    ):
        self.db = db
        self.public_key = public_key
        self.currency = currency
        self.shipping_fee = shipping_fee
        self.reference_factory = reference_factory

    def order_total(self, cart: Cart) -> float:
        return cart.total() + self.shipping_fee

    def begin(self, account: Optional[Account], cart: Cart, shipping: ShippingDetails) -> CheckoutAttempt:
        if account is None:
            raise Unauthenticated()
        if not self.public_key:
            raise ConfigurationError("PAYSTACK_PUBLIC_KEY")
        if cart.is_empty():
            raise ValidationError("Your cart is empty", {"cart": "Add items before checking out"})
        unavailable = cart.unavailable_lines()
        if unavailable:
            raise ValidationError(
                "Some items in your cart are no longer available",
                {"cart": ", ".join(l["product_id"] for l in unavailable)},
            )

        attempt = CheckoutAttempt()
        attempt.reference = self.reference_factory()
        attempt.total_amount = self.order_total(cart)
        order = Order(
            user_id=account.id,
            total_amount=attempt.total_amount,
            payment_reference=attempt.reference,
            shipping_address=shipping.snapshot(),
        )
        try:
            attempt.order_id = create_document("order", order, database=self.db)
        except RemotePersistenceError as e:
            if isinstance(e.cause, DuplicateKeyError):
                logger.warning("Payment reference collision: %s", attempt.reference)
                raise OrderCreationError("Could not reserve a payment reference. Please try again.") from e
            logger.error("Order creation failed for user %s: %s", account.id, e)
            raise OrderCreationError("Failed to create order") from e
        attempt.state = CheckoutState.ORDER_CREATED
        logger.info("Order %s created (%s, total %s)", attempt.order_id, attempt.reference, attempt.total_amount)

        stamp = now()
        items = [
            {
                **OrderItem(
                    order_id=attempt.order_id,
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    price=line["product"]["price"],
                ).model_dump(),
                "created_at": stamp,
            }
            for line in cart.lines
        ]
        try:
            self.db["orderitem"].insert_many(items)
        except PyMongoError as e:
            logger.error("Order items failed for order %s, leaving it pending: %s", attempt.order_id, e)
            raise OrderCreationError("Failed to create order items", order_id=attempt.order_id) from e
        attempt.state = CheckoutState.LINES_CREATED

        attempt.invocation = PaymentInvocation(
            public_key=self.public_key,
            email=shipping.email,
            amount=to_minor_units(attempt.total_amount),
            currency=self.currency,
            reference=attempt.reference,
            order_id=attempt.order_id,
        )
        attempt.state = CheckoutState.PAYMENT_INVOKED
        return attempt

    def _load_order(self, account: Account, order_id: str):
        order = get_document("order", order_id, database=self.db)
        if order["user_id"] != account.id and not account.is_admin:
            raise NotFoundError("Order", order_id)
        return order

    def reconcile(self, account: Account, order_id: str, outcome: PaymentOutcome, cart: Cart) -> CheckoutAttempt:
        order = self._load_order(account, order_id)
        attempt = CheckoutAttempt(
            state=CheckoutState.PAYMENT_INVOKED,
            order_id=order_id,
            reference=order["payment_reference"],
            total_amount=order["total_amount"],
        )
        if outcome.reference and outcome.reference != order["payment_reference"]:
            raise PaymentError(outcome.reference, "Payment reference does not match this order")

        if outcome.kind == OutcomeKind.CLOSED:
            logger.info("Payment widget closed for order %s", order_id)
            attempt.state = CheckoutState.ABANDONED
            return attempt

        if outcome.kind == OutcomeKind.SUCCESS:
            self._mark_paid(order, attempt)
            try:
                cart.clear()
            except RemotePersistenceError as e:
                logger.error("Order %s paid but cart was not cleared: %s", order_id, e)
            attempt.state = CheckoutState.PAID
            return attempt

        self._mark_failed(order)
        attempt.state = CheckoutState.FAILED
        raise PaymentError(order["payment_reference"])

    def _mark_paid(self, order, attempt: CheckoutAttempt) -> None:
        # The processor holds the money; a failed update here must not fail the buyer.
        current = order.get("payment_status", "pending")
        if current == "paid":
            return
        if current != "pending":
            logger.error("Order %s captured payment but is marked %s", order["_id"], current)
            attempt.warning = "Payment received; order status will be updated shortly"
            return
        try:
            self.db["order"].update_one(
                {"_id": order["_id"], "payment_status": "pending"},
                {"$set": {"payment_status": "paid", "status": "processing", "updated_at": now()}},
            )
        except PyMongoError as e:
            logger.error("Order %s paid but status update failed: %s", order["_id"], e)
            attempt.warning = "Payment received; order status will be updated shortly"

    def _mark_failed(self, order) -> None:
        current = order.get("payment_status", "pending")
        if current == "failed":
            return
        check_payment_transition(current, "failed")
        try:
            self.db["order"].update_one(
                {"_id": order["_id"], "payment_status": "pending"},
                {"$set": {"payment_status": "failed", "updated_at": now()}},
            )
        except PyMongoError as e:
            logger.error("Could not mark order %s as failed: %s", order["_id"], e)

    def checkout(self, account: Optional[Account], cart: Cart, shipping: ShippingDetails, widget: PaymentWidget) -> CheckoutAttempt:
        attempt = self.begin(account, cart, shipping)
        outcome = widget.invoke(attempt.invocation)
        return self.reconcile(account, attempt.order_id, outcome, cart)
