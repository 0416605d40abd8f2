"""Tests for the checkout orchestrator."""

import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from cart import Cart
from checkout import CheckoutOrchestrator, CheckoutState, ShippingDetails
from errors import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    OrderCreationError,
    PaymentError,
    Unauthenticated,
    ValidationError,
)
from paystack import OutcomeKind, PaymentOutcome, generate_payment_reference, to_minor_units

SHIPPING = ShippingDetails(
    full_name="Ada Obi",
    email="ada@glowshop.com",
    phone="+234 801 234 5678",
    address="12 Admiralty Way",
    city="Lekki",
    state="Lagos",
    country="Nigeria",
)


class ScriptedWidget:
    """Payment widget double that answers with a fixed outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.invocations = []

    def invoke(self, invocation):
        self.invocations.append(invocation)
        if self.outcome.kind == OutcomeKind.CLOSED:
            return self.outcome
        return PaymentOutcome(kind=self.outcome.kind, reference=invocation.reference, response=self.outcome.response)


def fail(*args, **kwargs):
    raise OperationFailure("store unavailable")


@pytest.fixture
def orchestrator(db):
    return CheckoutOrchestrator(db, public_key="pk_test_123", shipping_fee=2000)


@pytest.fixture
def filled_cart(db, buyer, make_product):
    cart = Cart.load(db, buyer.id)
    cart.add_line(make_product("A", price=5000), 2)
    cart.add_line(make_product("B", price=3000), 1)
    return cart


def order_doc(db, order_id):
    return db["order"].find_one({"_id": ObjectId(order_id)})


class TestBegin:
    def test_order_total_includes_shipping(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)

        assert attempt.state == CheckoutState.PAYMENT_INVOKED
        assert attempt.total_amount == 15000
        order = order_doc(db, attempt.order_id)
        assert order["total_amount"] == 15000
        assert (order["status"], order["payment_status"]) == ("pending", "pending")
        assert order["shipping_address"] == "12 Admiralty Way, Lekki, Lagos, Nigeria"
        assert order["payment_reference"] == attempt.reference

    def test_order_lines_snapshot_prices(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        db["product"].update_many({}, {"$set": {"price": 1}})

        items = list(db["orderitem"].find({"order_id": attempt.order_id}))
        assert sorted((i["price"], i["quantity"]) for i in items) == [(3000, 1), (5000, 2)]
        assert sum(i["price"] * i["quantity"] for i in items) + 2000 == order_doc(db, attempt.order_id)["total_amount"]

    def test_invocation(self, buyer, orchestrator, filled_cart):
        invocation = orchestrator.begin(buyer, filled_cart, SHIPPING).invocation

        assert invocation.public_key == "pk_test_123"
        assert invocation.email == "ada@glowshop.com"
        assert invocation.amount == 1500000
        assert invocation.currency == "NGN"

    def test_missing_key_fails_before_writing(self, db, buyer, filled_cart):
        with pytest.raises(ConfigurationError):
            CheckoutOrchestrator(db, public_key=None).begin(buyer, filled_cart, SHIPPING)
        assert db["order"].count_documents({}) == 0

    def test_requires_account(self, orchestrator, filled_cart):
        with pytest.raises(Unauthenticated):
            orchestrator.begin(None, filled_cart, SHIPPING)

    def test_empty_cart(self, db, buyer, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.begin(buyer, Cart.load(db, buyer.id), SHIPPING)

    def test_unavailable_line_blocks_checkout(self, db, buyer, orchestrator, filled_cart):
        db["product"].update_one({"name": "B"}, {"$set": {"is_active": False}})
        with pytest.raises(ValidationError):
            orchestrator.begin(buyer, Cart.load(db, buyer.id), SHIPPING)

    def test_reference_collision(self, db, buyer, filled_cart):
        orchestrator = CheckoutOrchestrator(db, public_key="pk", reference_factory=lambda: "rf_fixed")
        orchestrator.begin(buyer, filled_cart, SHIPPING)

        with pytest.raises(OrderCreationError):
            orchestrator.begin(buyer, filled_cart, SHIPPING)
        assert db["order"].count_documents({}) == 1

    def test_line_failure_leaves_orphan_order(self, db, buyer, orchestrator, filled_cart, monkeypatch):
        monkeypatch.setattr(mongomock.collection.Collection, "insert_many", fail)

        with pytest.raises(OrderCreationError) as excinfo:
            orchestrator.begin(buyer, filled_cart, SHIPPING)

        orphan = order_doc(db, excinfo.value.order_id)
        assert (orphan["status"], orphan["payment_status"]) == ("pending", "pending")
        assert len(filled_cart) == 2


class TestReconcile:
    def test_success_marks_paid_and_clears_cart(self, db, buyer, orchestrator, filled_cart):
        widget = ScriptedWidget(PaymentOutcome(kind=OutcomeKind.SUCCESS, response={"status": "success"}))

        attempt = orchestrator.checkout(buyer, filled_cart, SHIPPING, widget)

        assert attempt.state == CheckoutState.PAID
        order = order_doc(db, attempt.order_id)
        assert (order["payment_status"], order["status"]) == ("paid", "processing")
        assert filled_cart.is_empty()
        assert Cart.load(db, buyer.id).is_empty()

    def test_close_keeps_order_pending_and_cart(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.checkout(buyer, filled_cart, SHIPPING, ScriptedWidget(PaymentOutcome.closed()))

        assert attempt.state == CheckoutState.ABANDONED
        order = order_doc(db, attempt.order_id)
        assert (order["payment_status"], order["status"]) == ("pending", "pending")
        assert len(Cart.load(db, buyer.id)) == 2

    def test_failure_marks_failed_and_keeps_cart(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        outcome = PaymentOutcome.from_callback({"status": "failed", "reference": attempt.reference})

        with pytest.raises(PaymentError):
            orchestrator.reconcile(buyer, attempt.order_id, outcome, filled_cart)

        assert order_doc(db, attempt.order_id)["payment_status"] == "failed"
        assert len(Cart.load(db, buyer.id)) == 2

    def test_status_update_failure_still_confirms(self, db, buyer, orchestrator, filled_cart, monkeypatch):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        monkeypatch.setattr(mongomock.collection.Collection, "update_one", fail)

        result = orchestrator.reconcile(buyer, attempt.order_id, PaymentOutcome.from_callback({"status": "success"}), filled_cart)

        assert result.state == CheckoutState.PAID
        assert result.warning
        assert filled_cart.is_empty()

    def test_paid_is_terminal(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        orchestrator.reconcile(buyer, attempt.order_id, PaymentOutcome.from_callback({"status": "success"}), filled_cart)

        with pytest.raises(InvalidTransitionError):
            orchestrator.reconcile(buyer, attempt.order_id, PaymentOutcome.from_callback({"status": "failed"}), filled_cart)
        assert order_doc(db, attempt.order_id)["payment_status"] == "paid"

    def test_reference_mismatch_is_rejected(self, db, buyer, orchestrator, filled_cart):
        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        outcome = PaymentOutcome.from_callback({"status": "success", "reference": "rf_other"})

        with pytest.raises(PaymentError):
            orchestrator.reconcile(buyer, attempt.order_id, outcome, filled_cart)
        assert order_doc(db, attempt.order_id)["payment_status"] == "pending"

    def test_other_buyers_order_is_not_found(self, db, buyer, admin, orchestrator, filled_cart):
        from auth import Account

        attempt = orchestrator.begin(buyer, filled_cart, SHIPPING)
        stranger = Account(id=str(ObjectId()), email="eve@glowshop.com", full_name="Eve")

        with pytest.raises(NotFoundError):
            orchestrator.reconcile(stranger, attempt.order_id, PaymentOutcome.closed(), filled_cart)


class TestPaystackHelpers:
    def test_reference_format(self):
        ref = generate_payment_reference()
        prefix, millis, suffix = ref.split("_")
        assert prefix == "rf"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_references_differ(self):
        assert len({generate_payment_reference() for _ in range(50)}) == 50

    def test_minor_units_round(self):
        assert to_minor_units(15000) == 1500000
        assert to_minor_units(19.999) == 2000

    def test_only_success_status_is_paid(self):
        assert PaymentOutcome.from_callback({"status": "success"}).kind == OutcomeKind.SUCCESS
        assert PaymentOutcome.from_callback({"status": "abandoned"}).kind == OutcomeKind.FAILED
        assert PaymentOutcome.from_callback({}).kind == OutcomeKind.FAILED
