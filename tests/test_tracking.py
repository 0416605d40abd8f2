"""Tests for the tracking timeline and status transition rules."""

import pytest

from errors import InvalidTransitionError
from tracking import check_fulfillment_transition, check_payment_transition, project


def completed(timeline):
    return [s.key for s in timeline.stages if s.completed]


class TestProjection:
    def test_shipped(self):
        timeline = project({"status": "shipped", "payment_status": "paid"})

        assert completed(timeline) == ["placed", "processing", "shipped"]
        assert [s.key for s in timeline.stages if not s.completed] == ["delivered"]
        assert timeline.progress == 0.75
        assert not timeline.cancelled

    def test_pending_counts_as_placed(self):
        timeline = project({"status": "pending"})
        assert completed(timeline) == ["placed"]
        assert timeline.payment_status == "pending"

    def test_delivered_completes_everything(self):
        assert completed(project({"status": "delivered"})) == ["placed", "processing", "shipped", "delivered"]

    def test_cancelled_is_a_banner(self):
        timeline = project({"id": "o1", "status": "cancelled", "tracking_number": "TRK1"})

        assert timeline.cancelled
        assert timeline.banner
        assert completed(timeline) == []
        assert timeline.progress == 0.0
        assert timeline.tracking_number == "TRK1"


class TestPaymentTransitions:
    @pytest.mark.parametrize("new", ["paid", "failed"])
    def test_from_pending(self, new):
        check_payment_transition("pending", new)

    @pytest.mark.parametrize("current,new", [("paid", "failed"), ("failed", "paid"), ("paid", "pending"), ("pending", "pending")])
    def test_terminal_or_backwards(self, current, new):
        with pytest.raises(InvalidTransitionError):
            check_payment_transition(current, new)


class TestFulfillmentTransitions:
    @pytest.mark.parametrize(
        "current,new",
        [
            ("pending", "processing"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
            ("pending", "shipped"),
            ("pending", "cancelled"),
            ("shipped", "cancelled"),
        ],
    )
    def test_allowed(self, current, new):
        check_fulfillment_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            ("shipped", "processing"),
            ("processing", "pending"),
            ("delivered", "cancelled"),
            ("cancelled", "processing"),
            ("delivered", "shipped"),
        ],
    )
    def test_rejected(self, current, new):
        with pytest.raises(InvalidTransitionError):
            check_fulfillment_transition(current, new)
