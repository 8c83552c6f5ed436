from datetime import timedelta

import pytest

from use_cases.order_lifecycle.domain.errors import PricingResolutionError, ReconciliationError
from use_cases.order_lifecycle.domain.models import (
    CancellationStatus,
    ItemStatus,
    OrderItem,
    OrderRefundDetails,
    OrderStatus,
    RefundSummaryEntry,
    ReturnStatus,
)
from use_cases.order_lifecycle.domain.reconciliation import build_active_view


@pytest.fixture
def build(config, reporter):
    def run(order, cancellations=(), returns=()):
        return build_active_view(order, cancellations, returns, config=config, reporter=reporter)
    return run


@pytest.fixture
def two_items(make_item, make_order):
    # subtotal 500, delivery 50, total 550
    return make_order([make_item("A", 200), make_item("B", 300)])


@pytest.fixture
def three_items(make_item, make_order):
    return make_order([make_item("A", 100), make_item("B", 200), make_item("C", 300)], delivery=60)


def active_ids(view):
    return [item.item_id for item in view.active_items]


def assert_balanced(view):
    assert view.remaining_subtotal + view.delivery_charge == pytest.approx(view.remaining_total, abs=0.01)
    removed = view.original_subtotal - view.remaining_subtotal
    assert view.refund_amount + view.retention_fee == pytest.approx(
        removed + view.delivery_charge_refunded, abs=0.01
    )


class TestCancelledOrder:
    @pytest.fixture
    def cancelled(self, make_item, make_order):
        order = make_order([make_item("A", 900)], delivery=100, status=OrderStatus.CANCELLED)
        assert (order.total_amt, order.sub_total_amt) == (1000, 900)
        return order

    def test_computed_refund(self, build, cancelled):
        view = build(cancelled)
        assert view.is_fully_cancelled
        assert view.active_items == ()
        assert view.remaining_total == 0
        assert view.refund_amount == 910
        assert view.retention_fee == 90
        assert view.delivery_charge_refunded == 100
        assert_balanced(view)

    def test_order_refund_record_wins(self, build, cancelled):
        cancelled.refund_details = OrderRefundDetails(refund_amount=750)
        view = build(cancelled)
        assert view.refund_amount == 750
        assert view.retention_fee == 250

    def test_ledger_refund_figure_wins(self, build, cancelled, make_cancellation):
        view = build(cancelled, [make_cancellation(refund_amount=800)])
        assert view.refund_amount == 800
        assert view.retention_fee == 200


class TestPartialCancellation:
    def test_one_of_two_items(self, build, two_items, make_cancellation):
        view = build(two_items, [make_cancellation(["A"])])
        assert active_ids(view) == ["B"]
        assert view.active_item_count == 1
        assert view.remaining_subtotal == 300
        assert view.delivery_charge == 50
        assert view.remaining_total == 350
        assert view.refund_amount == 180
        assert view.retention_fee == 20
        assert view.has_cancelled_items
        assert not view.is_fully_cancelled
        assert view.cancelled_item_ids == ("A",)
        assert_balanced(view)

    def test_single_item_order(self, build, make_item, make_order, make_cancellation):
        order = make_order([make_item("A", 400, quantity=2)], delivery=40)
        view = build(order, [make_cancellation(["A"])])
        assert view.remaining_total == 0
        assert view.delivery_charge == 0
        assert view.delivery_charge_refunded == 40
        assert view.delivery_charge_waived
        assert view.refund_amount == 760
        assert_balanced(view)

    def test_one_of_three_keeps_delivery(self, build, three_items, make_cancellation):
        view = build(three_items, [make_cancellation(["B"])])
        assert view.remaining_subtotal == 400
        assert view.remaining_total == 460
        assert view.delivery_charge_refunded == 0
        assert_balanced(view)

    def test_every_item_cancelled_one_by_one(self, build, two_items, make_cancellation):
        ledger = [
            make_cancellation(["A"], request_id="CAN-1"),
            make_cancellation(["B"], request_id="CAN-2"),
        ]
        view = build(two_items, ledger)
        assert view.is_fully_cancelled
        assert view.remaining_total == 0
        assert view.refund_amount == 500
        assert_balanced(view)

    def test_full_order_request_with_explicit_figure(self, build, two_items, make_cancellation):
        view = build(two_items, [make_cancellation(refund_amount=400)])
        assert view.is_fully_cancelled
        assert view.refund_amount == 400
        assert view.retention_fee == 150
        assert_balanced(view)

    def test_explicit_figure_on_item_request(self, build, two_items, make_cancellation):
        view = build(two_items, [make_cancellation(["A"], refund_amount=150)])
        assert view.refund_amount == 150
        assert view.retention_fee == 50

    def test_item_figure_kept_when_earlier_full_order_approval_added(
        self, build, two_items, make_cancellation, now
    ):
        itemized = make_cancellation(["A"], request_id="CAN-2", refund_amount=180, request_date=now)
        full_order = make_cancellation(request_id="CAN-1", refund_amount=10, request_date=now - timedelta(days=1))

        before = build(two_items, [itemized])
        after = build(two_items, [itemized, full_order])
        assert before.refund_amount == 180
        assert after.is_fully_cancelled
        assert after.refund_amount == 180
        assert after.remaining_total == 0
        assert_balanced(after)

    def test_full_order_figure_nets_against_item_figure(self, build, two_items, make_cancellation, now):
        full_order = make_cancellation(request_id="CAN-1", refund_amount=400, request_date=now - timedelta(days=1))
        itemized = make_cancellation(["A"], request_id="CAN-2", refund_amount=180, request_date=now)

        assert build(two_items, [full_order]).refund_amount == 400
        view = build(two_items, [full_order, itemized])
        assert view.refund_amount == 400
        assert view.retention_fee == 150
        assert_balanced(view)

    def test_processed_counts_as_approved(self, build, two_items, make_cancellation):
        view = build(two_items, [make_cancellation(["A"], status=CancellationStatus.PROCESSED)])
        assert active_ids(view) == ["B"]

    @pytest.mark.parametrize("status", [CancellationStatus.PENDING, CancellationStatus.REJECTED])
    def test_unresolved_requests_are_ignored(self, build, two_items, make_cancellation, status):
        view = build(two_items, [make_cancellation(["A"], status=status)])
        assert active_ids(view) == ["A", "B"]
        assert view.refund_amount == 0

    def test_other_orders_are_ignored(self, build, two_items, make_cancellation):
        view = build(two_items, [make_cancellation(["A"], order_id="ORD-2")])
        assert view.remaining_total == two_items.total_amt


class TestOtherSources:
    def test_embedded_annotation(self, build, make_item, make_order):
        order = make_order([
            make_item("A", 200, status=ItemStatus.CANCELLED, refund_amount=170),
            make_item("B", 300),
        ])
        view = build(order)
        assert active_ids(view) == ["B"]
        assert view.refund_amount == 170

    def test_cancel_approved_flag(self, build, make_item, make_order):
        order = make_order([make_item("A", 200, cancel_approved=True), make_item("B", 300)])
        view = build(order)
        assert view.refund_amount == 180

    def test_settled_refund_summary(self, build, two_items):
        two_items.refund_summary = [RefundSummaryEntry(item_id="A", status="Completed", amount=175)]
        view = build(two_items)
        assert active_ids(view) == ["B"]
        assert view.refund_amount == 175

    def test_pending_refund_summary_is_ignored(self, build, two_items):
        two_items.refund_summary = [RefundSummaryEntry(item_id="A", status="Pending", amount=175)]
        assert active_ids(build(two_items)) == ["A", "B"]

    def test_sources_are_counted_once(self, build, make_item, make_order, make_cancellation):
        order = make_order([
            make_item("A", 200, status=ItemStatus.CANCELLED, refund_amount=170),
            make_item("B", 300),
        ])
        order.refund_summary = [RefundSummaryEntry(item_id="A", status="Approved", amount=175)]
        view = build(order, [make_cancellation(["A"])])
        assert view.cancelled_item_ids == ("A",)
        assert view.refund_amount == 180


class TestReturns:
    def test_rejected_return_stays_active(self, build, two_items, make_return):
        view = build(two_items, returns=[make_return("B", status=ReturnStatus.REJECTED)])
        assert active_ids(view) == ["A", "B"]
        assert not view.has_returned_items

    def test_requested_return_stays_active(self, build, two_items, make_return):
        view = build(two_items, returns=[make_return("B")])
        assert active_ids(view) == ["A", "B"]

    def test_approved_return_with_locked_amount(self, build, two_items, make_return):
        view = build(two_items, returns=[make_return("B", status=ReturnStatus.APPROVED, locked_amount=195)])
        assert active_ids(view) == ["A"]
        assert view.has_returned_items
        assert view.returned_item_ids == ("B",)
        assert view.remaining_total == 250
        assert view.delivery_charge == 50
        assert view.refund_amount == 195

    def test_returned_without_locked_amount(self, build, two_items, make_return):
        view = build(two_items, returns=[make_return("B", status=ReturnStatus.COMPLETED)])
        assert view.refund_amount == 270
        assert_balanced(view)

    def test_partial_quantity_return_keeps_remaining_units(self, build, make_item, make_order, make_return):
        order = make_order([make_item("A", 100, quantity=3)])
        returns = [make_return("A", status=ReturnStatus.APPROVED, quantity=1, locked_amount=65)]
        view = build(order, returns=returns)
        assert active_ids(view) == ["A"]
        assert view.active_item_count == 2
        assert view.remaining_subtotal == 200
        assert view.remaining_total == 250
        assert view.refund_amount == 65
        assert view.retention_fee == 35
        assert view.returned_item_ids == ("A",)
        assert_balanced(view)

    def test_line_leaves_once_every_unit_is_returned(self, build, make_item, make_order, make_return):
        order = make_order([make_item("A", 100, quantity=3), make_item("B", 50)])
        returns = [
            make_return("A", status=ReturnStatus.COMPLETED, return_id="RET-1", quantity=1, locked_amount=65),
            make_return("A", status=ReturnStatus.APPROVED, return_id="RET-2", quantity=2, locked_amount=130),
            make_return("A", status=ReturnStatus.REJECTED, return_id="RET-3", quantity=1),
        ]
        view = build(order, returns=returns)
        assert active_ids(view) == ["B"]
        assert view.active_item_count == 1
        assert view.remaining_subtotal == 50
        assert view.refund_amount == 195
        assert_balanced(view)

    def test_unlocked_partial_return_refunds_returned_units_only(
        self, build, make_item, make_order, make_return
    ):
        order = make_order([make_item("A", 100, quantity=4)])
        view = build(order, returns=[make_return("A", status=ReturnStatus.PICKED_UP, quantity=2)])
        assert view.remaining_subtotal == 200
        assert view.refund_amount == 180
        assert view.retention_fee == 20

    def test_resubmitted_after_rejection(self, build, two_items, make_return):
        returns = [
            make_return("B", status=ReturnStatus.REJECTED, return_id="RET-1"),
            make_return("B", status=ReturnStatus.PICKED_UP, return_id="RET-2"),
        ]
        assert active_ids(build(two_items, returns=returns)) == ["A"]


class TestProperties:
    def test_no_changes_returns_stored_totals(self, build, two_items):
        view = build(two_items)
        assert view.remaining_subtotal == 500
        assert view.remaining_total == 550
        assert view.delivery_charge == 50
        assert view.refund_amount == 0
        assert view.active_item_count == 2
        assert not view.is_degraded

    def test_idempotent(self, build, three_items, make_cancellation, make_return):
        ledger = [make_cancellation(["A"])]
        returns = [make_return("C", status=ReturnStatus.APPROVED, locked_amount=195)]
        assert build(three_items, ledger, returns) == build(three_items, ledger, returns)
        assert build(three_items, ledger, returns).to_dict() == build(three_items, ledger, returns).to_dict()

    def test_more_cancellations_never_raise_remaining_or_lower_refund(
        self, build, three_items, make_cancellation
    ):
        first = [make_cancellation(["A"], request_id="CAN-1")]
        second = first + [make_cancellation(["C"], request_id="CAN-2")]
        third = second + [make_cancellation(["B"], request_id="CAN-3")]
        views = [build(three_items), build(three_items, first), build(three_items, second), build(three_items, third)]

        for before, after in zip(views, views[1:]):
            assert after.remaining_total <= before.remaining_total
            assert after.refund_amount >= before.refund_amount
            assert_balanced(after)

    def test_mixed_explicit_figures_never_lower_refund(self, build, three_items, make_cancellation, now):
        ledger = [
            make_cancellation(["B"], request_id="CAN-3", refund_amount=150, request_date=now),
            make_cancellation(request_id="CAN-1", refund_amount=120, request_date=now - timedelta(days=2)),
            make_cancellation(["A", "C"], request_id="CAN-2", request_date=now - timedelta(days=1)),
        ]
        views = [build(three_items, ledger[:n]) for n in range(len(ledger) + 1)]

        for before, after in zip(views, views[1:]):
            assert after.remaining_total <= before.remaining_total
            assert after.refund_amount >= before.refund_amount
            assert_balanced(after)

    def test_to_dict(self, build, two_items, make_cancellation):
        data = build(two_items, [make_cancellation(["A"])]).to_dict()
        assert data["active_item_ids"] == ["B"]
        assert data["cancelled_item_ids"] == ["A"]
        assert data["is_degraded"] is False


class TestDegradedView:
    def test_malformed_ledger_degrades_to_stored_totals(self, build, two_items, reporter):
        view = build(two_items, [{"orderId": "ORD-1", "status": "APPROVED"}])
        assert view.is_degraded
        assert "could not be fully resolved" in view.degraded_reason
        assert view.remaining_total == 550
        assert view.remaining_subtotal == 500
        assert active_ids(view) == ["A", "B"]

        error, context = reporter.reports[-1]
        assert isinstance(error, ReconciliationError)
        assert context == {"order_id": "ORD-1"}

    def test_unpriceable_line_does_not_degrade_view(self, build, make_order, make_cancellation, reporter):
        broken = OrderItem(item_id="A", reference="bad")
        order = make_order([broken, OrderItem(item_id="B", unit_price=300, item_total=300)])
        view = build(order, [make_cancellation(["B"])])
        assert not view.is_degraded
        assert active_ids(view) == ["A"]
        assert view.remaining_subtotal == 0
        assert view.refund_amount == 270
        assert isinstance(reporter.reports[0][0], PricingResolutionError)
