"""
Order Reconciliation - the Active Order View.

Works out which lines of an order are still live and what the customer is
owed by merging the sources that record cancellations and returns:

- annotations stored on the order lines themselves
- approved entries in the cancellation ledger
- settled lines of the order's refund summary
- the return ledger (units leave the view once their request is approved;
  a line stays active until every unit has been returned)

Cancelled ids and returned units are recomputed on every call; nothing
derived is ever stored. Building the view is a read path, so any failure
degrades to the order's stored totals (flagged) and is reported, not raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from core.domain import DomainService, ensure_aware, round_currency
from core.observability import ErrorReporter, default_reporter

from .errors import ReconciliationError
from .models import CancellationRequest, Order, OrderItem, OrderStatus, ReturnRequest
from .policies import RefundPolicyConfig
from .pricing import LineAmount, PricingResolver
from .returns import returned_quantity, returned_requests

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ActiveOrderView:
    """
    Derived, never persisted, summary of an order after cancellations and returns.

    delivery_charge is the part of the delivery charge still included in
    remaining_total; delivery_charge_refunded is the part added to the refund.
    """
    order_id: str
    active_items: Tuple[OrderItem, ...]
    active_item_count: int
    remaining_subtotal: float
    remaining_total: float
    delivery_charge: float
    delivery_charge_refunded: float
    has_cancelled_items: bool
    has_returned_items: bool
    is_fully_cancelled: bool
    refund_amount: float
    retention_fee: float
    original_subtotal: float
    original_total: float
    cancelled_item_ids: Tuple[str, ...] = ()
    returned_item_ids: Tuple[str, ...] = ()
    is_degraded: bool = False
    degraded_reason: Optional[str] = None

    @property
    def delivery_charge_waived(self) -> bool:
        return self.delivery_charge_refunded > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for presenters and API responses."""
        return {
            "order_id": self.order_id,
            "active_item_ids": [item.item_id for item in self.active_items],
            "active_item_count": self.active_item_count,
            "remaining_subtotal": self.remaining_subtotal,
            "remaining_total": self.remaining_total,
            "delivery_charge": self.delivery_charge,
            "delivery_charge_refunded": self.delivery_charge_refunded,
            "has_cancelled_items": self.has_cancelled_items,
            "has_returned_items": self.has_returned_items,
            "is_fully_cancelled": self.is_fully_cancelled,
            "refund_amount": self.refund_amount,
            "retention_fee": self.retention_fee,
            "original_subtotal": self.original_subtotal,
            "original_total": self.original_total,
            "cancelled_item_ids": list(self.cancelled_item_ids),
            "returned_item_ids": list(self.returned_item_ids),
            "is_degraded": self.is_degraded,
            "degraded_reason": self.degraded_reason,
        }


def _quantity(items: Iterable[OrderItem]) -> int:
    return sum(_units(item) for item in items)


def _units(item: OrderItem) -> int:
    return item.quantity or 1


def _approved_for_order(order: Order, cancellations: Iterable[CancellationRequest]) -> List[CancellationRequest]:
    approved = [c for c in cancellations if c.order_id == order.order_id and c.is_approved]
    return sorted(
        approved,
        key=lambda c: (ensure_aware(c.request_date) if c.request_date else _EPOCH, c.request_id),
    )


def _attribution_order(order: Order, cancellations: Iterable[CancellationRequest]) -> List[CancellationRequest]:
    approved = _approved_for_order(order, cancellations)
    return [c for c in approved if not c.is_full_order] + [c for c in approved if c.is_full_order]


def _returned_units(order: Order, returns: Iterable[ReturnRequest], cancelled: Set[str]) -> Dict[str, int]:
    """Approved returned units per line, capped at the ordered quantity."""
    units = {}
    for item in order.items:
        if item.item_id in cancelled:
            continue
        quantity = min(returned_quantity(returns, order.order_id, item.item_id), _units(item))
        if quantity > 0:
            units[item.item_id] = quantity
    return units


def _spread(credits: Dict[str, float], item_ids: List[str], amount: float, amounts: Dict[str, LineAmount]):
    """Add amount to the given lines in proportion to their totals."""
    weight = sum(amounts[i].total for i in item_ids)
    for item_id in item_ids:
        share = amounts[item_id].total / weight if weight > 0 else 1 / len(item_ids)
        credits[item_id] = credits.get(item_id, 0.0) + amount * share


def cancelled_item_ids(order: Order, cancellations: Iterable[CancellationRequest]) -> Set[str]:
    """Union of every source that marks a line of this order as cancelled."""
    order_ids = set(order.item_ids)
    cancelled = {item.item_id for item in order.items if item.is_marked_cancelled}

    for request in _approved_for_order(order, cancellations):
        if request.is_full_order:
            cancelled |= order_ids
        else:
            cancelled |= set(request.item_ids) & order_ids

    cancelled |= {entry.item_id for entry in order.refund_summary if entry.is_settled} & order_ids
    return cancelled


class OrderReconciler(DomainService):
    """
    Builds the ActiveOrderView for an order and its ledgers.

    Pure and deterministic: the same snapshot always yields an equal view,
    so callers may retry freely.
    """

    def __init__(
        self,
        config: Optional[RefundPolicyConfig] = None,
        resolver: Optional[PricingResolver] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        self.config = config or RefundPolicyConfig.from_settings()
        self.reporter = reporter or default_reporter
        self.resolver = resolver or PricingResolver(self.reporter)

    def execute(
        self,
        order: Order,
        cancellations: Iterable[CancellationRequest] = (),
        returns: Iterable[ReturnRequest] = (),
    ) -> ActiveOrderView:
        try:
            return self._build(order, list(cancellations or ()), list(returns or ()))
        except Exception as exc:
            order_id = str(getattr(order, "order_id", "unknown"))
            error = ReconciliationError(order_id, str(exc))
            error.__cause__ = exc
            logger.warning(f"Showing stored totals for order {order_id}: {exc}")
            self.reporter.report(error, {"order_id": order_id})
            return self._degraded_view(order, str(exc))

    # =========================================================================
    # VIEW BUILDING
    # =========================================================================

    def _build(
        self,
        order: Order,
        cancellations: List[CancellationRequest],
        returns: List[ReturnRequest],
    ) -> ActiveOrderView:
        if order.order_status == OrderStatus.CANCELLED:
            return self._cancelled_view(order, cancellations)

        cancelled = cancelled_item_ids(order, cancellations)
        returned_units = _returned_units(order, returns, cancelled)
        if not cancelled and not returned_units:
            return self._unchanged_view(order)

        amounts = {item.item_id: self.resolver.execute(item) for item in order.items}
        kept_units = {
            item.item_id: _units(item) - returned_units.get(item.item_id, 0)
            for item in order.items
            if item.item_id not in cancelled
        }
        active = tuple(item for item in order.items if kept_units.get(item.item_id, 0) > 0)
        original_subtotal = round_currency(sum(a.total for a in amounts.values()))
        remaining_subtotal = round_currency(sum(
            amounts[item.item_id].total * kept_units[item.item_id] / _units(item) for item in active
        ))

        all_cancelled = set(order.item_ids) <= cancelled
        single_line_cancelled = len(order.items) == 1 and order.items[0].item_id in cancelled
        delivery_refunded = order.delivery_charge if (all_cancelled or single_line_cancelled) else 0.0
        delivery_retained = order.delivery_charge - delivery_refunded

        cancellation_refund, includes_delivery = self._cancellation_refund(
            order, cancellations, cancelled, amounts
        )
        return_refund = self._return_refund(order, returns, returned_units, amounts)
        refund_amount = cancellation_refund + return_refund
        if not includes_delivery:
            refund_amount += delivery_refunded
        refund_amount = round_currency(refund_amount)

        removed_subtotal = original_subtotal - remaining_subtotal
        retention_fee = round_currency(max(0.0, removed_subtotal + delivery_refunded - refund_amount))

        return ActiveOrderView(
            order_id=order.order_id,
            active_items=active,
            active_item_count=sum(kept_units[item.item_id] for item in active),
            remaining_subtotal=remaining_subtotal,
            remaining_total=round_currency(remaining_subtotal + delivery_retained),
            delivery_charge=round_currency(delivery_retained),
            delivery_charge_refunded=round_currency(delivery_refunded),
            has_cancelled_items=bool(cancelled),
            has_returned_items=bool(returned_units),
            is_fully_cancelled=all_cancelled,
            refund_amount=refund_amount,
            retention_fee=retention_fee,
            original_subtotal=original_subtotal,
            original_total=round_currency(order.total_amt),
            cancelled_item_ids=tuple(i for i in order.item_ids if i in cancelled),
            returned_item_ids=tuple(i for i in order.item_ids if i in returned_units),
        )

    def _cancellation_refund(
        self,
        order: Order,
        cancellations: List[CancellationRequest],
        cancelled: Set[str],
        amounts: Dict[str, LineAmount],
    ) -> Tuple[float, bool]:
        """
        Refund owed for cancelled lines, and whether it already covers delivery.

        Itemized requests are applied before full-order ones, each group in
        request order. A request without an admin figure credits the lines
        nobody has credited yet, from its own line refunds or at the
        cancellation rate. An admin figure is the refund for every line the
        request covers, so it only adds what earlier requests have not
        already credited on those lines. Lines no request credits fall back
        to the refund summary, then the line's own annotation.
        """
        rate = self.config.cancellation_refund_rate
        credits: Dict[str, float] = {}
        includes_delivery = False

        for request in _attribution_order(order, cancellations):
            covered_ids = set(order.item_ids) if request.is_full_order else set(request.item_ids)
            covered = [i for i in order.item_ids if i in covered_ids and i in cancelled]
            fresh = [i for i in covered if i not in credits]

            explicit = request.explicit_refund_amount
            if explicit is None:
                line_refunds = {line.item_id: line.refund_amount for line in request.items}
                for item_id in fresh:
                    if line_refunds.get(item_id, 0) > 0:
                        credits[item_id] = line_refunds[item_id]
                    else:
                        credits[item_id] = amounts[item_id].total * rate
                continue

            if not covered:
                continue
            already = sum(credits[i] for i in covered if i in credits)
            _spread(credits, fresh or covered, max(0.0, explicit - already), amounts)
            includes_delivery = includes_delivery or request.is_full_order

        for item_id in order.item_ids:
            if item_id not in cancelled or item_id in credits:
                continue
            summary_amount = sum(
                entry.amount
                for entry in order.refund_summary
                if entry.item_id == item_id and entry.is_settled
            )
            item = order.get_item(item_id)
            if summary_amount > 0:
                credits[item_id] = summary_amount
            elif item is not None and item.refund_amount > 0:
                credits[item_id] = item.refund_amount
            else:
                credits[item_id] = amounts[item_id].total * rate

        return sum(credits.values()), includes_delivery

    def _return_refund(
        self,
        order: Order,
        returns: List[ReturnRequest],
        returned_units: Dict[str, int],
        amounts: Dict[str, LineAmount],
    ) -> float:
        """Each approved request's locked payout, else its units at the cancellation rate."""
        refund = 0.0
        for item in order.items:
            units_left = returned_units.get(item.item_id, 0)
            if not units_left:
                continue
            unit_total = amounts[item.item_id].total / _units(item)
            for request in returned_requests(returns, order.order_id, item.item_id):
                units = min(request.claimed_quantity, units_left)
                if units <= 0:
                    break
                units_left -= units
                locked = request.refund_details.actual_refund_amount
                if locked is not None and locked > 0:
                    refund += locked
                else:
                    refund += unit_total * units * self.config.cancellation_refund_rate
        return refund

    def _cancelled_view(self, order: Order, cancellations: List[CancellationRequest]) -> ActiveOrderView:
        if order.sub_total_amt > 0:
            original_subtotal = order.sub_total_amt
        else:
            original_subtotal = self.resolver.totals(order.items).total

        explicit = sum(
            c.explicit_refund_amount or 0.0 for c in _approved_for_order(order, cancellations)
        )
        if explicit <= 0 and order.refund_details and order.refund_details.refund_amount > 0:
            explicit = order.refund_details.refund_amount

        if explicit > 0:
            refund_amount = round_currency(explicit)
        else:
            refund_amount = round_currency(
                original_subtotal * self.config.cancellation_refund_rate + order.delivery_charge
            )
        retention_fee = round_currency(
            max(0.0, original_subtotal + order.delivery_charge - refund_amount)
        )

        return ActiveOrderView(
            order_id=order.order_id,
            active_items=(),
            active_item_count=0,
            remaining_subtotal=0.0,
            remaining_total=0.0,
            delivery_charge=0.0,
            delivery_charge_refunded=round_currency(order.delivery_charge),
            has_cancelled_items=True,
            has_returned_items=False,
            is_fully_cancelled=True,
            refund_amount=refund_amount,
            retention_fee=retention_fee,
            original_subtotal=round_currency(original_subtotal),
            original_total=round_currency(order.total_amt),
            cancelled_item_ids=tuple(order.item_ids),
        )

    def _unchanged_view(self, order: Order) -> ActiveOrderView:
        return ActiveOrderView(
            order_id=order.order_id,
            active_items=tuple(order.items),
            active_item_count=_quantity(order.items),
            remaining_subtotal=order.sub_total_amt,
            remaining_total=order.total_amt,
            delivery_charge=order.delivery_charge,
            delivery_charge_refunded=0.0,
            has_cancelled_items=False,
            has_returned_items=False,
            is_fully_cancelled=False,
            refund_amount=0.0,
            retention_fee=0.0,
            original_subtotal=order.sub_total_amt,
            original_total=order.total_amt,
        )

    def _degraded_view(self, order: Any, reason: str) -> ActiveOrderView:
        """Stored totals verbatim, for when the ledgers could not be merged."""
        items = getattr(order, "items", None)
        items = tuple(items) if isinstance(items, (list, tuple)) else ()
        try:
            count = _quantity(items)
        except (TypeError, AttributeError):
            count = len(items)

        def stored(name: str) -> float:
            value = getattr(order, name, 0.0)
            return value if isinstance(value, (int, float)) else 0.0

        return ActiveOrderView(
            order_id=str(getattr(order, "order_id", "unknown")),
            active_items=items,
            active_item_count=count,
            remaining_subtotal=stored("sub_total_amt"),
            remaining_total=stored("total_amt"),
            delivery_charge=stored("delivery_charge"),
            delivery_charge_refunded=0.0,
            has_cancelled_items=False,
            has_returned_items=False,
            is_fully_cancelled=False,
            refund_amount=0.0,
            retention_fee=0.0,
            original_subtotal=stored("sub_total_amt"),
            original_total=stored("total_amt"),
            is_degraded=True,
            degraded_reason=f"Cancellation and return data could not be fully resolved: {reason}",
        )


def build_active_view(
    order: Order,
    cancellation_ledger: Iterable[CancellationRequest] = (),
    return_ledger: Iterable[ReturnRequest] = (),
    *,
    config: Optional[RefundPolicyConfig] = None,
    resolver: Optional[PricingResolver] = None,
    reporter: Optional[ErrorReporter] = None,
) -> ActiveOrderView:
    """The single derivation of an order's active view; all screens use this."""
    reconciler = OrderReconciler(config=config, resolver=resolver, reporter=reporter)
    return reconciler.execute(order, cancellation_ledger, return_ledger)
