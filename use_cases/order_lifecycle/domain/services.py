"""
Domain Services - Business Operations.

These services orchestrate business logic without I/O dependencies.
They use policies for decisions and work with pure data structures;
every operation returns new records for the caller to persist.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Union

from core.domain import DomainService, PolicyDecision
from core.observability import ErrorReporter, default_reporter

from .errors import InvalidTransitionError, OrderFrozenError, ReturnEligibilityError
from .models import (
    CancellationRequest,
    Order,
    OrderStatus,
    ReturnItemDetails,
    ReturnReason,
    ReturnRequest,
    ReturnStatus,
    TimelineEntry,
)
from .policies import (
    CancellationEligibilityPolicy,
    RefundPolicyConfig,
    ReturnEligibilityPolicy,
    quote_return_refund,
)
from .pricing import PricingResolver
from .reconciliation import cancelled_item_ids
from .returns import claimed_quantity, has_open_return, new_return_id

logger = logging.getLogger(__name__)


# =============================================================================
# ORDER STATUS
# =============================================================================

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.ORDER_PLACED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class OrderStatusUpdate:
    order: Order
    previous_status: OrderStatus
    changed: bool


def pending_cancellations(order: Order, cancellations: Iterable[CancellationRequest]) -> List[CancellationRequest]:
    return [c for c in cancellations if c.order_id == order.order_id and c.is_pending]


def find_pending_conflicts(cancellations: Iterable[CancellationRequest]) -> Dict[str, List[str]]:
    """
    Orders with more than one pending full-order cancellation.

    Detection only; the request store must serialize creation per order to
    prevent these.
    """
    by_order: Dict[str, List[str]] = {}
    for request in cancellations:
        if request.is_pending and request.is_full_order:
            by_order.setdefault(request.order_id, []).append(request.request_id)

    conflicts = {order_id: ids for order_id, ids in by_order.items() if len(ids) > 1}
    for order_id, ids in conflicts.items():
        logger.warning(f"Order {order_id} has {len(ids)} pending full-order cancellations: {', '.join(ids)}")
    return conflicts


def check_cancellation_eligibility(
    order: Order,
    cancellations: Iterable[CancellationRequest] = (),
) -> PolicyDecision:
    pending_full = [c.request_id for c in pending_cancellations(order, cancellations) if c.is_full_order]
    return CancellationEligibilityPolicy().evaluate({
        "order_status": order.order_status,
        "pending_full_order_request_ids": pending_full,
    })


def update_order_status(
    order: Order,
    target_status: Union[OrderStatus, str],
    cancellations: Iterable[CancellationRequest] = (),
    now: Optional[datetime] = None,
) -> OrderStatusUpdate:
    """
    Move an order along ORDER_STATUS_TRANSITIONS.

    Setting the current status again is a no-op. Raises OrderFrozenError
    while any cancellation request for the order is pending, and
    InvalidTransitionError for moves the graph does not allow. An order
    whose lines are all cancelled may only move to CANCELLED.
    """
    target_status = OrderStatus.parse(target_status)
    previous = order.order_status
    if target_status == previous:
        return OrderStatusUpdate(order=order, previous_status=previous, changed=False)

    cancellations = list(cancellations)
    pending = pending_cancellations(order, cancellations)
    if pending:
        raise OrderFrozenError(order.order_id, [c.request_id for c in pending])

    fully_cancelled = bool(order.items) and set(order.item_ids) <= cancelled_item_ids(order, cancellations)
    if fully_cancelled:
        if target_status != OrderStatus.CANCELLED or previous in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise InvalidTransitionError(
                previous,
                target_status,
                f"Every item of order {order.order_id} is cancelled; it can only move to CANCELLED",
            )
    elif target_status not in ORDER_STATUS_TRANSITIONS.get(previous, set()):
        raise InvalidTransitionError(
            previous,
            target_status,
            f"Order {order.order_id} cannot move from {previous.value} to {target_status.value}",
        )

    updated = replace(order, order_status=target_status)
    if target_status == OrderStatus.DELIVERED:
        updated = replace(updated, actual_delivery_date=now or datetime.now(timezone.utc))

    logger.info(f"Order {order.order_id}: {previous.value} -> {target_status.value}")
    return OrderStatusUpdate(order=updated, previous_status=previous, changed=True)


# =============================================================================
# RETURN INTAKE
# =============================================================================

class ReturnRequestBuilder(DomainService):
    """
    Builds a validated return request.

    This service:
    1. Checks the item is eligible for return
    2. Quotes the flat-rate return refund
    3. Creates a REQUESTED return record with its first timeline entry
    """

    def __init__(
        self,
        config: Optional[RefundPolicyConfig] = None,
        resolver: Optional[PricingResolver] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        self.config = config or RefundPolicyConfig.from_settings()
        self.resolver = resolver or PricingResolver(reporter or default_reporter)
        self.eligibility_policy = ReturnEligibilityPolicy()

    def execute(
        self,
        order: Order,
        item_id: str,
        quantity: int = 1,
        reason: Union[ReturnReason, str] = ReturnReason.OTHER,
        description: str = "",
        returns: Iterable[ReturnRequest] = (),
        cancellations: Iterable[CancellationRequest] = (),
        now: Optional[datetime] = None,
        return_id: Optional[str] = None,
    ) -> ReturnRequest:
        """
        Build a return request for one order line.

        Raises:
            ReturnEligibilityError: If the line cannot be returned
        """
        now = now or datetime.now(timezone.utc)
        returns = list(returns)
        try:
            reason = ReturnReason.parse(reason or ReturnReason.OTHER)
        except ValueError as exc:
            raise ReturnEligibilityError(f"Unknown return reason {reason!r}") from exc
        item = order.get_item(item_id)
        if item is None:
            raise ReturnEligibilityError(f"Item {item_id} is not part of order {order.order_id}")
        if item_id in cancelled_item_ids(order, cancellations):
            raise ReturnEligibilityError(f"Item {item_id} was cancelled and cannot be returned")

        decision = self.eligibility_policy.evaluate({
            "order_status": order.order_status,
            "actual_delivery_date": order.actual_delivery_date,
            "now": now,
            "return_window_hours": self.config.return_window_hours,
            "ordered_quantity": item.quantity,
            "claimed_quantity": claimed_quantity(returns, order.order_id, item_id),
            "requested_quantity": quantity,
            "has_open_request": has_open_return(returns, order.order_id, item_id),
        })
        if not decision.is_approved:
            raise ReturnEligibilityError(decision.reason)

        unit_price = self.resolver.execute(item).unit_price
        quote = quote_return_refund(unit_price, quantity, self.config)

        request = ReturnRequest(
            return_id=return_id or new_return_id(),
            order_id=order.order_id,
            item_id=item_id,
            status=ReturnStatus.REQUESTED,
            item_details=ReturnItemDetails(
                name=item.name,
                size=item.size,
                quantity=quantity,
                original_price=unit_price,
                refund_amount=quote.unit_refund,
            ),
            return_reason=reason,
            return_description=description,
            request_date=now,
            timeline=(TimelineEntry(
                status=ReturnStatus.REQUESTED.value,
                note=f"Return requested: {reason.value.replace('_', ' ').lower()}",
                timestamp=now,
            ),),
        )
        logger.info(
            f"Return {request.return_id} opened for item {item_id} of order {order.order_id} "
            f"({quantity} x {quote.unit_refund:.2f})"
        )
        return request
