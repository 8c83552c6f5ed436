"""
Order Ledger Service.

Boundary facade over the pure order lifecycle core. It loads an order and
its cancellation and return ledgers from repositories, calls the domain
services and saves whatever records they return.

Approving a cancellation and advancing a return must be serialized per
order / per return by the persistence layer; the in-memory repositories
only guard individual writes.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Tuple, TypeVar, Union

from core.data import QueryOptions, Repository
from core.observability import ErrorReporter, default_reporter

from .domain.errors import InvalidTransitionError, OrderFrozenError, RecordNotFoundError
from .domain.models import (
    AdminResponse,
    CancellationRequest,
    CancellationStatus,
    Order,
    OrderStatus,
    RefundDetails,
    RefundMethod,
    RefundStatus,
    ReturnReason,
    ReturnRequest,
    ReturnStatus,
)
from .domain.policies import (
    CustomerProfile,
    PartialRefundResult,
    RefundCalculator,
    RefundContext,
    RefundPolicyConfig,
    RefundResult,
)
from .domain.pricing import PricingResolver
from .domain.reconciliation import ActiveOrderView, OrderReconciler
from .domain.returns import apply_return_transition, resubmit_return
from .domain.services import (
    OrderStatusUpdate,
    ReturnRequestBuilder,
    find_pending_conflicts,
    update_order_status,
)

logger = logging.getLogger(__name__)

E = TypeVar("E")

_PAGE_SIZE = 100


def _find_all(repository: Repository[E], **filters) -> List[E]:
    results: List[E] = []
    offset = 0
    while True:
        page = repository.find(QueryOptions(limit=_PAGE_SIZE, offset=offset, filters=filters))
        results.extend(page.data)
        if not page.has_more or page.next_offset is None:
            return results
        offset = page.next_offset


class OrderLedgerService:
    """Loads, computes, saves. All monetary rules live in the domain layer."""

    def __init__(
        self,
        orders: Repository[Order],
        cancellations: Repository[CancellationRequest],
        returns: Repository[ReturnRequest],
        config: Optional[RefundPolicyConfig] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        self.orders = orders
        self.cancellations = cancellations
        self.returns = returns
        self.config = config or RefundPolicyConfig.from_settings()
        self.reporter = reporter or default_reporter

        self.resolver = PricingResolver(self.reporter)
        self.reconciler = OrderReconciler(self.config, self.resolver, self.reporter)
        self.refund_calculator = RefundCalculator(self.config, self.resolver)
        self.return_builder = ReturnRequestBuilder(self.config, self.resolver, self.reporter)

    # =========================================================================
    # LOADING
    # =========================================================================

    def get_order(self, order_id: str) -> Order:
        order = self.orders.get_by_id(order_id)
        if order is None:
            raise RecordNotFoundError("Order", order_id)
        return order

    def get_cancellation(self, request_id: str) -> CancellationRequest:
        request = self.cancellations.get_by_id(request_id)
        if request is None:
            raise RecordNotFoundError("Cancellation request", request_id)
        return request

    def get_return(self, return_id: str) -> ReturnRequest:
        request = self.returns.get_by_id(return_id)
        if request is None:
            raise RecordNotFoundError("Return request", return_id)
        return request

    def ledgers(self, order_id: str) -> Tuple[List[CancellationRequest], List[ReturnRequest]]:
        return (
            _find_all(self.cancellations, order_id=order_id),
            _find_all(self.returns, order_id=order_id),
        )

    # =========================================================================
    # READ PATH
    # =========================================================================

    def get_active_view(self, order_id: str) -> ActiveOrderView:
        order = self.get_order(order_id)
        cancellations, returns = self.ledgers(order_id)
        find_pending_conflicts(cancellations)
        return self.reconciler.execute(order, cancellations, returns)

    # =========================================================================
    # CANCELLATIONS
    # =========================================================================

    def quote_cancellation(
        self,
        request_id: str,
        customer: Optional[CustomerProfile] = None,
        override_percentage: Optional[float] = None,
    ) -> Union[RefundResult, PartialRefundResult]:
        """Refund the request would receive if approved now."""
        request = self.get_cancellation(request_id)
        order = self.get_order(request.order_id)
        context = RefundContext.from_cancellation(request, customer)
        if request.is_full_order:
            return self.refund_calculator.execute(order, context, override_percentage)
        return self.refund_calculator.partial(order, request.items, context, override_percentage)

    def approve_cancellation(
        self,
        request_id: str,
        processed_by: str,
        customer: Optional[CustomerProfile] = None,
        override_percentage: Optional[float] = None,
        admin_comments: str = "",
        now: Optional[datetime] = None,
    ) -> CancellationRequest:
        """
        Approve a pending request, recording the computed refund on it.

        A full-order approval also moves the order to CANCELLED while its
        status still allows it.
        """
        request = self.get_cancellation(request_id)
        if not request.is_pending:
            raise InvalidTransitionError(
                request.status,
                CancellationStatus.APPROVED,
                f"Cancellation {request_id} is {request.status.value}, not PENDING",
            )

        now = now or datetime.now(timezone.utc)
        quote = self.quote_cancellation(request_id, customer, override_percentage)
        approved = replace(
            request,
            status=CancellationStatus.APPROVED,
            admin_response=AdminResponse(
                processed_by=processed_by,
                processed_date=now,
                refund_amount=quote.refund_amount,
                refund_percentage=quote.percentage,
                admin_comments=admin_comments,
            ),
            refund_details=RefundDetails(
                refund_id=f"REF-{uuid.uuid4().hex[:8].upper()}",
                refund_status=RefundStatus.PENDING,
                refund_method=RefundMethod.ORIGINAL_PAYMENT_METHOD,
                actual_refund_amount=quote.refund_amount,
            ),
        )
        self.cancellations.save(approved)
        logger.info(
            f"Cancellation {request_id} approved by {processed_by}: "
            f"{quote.percentage:g}% = {quote.refund_amount:.2f}"
        )

        if approved.is_full_order:
            order = self.get_order(request.order_id)
            if order.order_status not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
                try:
                    self.update_status(order.order_id, OrderStatus.CANCELLED, now=now)
                except OrderFrozenError as exc:
                    logger.warning(f"Order {order.order_id} left at {order.order_status.value}: {exc}")
        return approved

    def reject_cancellation(
        self,
        request_id: str,
        processed_by: str,
        admin_comments: str = "",
        now: Optional[datetime] = None,
    ) -> CancellationRequest:
        request = self.get_cancellation(request_id)
        if not request.is_pending:
            raise InvalidTransitionError(
                request.status,
                CancellationStatus.REJECTED,
                f"Cancellation {request_id} is {request.status.value}, not PENDING",
            )
        rejected = replace(
            request,
            status=CancellationStatus.REJECTED,
            admin_response=AdminResponse(
                processed_by=processed_by,
                processed_date=now or datetime.now(timezone.utc),
                admin_comments=admin_comments,
            ),
        )
        logger.info(f"Cancellation {request_id} rejected by {processed_by}")
        return self.cancellations.save(rejected)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================

    def update_status(
        self,
        order_id: str,
        target_status: Union[OrderStatus, str],
        now: Optional[datetime] = None,
    ) -> OrderStatusUpdate:
        order = self.get_order(order_id)
        cancellations, _ = self.ledgers(order_id)
        update = update_order_status(order, target_status, cancellations, now=now)
        if update.changed:
            self.orders.save(update.order)
        return update

    # =========================================================================
    # RETURNS
    # =========================================================================

    def request_return(
        self,
        order_id: str,
        item_id: str,
        quantity: int = 1,
        reason: Union[ReturnReason, str] = ReturnReason.OTHER,
        description: str = "",
        now: Optional[datetime] = None,
    ) -> ReturnRequest:
        order = self.get_order(order_id)
        cancellations, returns = self.ledgers(order_id)
        request = self.return_builder.execute(
            order,
            item_id,
            quantity=quantity,
            reason=reason,
            description=description,
            returns=returns,
            cancellations=cancellations,
            now=now,
        )
        return self.returns.save(request)

    def advance_return(
        self,
        return_id: str,
        target_status: Union[ReturnStatus, str],
        note: str = "",
        **details,
    ) -> ReturnRequest:
        """Apply one return transition; details go to apply_return_transition."""
        request = self.get_return(return_id)
        return self.returns.save(apply_return_transition(request, target_status, note, **details))

    def resubmit_return(self, return_id: str, note: str = "", now: Optional[datetime] = None) -> ReturnRequest:
        rejected = self.get_return(return_id)
        return self.returns.save(resubmit_return(rejected, note, now=now))
