"""
Refund Policies - Pure Business Rules.

These policies turn order and request context into refund percentages,
amounts and eligibility decisions. They have NO dependencies on databases
or external services; all data needed for evaluation is passed in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from core.domain import (
    DomainService,
    PolicyDecision,
    PolicyEngine,
    PolicyResult,
    ValidationError,
    Validator,
    days_since,
    ensure_aware,
    round_currency,
)

from .errors import RefundValidationError
from .models import CancellationItem, CancellationRequest, Order, OrderStatus
from .pricing import PricingResolver

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

VIP_TIERS = ["VIP", "PREMIUM"]

# Days since order for the timing buckets reported with a refund
EARLY_CANCELLATION_DAYS = 2
STANDARD_CANCELLATION_DAYS = 7

AMOUNT_TOLERANCE = 0.01


@dataclass(frozen=True)
class RefundPolicyConfig:
    default_refund_percentage: float = 75.0
    min_refund_percentage: float = 25.0
    max_refund_percentage: float = 100.0
    delivered_order_penalty: float = 25.0
    past_estimated_delivery_penalty: float = 15.0
    week_after_delivery_penalty: float = 20.0
    month_after_delivery_penalty: float = 30.0
    extended_after_delivery_penalty: float = 25.0
    late_request_penalty: float = 15.0
    late_request_days: int = 7
    vip_customer_bonus: float = 10.0
    regular_customer_bonus: float = 5.0
    regular_customer_min_orders: int = 5
    cancellation_refund_rate: float = 0.90
    return_refund_rate: float = 0.65
    return_window_hours: int = 24

    @classmethod
    def from_settings(cls, source=None) -> "RefundPolicyConfig":
        if source is None:
            from config import settings as source
        return cls(**{name: getattr(source, name) for name in cls.__dataclass_fields__})


# =============================================================================
# REFUND CALCULATION
# =============================================================================

@dataclass(frozen=True)
class Adjustment:
    """A penalty or bonus applied to the refund percentage, in points."""
    code: str
    points: float
    reason: str


@dataclass(frozen=True)
class CustomerProfile:
    membership_tier: str = "Standard"
    is_vip: bool = False
    prior_order_count: int = 0


@dataclass(frozen=True)
class RefundContext:
    """What the refund engine needs to know about the request."""
    request_date: datetime
    admin_refund_percentage: Optional[float] = None
    customer: Optional[CustomerProfile] = None

    @classmethod
    def from_cancellation(
        cls,
        request: CancellationRequest,
        customer: Optional[CustomerProfile] = None,
    ) -> "RefundContext":
        admin_percentage = None
        if request.admin_response and request.admin_response.refund_percentage:
            admin_percentage = request.admin_response.refund_percentage
        return cls(
            request_date=request.request_date or datetime.now(timezone.utc),
            admin_refund_percentage=admin_percentage,
            customer=customer,
        )


@dataclass(frozen=True)
class RefundResult:
    percentage: float
    refund_amount: float
    retained_amount: float
    original_amount: float
    base_percentage: float
    penalties: Tuple[Adjustment, ...] = ()
    bonuses: Tuple[Adjustment, ...] = ()
    days_since_order: Optional[int] = None
    timing: str = "STANDARD"

    @property
    def total_penalty(self) -> float:
        return sum(p.points for p in self.penalties)

    @property
    def total_bonus(self) -> float:
        return sum(b.points for b in self.bonuses)


@dataclass(frozen=True)
class RefundLine:
    item_id: str
    quantity: int
    unit_price: float
    total: float
    refund_amount: float


@dataclass(frozen=True)
class PartialRefundResult:
    percentage: float
    cancelled_subtotal: float
    refund_amount: float
    retained_amount: float
    lines: Tuple[RefundLine, ...] = ()
    penalties: Tuple[Adjustment, ...] = ()


@dataclass(frozen=True)
class ReturnRefundQuote:
    unit_refund: float
    total_refund: float
    retained_amount: float
    rate: float


def cancellation_timing(days: Optional[int]) -> str:
    if days is None or days <= EARLY_CANCELLATION_DAYS:
        return "EARLY"
    if days <= STANDARD_CANCELLATION_DAYS:
        return "STANDARD"
    return "LATE"


def calculate_penalties(order: Order, request_date: datetime, config: RefundPolicyConfig) -> List[Adjustment]:
    """Each rule deducts independently; the delivery brackets are exclusive."""
    penalties = []
    request_date = ensure_aware(request_date)

    if order.order_status == OrderStatus.DELIVERED:
        penalties.append(Adjustment(
            "DELIVERED_ORDER",
            config.delivered_order_penalty,
            f"Order already delivered ({config.delivered_order_penalty:g}% penalty)",
        ))

    if order.estimated_delivery_date and request_date > ensure_aware(order.estimated_delivery_date):
        penalties.append(Adjustment(
            "PAST_ESTIMATED_DELIVERY",
            config.past_estimated_delivery_penalty,
            f"Request made after estimated delivery date ({config.past_estimated_delivery_penalty:g}% penalty)",
        ))

    if order.actual_delivery_date:
        days_after_delivery = days_since(order.actual_delivery_date, request_date)
        if days_after_delivery <= 7:
            penalties.append(Adjustment(
                "WEEK_AFTER_DELIVERY",
                config.week_after_delivery_penalty,
                f"Request within a week of delivery ({config.week_after_delivery_penalty:g}% penalty)",
            ))
        elif days_after_delivery <= 30:
            penalties.append(Adjustment(
                "MONTH_AFTER_DELIVERY",
                config.month_after_delivery_penalty,
                f"Request within a month of delivery ({config.month_after_delivery_penalty:g}% penalty)",
            ))
        else:
            penalties.append(Adjustment(
                "EXTENDED_AFTER_DELIVERY",
                config.extended_after_delivery_penalty,
                f"Request after extended period post-delivery ({config.extended_after_delivery_penalty:g}% penalty)",
            ))

    if order.order_date and days_since(order.order_date, request_date) > config.late_request_days:
        penalties.append(Adjustment(
            "LATE_REQUEST",
            config.late_request_penalty,
            f"Late cancellation request ({config.late_request_penalty:g}% penalty)",
        ))

    for penalty in penalties:
        logger.debug(f"Order {order.order_id}: {penalty.reason}")
    return penalties


def calculate_loyalty_bonuses(customer: Optional[CustomerProfile], config: RefundPolicyConfig) -> List[Adjustment]:
    if customer is None:
        return []
    bonuses = []
    if customer.is_vip or customer.membership_tier.upper() in VIP_TIERS:
        bonuses.append(Adjustment(
            "VIP_CUSTOMER",
            config.vip_customer_bonus,
            f"VIP customer bonus ({config.vip_customer_bonus:g}%)",
        ))
    if customer.prior_order_count >= config.regular_customer_min_orders:
        bonuses.append(Adjustment(
            "REGULAR_CUSTOMER",
            config.regular_customer_bonus,
            f"Regular customer bonus ({config.regular_customer_bonus:g}%)",
        ))
    return bonuses


class RefundValidator(Validator):
    """
    Checks the monetary invariants of a refund before it is approved.

    Expects percentage, refund_amount, retained_amount and original_amount.
    """

    def validate(self, data: Dict[str, Any]) -> List[ValidationError]:
        errors = []
        percentage = data.get("percentage", 0)
        refund_amount = data.get("refund_amount", 0)
        retained_amount = data.get("retained_amount", 0)
        original_amount = data.get("original_amount", 0)

        if refund_amount < 0:
            errors.append(ValidationError(
                field="refund_amount",
                message="Refund amount cannot be negative",
                code="min_value",
            ))
        if percentage < 0 or percentage > 100:
            errors.append(ValidationError(
                field="percentage",
                message="Refund percentage must be between 0-100%",
                code="out_of_range",
            ))
        if refund_amount > original_amount + AMOUNT_TOLERANCE:
            errors.append(ValidationError(
                field="refund_amount",
                message="Refund amount cannot exceed original amount",
                code="max_value",
            ))
        if abs(refund_amount + retained_amount - original_amount) > AMOUNT_TOLERANCE:
            errors.append(ValidationError(
                field="retained_amount",
                message="Refund and retained amounts do not sum to original amount",
                code="mismatch",
            ))
        return errors

    def ensure_valid(self, data: Dict[str, Any]) -> None:
        errors = self.validate(data)
        if errors:
            raise RefundValidationError(errors)


class RefundCalculator(DomainService):
    """
    Calculates the cancellation refund for an order.

    Base percentage is the explicit override, else the admin-set percentage on
    the request, else the configured default. Penalties are subtracted and
    loyalty bonuses added before clamping.
    """

    def __init__(self, config: Optional[RefundPolicyConfig] = None, resolver: Optional[PricingResolver] = None):
        self.config = config or RefundPolicyConfig.from_settings()
        self.resolver = resolver or PricingResolver()
        self.validator = RefundValidator()

    def _percentage(
        self,
        order: Order,
        context: RefundContext,
        override_percentage: Optional[float],
    ) -> Tuple[float, float, List[Adjustment], List[Adjustment]]:
        if override_percentage is not None:
            if override_percentage < 0 or override_percentage > 100:
                raise RefundValidationError([ValidationError(
                    field="override_percentage",
                    message="Refund percentage must be between 0-100%",
                    code="out_of_range",
                )])
            base = float(override_percentage)
        elif context.admin_refund_percentage is not None:
            base = float(context.admin_refund_percentage)
        else:
            base = self.config.default_refund_percentage

        penalties = calculate_penalties(order, context.request_date, self.config)
        bonuses = calculate_loyalty_bonuses(context.customer, self.config)
        percentage = base - sum(p.points for p in penalties) + sum(b.points for b in bonuses)
        percentage = max(
            self.config.min_refund_percentage,
            min(percentage, self.config.max_refund_percentage),
        )
        return base, round_currency(percentage), penalties, bonuses

    def execute(
        self,
        order: Order,
        context: RefundContext,
        override_percentage: Optional[float] = None,
    ) -> RefundResult:
        base, percentage, penalties, bonuses = self._percentage(order, context, override_percentage)

        refund_amount = round_currency(order.total_amt * percentage / 100)
        retained_amount = round_currency(order.total_amt - refund_amount)
        days = days_since(order.order_date, context.request_date) if order.order_date else None

        self.validator.ensure_valid({
            "percentage": percentage,
            "refund_amount": refund_amount,
            "retained_amount": retained_amount,
            "original_amount": order.total_amt,
        })

        logger.info(
            f"Refund for order {order.order_id}: {percentage:g}% of {order.total_amt:.2f} "
            f"= {refund_amount:.2f} ({len(penalties)} penalties, {len(bonuses)} bonuses)"
        )
        return RefundResult(
            percentage=percentage,
            refund_amount=refund_amount,
            retained_amount=retained_amount,
            original_amount=order.total_amt,
            base_percentage=base,
            penalties=tuple(penalties),
            bonuses=tuple(bonuses),
            days_since_order=days,
            timing=cancellation_timing(days),
        )

    def partial(
        self,
        order: Order,
        items: Iterable[Union[str, CancellationItem]],
        context: RefundContext,
        override_percentage: Optional[float] = None,
    ) -> PartialRefundResult:
        """Same percentage, applied only to the lines being cancelled."""
        _, percentage, penalties, _ = self._percentage(order, context, override_percentage)

        lines = []
        unknown = []
        for entry in items:
            item_id = entry if isinstance(entry, str) else entry.item_id
            item = order.get_item(item_id)
            if item is None:
                unknown.append(item_id)
                continue
            quantity = item.quantity
            if isinstance(entry, CancellationItem):
                quantity = min(entry.quantity or item.quantity, item.quantity)
            amount = self.resolver.execute(item)
            total = round_currency(amount.unit_price * quantity)
            lines.append(RefundLine(
                item_id=item_id,
                quantity=quantity,
                unit_price=amount.unit_price,
                total=total,
                refund_amount=round_currency(total * percentage / 100),
            ))

        if unknown:
            raise RefundValidationError([ValidationError(
                field="items",
                message=f"Items not in order {order.order_id}: {', '.join(unknown)}",
                code="not_found",
            )])

        subtotal = round_currency(sum(line.total for line in lines))
        refund_amount = round_currency(sum(line.refund_amount for line in lines))
        retained_amount = round_currency(subtotal - refund_amount)

        self.validator.ensure_valid({
            "percentage": percentage,
            "refund_amount": refund_amount,
            "retained_amount": retained_amount,
            "original_amount": subtotal,
        })
        return PartialRefundResult(
            percentage=percentage,
            cancelled_subtotal=subtotal,
            refund_amount=refund_amount,
            retained_amount=retained_amount,
            lines=tuple(lines),
            penalties=tuple(penalties),
        )


def compute_refund(
    order: Order,
    context: RefundContext,
    override_percentage: Optional[float] = None,
    config: Optional[RefundPolicyConfig] = None,
) -> RefundResult:
    return RefundCalculator(config).execute(order, context, override_percentage)


def compute_partial_refund(
    order: Order,
    items: Iterable[Union[str, CancellationItem]],
    context: RefundContext,
    override_percentage: Optional[float] = None,
    config: Optional[RefundPolicyConfig] = None,
) -> PartialRefundResult:
    return RefundCalculator(config).partial(order, items, context, override_percentage)


def validate_refund(
    original_amount: float,
    refund_amount: float,
    percentage: float,
    retained_amount: Optional[float] = None,
) -> None:
    """Check an admin-entered refund before approval; raises on violation."""
    if retained_amount is None:
        retained_amount = round_currency(original_amount - refund_amount)
    RefundValidator().ensure_valid({
        "percentage": percentage,
        "refund_amount": refund_amount,
        "retained_amount": retained_amount,
        "original_amount": original_amount,
    })


def quote_return_refund(
    unit_price: float,
    quantity: int = 1,
    config: Optional[RefundPolicyConfig] = None,
) -> ReturnRefundQuote:
    """Flat-rate refund for a returned item."""
    config = config or RefundPolicyConfig.from_settings()
    unit_refund = round_currency(unit_price * config.return_refund_rate)
    total_refund = round_currency(unit_refund * quantity)
    return ReturnRefundQuote(
        unit_refund=unit_refund,
        total_refund=total_refund,
        retained_amount=round_currency(unit_price * quantity - total_refund),
        rate=config.return_refund_rate,
    )


# =============================================================================
# ELIGIBILITY POLICIES
# =============================================================================

# Order statuses that no longer accept new cancellation requests
CANCELLATION_BLOCKING_STATUSES = [
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
]


class CancellationEligibilityPolicy(PolicyEngine):
    """
    Policy for whether a new cancellation request may be opened.

    Context required:
        - order_status: OrderStatus
        - pending_full_order_request_ids: ids of pending full-order requests
    """

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        status = OrderStatus.parse(context.get("order_status", OrderStatus.ORDER_PLACED))
        if status in CANCELLATION_BLOCKING_STATUSES:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Orders that are {status.value.lower()} cannot be cancelled",
                metadata={"order_status": status.value},
            )

        pending = list(context.get("pending_full_order_request_ids") or [])
        if pending:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason="A cancellation request for this order is already pending",
                metadata={"pending_request_ids": pending},
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason="Order can be cancelled",
            metadata={"order_status": status.value},
        )


class ReturnEligibilityPolicy(PolicyEngine):
    """
    Policy for whether a return may be requested for an order line.

    Context required:
        - order_status: OrderStatus
        - actual_delivery_date: datetime or None
        - now: datetime
        - return_window_hours: int
        - ordered_quantity / claimed_quantity / requested_quantity: int
        - has_open_request: bool
    """

    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        status = OrderStatus.parse(context.get("order_status", OrderStatus.ORDER_PLACED))
        if status != OrderStatus.DELIVERED:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Order status '{status.value}' is not eligible for returns. Order must be delivered.",
                metadata={"order_status": status.value},
            )

        delivered_at = context.get("actual_delivery_date")
        if delivered_at is None:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason="Delivery date unknown, cannot open a return",
            )

        deadline = ensure_aware(delivered_at) + timedelta(hours=context.get("return_window_hours", 24))
        now = ensure_aware(context.get("now") or datetime.now(timezone.utc))
        if now > deadline:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Return window expired on {deadline.strftime('%Y-%m-%d %H:%M')}",
                metadata={"deadline": deadline.isoformat()},
            )

        if context.get("has_open_request"):
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason="A return request for this item is still being processed",
            )

        available = context.get("ordered_quantity", 0) - context.get("claimed_quantity", 0)
        requested = context.get("requested_quantity", 1)
        if requested < 1 or requested > available:
            return PolicyDecision(
                result=PolicyResult.DENIED,
                reason=f"Only {max(available, 0)} unit(s) of this item can be returned",
                metadata={"available_quantity": max(available, 0)},
            )

        return PolicyDecision(
            result=PolicyResult.APPROVED,
            reason="Item is eligible for return",
            metadata={
                "deadline": deadline.isoformat(),
                "available_quantity": available,
            },
        )
