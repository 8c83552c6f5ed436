"""
Order Lifecycle Domain Layer.

Contains pure business logic for order cancellations, returns and refunds.
No database access or I/O - just business rules.
"""

from .errors import (
    InvalidTransitionError,
    OrderFrozenError,
    OrderLifecycleError,
    PricingResolutionError,
    ReconciliationError,
    RecordNotFoundError,
    RefundValidationError,
    ReturnEligibilityError,
)
from .models import (
    BundleReference,
    CancellationItem,
    CancellationRequest,
    CancellationStatus,
    ItemStatus,
    ItemType,
    Order,
    OrderItem,
    OrderStatus,
    ProductReference,
    RefundSummaryEntry,
    ReturnReason,
    ReturnRequest,
    ReturnStatus,
)
from .policies import (
    CancellationEligibilityPolicy,
    CustomerProfile,
    RefundCalculator,
    RefundContext,
    RefundPolicyConfig,
    RefundResult,
    ReturnEligibilityPolicy,
    compute_partial_refund,
    compute_refund,
    quote_return_refund,
    validate_refund,
)
from .pricing import LineAmount, PricingResolver, resolve_line_amount, resolve_order_totals
from .reconciliation import ActiveOrderView, OrderReconciler, build_active_view
from .returns import apply_return_transition, available_transitions, resubmit_return
from .services import (
    OrderStatusUpdate,
    ReturnRequestBuilder,
    check_cancellation_eligibility,
    find_pending_conflicts,
    update_order_status,
)

__all__ = [
    # Errors
    "OrderLifecycleError",
    "PricingResolutionError",
    "RefundValidationError",
    "InvalidTransitionError",
    "OrderFrozenError",
    "ReturnEligibilityError",
    "ReconciliationError",
    "RecordNotFoundError",
    # Records
    "Order",
    "OrderItem",
    "OrderStatus",
    "ItemType",
    "ItemStatus",
    "ProductReference",
    "BundleReference",
    "RefundSummaryEntry",
    "CancellationItem",
    "CancellationRequest",
    "CancellationStatus",
    "ReturnRequest",
    "ReturnStatus",
    "ReturnReason",
    # Pricing
    "LineAmount",
    "PricingResolver",
    "resolve_line_amount",
    "resolve_order_totals",
    # Refunds
    "RefundPolicyConfig",
    "RefundContext",
    "CustomerProfile",
    "RefundResult",
    "RefundCalculator",
    "compute_refund",
    "compute_partial_refund",
    "validate_refund",
    "quote_return_refund",
    "CancellationEligibilityPolicy",
    "ReturnEligibilityPolicy",
    # Returns
    "apply_return_transition",
    "available_transitions",
    "resubmit_return",
    "ReturnRequestBuilder",
    # Reconciliation
    "ActiveOrderView",
    "OrderReconciler",
    "build_active_view",
    # Order status
    "OrderStatusUpdate",
    "update_order_status",
    "check_cancellation_eligibility",
    "find_pending_conflicts",
]
