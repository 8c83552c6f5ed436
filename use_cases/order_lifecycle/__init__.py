"""
Order Lifecycle Use Case.

Derives what is still live on an order after cancellations and returns,
calculates refunds and drives return requests through their lifecycle.

Components:
- domain/: pure business rules (pricing, refund policy, return state
  machine, reconciliation view, order status commands)
- repositories.py: in-memory repositories and the catalog lookup
- service.py: OrderLedgerService, the load-compute-save facade

Usage:
    from use_cases.order_lifecycle import build_active_view

    view = build_active_view(order, cancellations, returns)
    if view.is_degraded:
        ...
"""

from use_cases.order_lifecycle.domain import (
    ActiveOrderView,
    InvalidTransitionError,
    Order,
    OrderLifecycleError,
    RefundContext,
    RefundValidationError,
    apply_return_transition,
    build_active_view,
    compute_refund,
    resolve_line_amount,
    update_order_status,
)
from use_cases.order_lifecycle.repositories import CatalogResolver, InMemoryCatalog, InMemoryRepository
from use_cases.order_lifecycle.service import OrderLedgerService

__all__ = [
    # Core operations
    "build_active_view",
    "compute_refund",
    "apply_return_transition",
    "resolve_line_amount",
    "update_order_status",
    "ActiveOrderView",
    "Order",
    "RefundContext",
    # Errors
    "OrderLifecycleError",
    "RefundValidationError",
    "InvalidTransitionError",
    # Boundary
    "OrderLedgerService",
    "InMemoryRepository",
    "InMemoryCatalog",
    "CatalogResolver",
]
