"""
Order lifecycle domain errors.

Pricing and reconciliation errors are recovered where they happen and only
reported; refund validation, transition and freeze errors propagate and
block the requested operation.
"""

from typing import List, Optional

from core.domain import ValidationError


class OrderLifecycleError(Exception):
    pass


class PricingResolutionError(OrderLifecycleError):
    """A catalog reference could not be turned into a price."""

    def __init__(self, item_id: str, message: str):
        super().__init__(f"Cannot price item {item_id}: {message}")
        self.item_id = item_id


class RefundValidationError(OrderLifecycleError):
    """A refund calculation breaks a monetary invariant."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = list(errors)
        messages = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Invalid refund: {messages}")


class InvalidTransitionError(OrderLifecycleError):
    """A status change that the lifecycle graph does not allow."""

    def __init__(self, current, target, message: Optional[str] = None):
        self.current = current
        self.target = target
        current_name = getattr(current, "name", current)
        target_name = getattr(target, "name", target)
        super().__init__(message or f"Cannot move from {current_name} to {target_name}")


class OrderFrozenError(OrderLifecycleError):
    """Order status cannot change while a cancellation request is pending."""

    def __init__(self, order_id: str, request_ids: List[str]):
        self.order_id = order_id
        self.request_ids = list(request_ids)
        super().__init__(
            f"Order {order_id} has pending cancellation request(s) "
            f"{', '.join(self.request_ids)}; resolve them before changing status"
        )


class ReturnEligibilityError(OrderLifecycleError):
    """A return request cannot be created for the given item."""


class ReconciliationError(OrderLifecycleError):
    """Building the active order view failed."""

    def __init__(self, order_id: str, message: str):
        super().__init__(f"Cannot reconcile order {order_id}: {message}")
        self.order_id = order_id


class RecordNotFoundError(OrderLifecycleError):
    """An order, cancellation or return record does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id
