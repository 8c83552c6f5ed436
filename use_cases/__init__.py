"""
Use Cases Package.

Each use case is a self-contained module following the layered
architecture defined in core/:
- domain/: Pure business logic (policies, services)
- repositories.py: Repository implementations for data access
- service.py: Facade that loads records, calls the domain and saves results

Available use cases:
- order_lifecycle: Cancellations, returns, refunds and the active order view
"""

from use_cases.order_lifecycle import (
    OrderLedgerService,
    build_active_view,
    compute_refund,
)

__all__ = [
    "OrderLedgerService",
    "build_active_view",
    "compute_refund",
]
