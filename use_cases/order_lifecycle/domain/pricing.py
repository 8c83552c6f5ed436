"""
Pricing Resolver - line unit price and total.

Resolution order, first match wins:
1. Persisted size-adjusted price, then persisted unit price
2. Persisted line total divided by quantity
3. Catalog reference: bundle price less discount, or for products an explicit
   size price, a size variant, or the size multiplier table, less discount

Pricing never raises to its caller. A reference that cannot be priced is
reported and the line falls back to its stored total.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from core.domain import DomainService, round_currency
from core.observability import ErrorReporter, default_reporter

from .errors import PricingResolutionError
from .models import BundleReference, LineReference, OrderItem, ProductReference

logger = logging.getLogger(__name__)


# Multipliers applied to the base price when the catalog has no price for a size
SIZE_MULTIPLIERS = {
    "XS": 0.9,
    "S": 1.0,
    "M": 1.1,
    "L": 1.2,
    "XL": 1.3,
    "XXL": 1.4,
    "28": 0.9,
    "30": 1.0,
    "32": 1.1,
    "34": 1.2,
    "36": 1.3,
    "38": 1.4,
    "40": 1.5,
    "42": 1.6,
}


@dataclass(frozen=True)
class LineAmount:
    unit_price: float
    total: float
    source: str = "catalog"

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass(frozen=True)
class OrderTotals:
    quantity: int
    total: float


def apply_discount(price: float, discount_percent: float) -> float:
    if discount_percent <= 0 or discount_percent > 100:
        return price
    return price * (1 - discount_percent / 100)


def _lookup_size_price(reference: ProductReference, size: str) -> Optional[float]:
    for key in (size, size.upper(), size.lower()):
        price = reference.size_pricing.get(key)
        if price:
            return price
    token = size.strip().lower()
    for variant in reference.variants:
        if variant.size.strip().lower() == token and variant.price:
            return variant.price
    return None


def _catalog_unit_price(item: OrderItem, reference: Optional[LineReference]) -> float:
    if reference is None:
        raise PricingResolutionError(item.item_id, "no catalog reference")

    if isinstance(reference, BundleReference):
        base = reference.bundle_price or reference.price
        return apply_discount(base, reference.discount)

    if not isinstance(reference, ProductReference):
        raise PricingResolutionError(item.item_id, f"unsupported reference {type(reference).__name__}")

    base = reference.price
    if item.size:
        size_price = _lookup_size_price(reference, item.size)
        if size_price is not None:
            base = size_price
        else:
            base = reference.price * SIZE_MULTIPLIERS.get(item.size.strip().upper(), 1.0)
    return apply_discount(base, reference.discount)


def _fallback_amount(item: OrderItem, reference: Optional[LineReference]) -> LineAmount:
    quantity = item.quantity or 1
    if item.item_total > 0:
        return LineAmount(
            unit_price=round_currency(item.item_total / quantity),
            total=round_currency(item.item_total),
            source="fallback",
        )
    price = getattr(reference, "price", 0.0) or 0.0
    try:
        return LineAmount(
            unit_price=round_currency(price),
            total=round_currency(price * quantity),
            source="fallback",
        )
    except (TypeError, ValueError, ArithmeticError):
        return LineAmount(unit_price=0.0, total=0.0, source="fallback")


class PricingResolver(DomainService):
    """
    Resolves the amount charged for an order line.

    This is pure business logic with no I/O.
    """

    def __init__(self, reporter: Optional[ErrorReporter] = None):
        self.reporter = reporter or default_reporter

    def execute(self, item: OrderItem, reference: Optional[LineReference] = None) -> LineAmount:
        reference = reference if reference is not None else item.reference
        quantity = item.quantity or 1
        try:
            if item.size_adjusted_price > 0:
                unit, source = item.size_adjusted_price, "size_adjusted_price"
            elif item.unit_price > 0:
                unit, source = item.unit_price, "unit_price"
            elif item.item_total > 0:
                unit, source = item.item_total / quantity, "item_total"
            else:
                unit, source = _catalog_unit_price(item, reference), "catalog"
            unit = round_currency(unit)
            return LineAmount(unit_price=unit, total=round_currency(unit * quantity), source=source)
        except Exception as exc:
            error = exc if isinstance(exc, PricingResolutionError) else PricingResolutionError(item.item_id, str(exc))
            logger.warning(f"Falling back to stored amount for item {item.item_id}: {error}")
            self.reporter.report(error, {"item_id": item.item_id})
            return _fallback_amount(item, reference)

    def totals(self, items: Iterable[OrderItem]) -> OrderTotals:
        quantity = 0
        total = 0.0
        for item in items:
            quantity += item.quantity or 1
            total += self.execute(item).total
        return OrderTotals(quantity=quantity, total=round_currency(total))


_default_resolver = PricingResolver()


def resolve_line_amount(item: OrderItem, product_ref: Optional[LineReference] = None) -> LineAmount:
    """Unit price and total for one order line."""
    return _default_resolver.execute(item, product_ref)


def resolve_order_totals(items: Iterable[OrderItem]) -> OrderTotals:
    """Quantity and amount across several lines, e.g. for a receipt."""
    return _default_resolver.totals(items)
