"""
Domain Layer Base Classes.

Refund rules, eligibility checks and the reconciliation view are written
against these bases. Everything built on them takes plain records in and
hands plain records back: no storage access, no clocks read behind the
caller's back (pass `now` in), no shared mutable state. That keeps every
computation repeatable for the same snapshot.

Example Usage:
    class CancellationEligibilityPolicy(PolicyEngine):
        def evaluate(self, context: dict) -> PolicyDecision:
            if context["order_status"] == OrderStatus.DELIVERED:
                return PolicyDecision(PolicyResult.DENIED, "Already delivered")
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional


class PolicyResult(Enum):
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class PolicyDecision:
    """
    Outcome of a policy check.

    Attributes:
        result: Whether the request may proceed
        reason: Message suitable for showing to the customer or admin
        metadata: Values the decision was based on (deadlines, quantities)
    """
    result: PolicyResult
    reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.result == PolicyResult.APPROVED

    @property
    def is_denied(self) -> bool:
        return self.result == PolicyResult.DENIED


class PolicyEngine(ABC):
    """A yes/no business rule evaluated against a context dict."""

    @abstractmethod
    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        """
        Evaluate the rule.

        Args:
            context: Every value the rule needs; policies never fetch data

        Returns:
            PolicyDecision with the result and the reason for it
        """
        pass


class DomainService(ABC):
    """
    An operation over order records that is bigger than one policy.

    Collaborators (config, pricing resolver, error reporter) are given to
    the constructor; the records to work on are given to execute().
    """

    @abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        pass


@dataclass
class ValidationError:
    """One broken rule, tied to the field that broke it."""
    field: str
    message: str
    code: str = "invalid"


class Validator(ABC):
    """Checks a calculated result before it is allowed to take effect."""

    @abstractmethod
    def validate(self, data: Dict[str, Any]) -> List[ValidationError]:
        """Return every rule the data breaks; empty when it is valid."""
        pass

    def is_valid(self, data: Dict[str, Any]) -> bool:
        return not self.validate(data)


# =============================================================================
# DATES AND MONEY
# =============================================================================

def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_since(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end (negative if end is earlier)."""
    delta = ensure_aware(end) - ensure_aware(start)
    return int(delta.total_seconds() // 86400)


def parse_date(value: Any) -> Optional[datetime]:
    """Stored ISO timestamps (with or without a trailing Z) to aware datetimes."""
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not value:
        return None
    try:
        return ensure_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def round_currency(amount: float) -> float:
    """Round a monetary amount to 2 decimals, halves away from zero."""
    quantized = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(quantized)
