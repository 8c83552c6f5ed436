"""
Return State Machine.

A return request moves forward only:

    REQUESTED -> UNDER_REVIEW -> APPROVED -> PICKUP_SCHEDULED -> PICKED_UP
              -> INSPECTED -> REFUND_PROCESSED -> COMPLETED

with REQUESTED / UNDER_REVIEW also able to go to REJECTED, and anything
before pickup able to go to CANCELLED when the customer withdraws.
COMPLETED, REJECTED and CANCELLED are terminal. A rejected request is never
reopened; resubmitting creates a new request so the audit trail survives.

Transitions return a new ReturnRequest; the input is left untouched.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from core.domain import round_currency

from .errors import InvalidTransitionError
from .models import (
    RefundDetails,
    RefundMethod,
    RefundStatus,
    ReturnAdminResponse,
    ReturnRequest,
    ReturnStatus,
    TimelineEntry,
)

logger = logging.getLogger(__name__)


RETURN_TRANSITIONS: Dict[ReturnStatus, Set[ReturnStatus]] = {
    ReturnStatus.REQUESTED: {
        ReturnStatus.UNDER_REVIEW,
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    },
    ReturnStatus.UNDER_REVIEW: {
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    },
    ReturnStatus.APPROVED: {ReturnStatus.PICKUP_SCHEDULED, ReturnStatus.CANCELLED},
    ReturnStatus.PICKUP_SCHEDULED: {ReturnStatus.PICKED_UP, ReturnStatus.CANCELLED},
    ReturnStatus.PICKED_UP: {ReturnStatus.INSPECTED},
    ReturnStatus.INSPECTED: {ReturnStatus.REFUND_PROCESSED},
    ReturnStatus.REFUND_PROCESSED: {ReturnStatus.COMPLETED},
    ReturnStatus.COMPLETED: set(),
    ReturnStatus.REJECTED: set(),
    ReturnStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {ReturnStatus.COMPLETED, ReturnStatus.REJECTED, ReturnStatus.CANCELLED}

# Once a request reaches any of these its units no longer count as active
RETURNED_STATUSES = {
    ReturnStatus.APPROVED,
    ReturnStatus.PICKUP_SCHEDULED,
    ReturnStatus.PICKED_UP,
    ReturnStatus.INSPECTED,
    ReturnStatus.REFUND_PROCESSED,
    ReturnStatus.COMPLETED,
}

# Requests that still block a new request for the same item
OPEN_STATUSES = {ReturnStatus.REQUESTED, ReturnStatus.UNDER_REVIEW}

# Requests whose quantity no longer counts against the ordered quantity
RELEASED_STATUSES = {ReturnStatus.REJECTED, ReturnStatus.CANCELLED}

_PROGRESS = {
    ReturnStatus.REJECTED: -1,
    ReturnStatus.CANCELLED: -1,
    ReturnStatus.REQUESTED: 0,
    ReturnStatus.UNDER_REVIEW: 1,
    ReturnStatus.APPROVED: 2,
    ReturnStatus.PICKUP_SCHEDULED: 3,
    ReturnStatus.PICKED_UP: 4,
    ReturnStatus.INSPECTED: 5,
    ReturnStatus.REFUND_PROCESSED: 6,
    ReturnStatus.COMPLETED: 7,
}


def new_return_id() -> str:
    return f"RET-{uuid.uuid4().hex[:8].upper()}"


def can_transition(current: ReturnStatus, target: ReturnStatus) -> bool:
    return target in RETURN_TRANSITIONS.get(current, set())


def available_transitions(current: ReturnStatus) -> List[ReturnStatus]:
    return sorted(RETURN_TRANSITIONS.get(current, set()), key=lambda s: (_PROGRESS[s], s.value))


def apply_return_transition(
    request: ReturnRequest,
    target_status: ReturnStatus,
    note: str = "",
    *,
    now: Optional[datetime] = None,
    processed_by: Optional[str] = None,
    refund_id: Optional[str] = None,
    refund_method: Optional[RefundMethod] = None,
    inspection_notes: Optional[str] = None,
) -> ReturnRequest:
    """
    Move a return request to target_status.

    Raises InvalidTransitionError if the graph does not allow it; nothing is
    changed in that case. Side effects per target:
        APPROVED          locks actual_refund_amount, refund status PENDING
        APPROVED/REJECTED records the admin response
        INSPECTED         stores inspection notes
        REFUND_PROCESSED  refund status PROCESSING, refund date, id/method
        COMPLETED         refund status COMPLETED
    """
    target_status = ReturnStatus.parse(target_status)
    if not can_transition(request.status, target_status):
        raise InvalidTransitionError(
            request.status,
            target_status,
            f"Return {request.return_id} cannot move from "
            f"{request.status.name} to {target_status.name}",
        )

    now = now or datetime.now(timezone.utc)
    admin_response = request.admin_response
    refund_details = request.refund_details

    if target_status in (ReturnStatus.APPROVED, ReturnStatus.REJECTED):
        admin_response = replace(
            admin_response,
            admin_comments=note or admin_response.admin_comments,
            processed_by=processed_by or admin_response.processed_by,
            processed_date=now,
        )

    if target_status == ReturnStatus.APPROVED:
        locked = round_currency(request.item_details.refund_amount * request.item_details.quantity)
        refund_details = replace(
            refund_details,
            refund_status=RefundStatus.PENDING,
            actual_refund_amount=locked,
        )
    elif target_status == ReturnStatus.INSPECTED and inspection_notes:
        admin_response = replace(admin_response, inspection_notes=inspection_notes)
    elif target_status == ReturnStatus.REFUND_PROCESSED:
        refund_details = replace(
            refund_details,
            refund_status=RefundStatus.PROCESSING,
            refund_date=now,
            refund_id=refund_id or refund_details.refund_id,
            refund_method=refund_method or refund_details.refund_method,
        )
    elif target_status == ReturnStatus.COMPLETED:
        refund_details = replace(refund_details, refund_status=RefundStatus.COMPLETED)

    entry = TimelineEntry(
        status=target_status.value,
        note=note or f"Return {target_status.value.lower().replace('_', ' ')}",
        timestamp=now,
    )
    logger.info(f"Return {request.return_id}: {request.status.name} -> {target_status.name}")
    return replace(
        request,
        status=target_status,
        admin_response=admin_response,
        refund_details=refund_details,
        timeline=request.timeline + (entry,),
    )


def resubmit_return(
    rejected: ReturnRequest,
    note: str = "",
    *,
    now: Optional[datetime] = None,
    return_id: Optional[str] = None,
) -> ReturnRequest:
    """Open a fresh request for an item whose previous request was rejected."""
    if rejected.status != ReturnStatus.REJECTED:
        raise InvalidTransitionError(
            rejected.status,
            ReturnStatus.REQUESTED,
            f"Only rejected returns can be resubmitted; {rejected.return_id} is {rejected.status.name}",
        )
    now = now or datetime.now(timezone.utc)
    return ReturnRequest(
        return_id=return_id or new_return_id(),
        order_id=rejected.order_id,
        item_id=rejected.item_id,
        status=ReturnStatus.REQUESTED,
        item_details=replace(rejected.item_details),
        return_reason=rejected.return_reason,
        return_description=rejected.return_description,
        request_date=now,
        admin_response=ReturnAdminResponse(),
        refund_details=RefundDetails(),
        timeline=(TimelineEntry(
            status=ReturnStatus.REQUESTED.value,
            note=note or f"Resubmitted after rejection of {rejected.return_id}",
            timestamp=now,
        ),),
        resubmitted_from=rejected.return_id,
    )


# =============================================================================
# LEDGER QUERIES
# =============================================================================

def returns_for_item(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> List[ReturnRequest]:
    return [r for r in returns if r.order_id == order_id and r.item_id == item_id]


def most_advanced_return(requests: Iterable[ReturnRequest]) -> Optional[ReturnRequest]:
    """The request furthest along the lifecycle; ties go to the latest id."""
    best = None
    for request in requests:
        key = (_PROGRESS[request.status], request.return_id)
        if best is None or key > (_PROGRESS[best.status], best.return_id):
            best = request
    return best


def is_item_returned(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> bool:
    latest = most_advanced_return(returns_for_item(returns, order_id, item_id))
    return latest is not None and latest.status in RETURNED_STATUSES


def has_open_return(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> bool:
    return any(r.status in OPEN_STATUSES for r in returns_for_item(returns, order_id, item_id))


def claimed_quantity(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> int:
    return sum(
        r.claimed_quantity
        for r in returns_for_item(returns, order_id, item_id)
        if r.status not in RELEASED_STATUSES
    )


def returned_requests(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> List[ReturnRequest]:
    """Requests for the item that have been approved or gone further."""
    return [r for r in returns_for_item(returns, order_id, item_id) if r.status in RETURNED_STATUSES]


def returned_quantity(returns: Iterable[ReturnRequest], order_id: str, item_id: str) -> int:
    """Units of the item taken back, across every approved request."""
    return sum(r.claimed_quantity for r in returned_requests(returns, order_id, item_id))
