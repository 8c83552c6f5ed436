# Shared fixtures: a fixed clock, default policy config and record factories

from datetime import datetime, timedelta, timezone

import pytest

from core.observability import CollectingErrorReporter
from use_cases.order_lifecycle.domain.models import (
    AdminResponse,
    CancellationItem,
    CancellationRequest,
    CancellationStatus,
    Order,
    OrderItem,
    OrderStatus,
    RefundDetails,
    ReturnItemDetails,
    ReturnRequest,
    ReturnStatus,
)
from use_cases.order_lifecycle.domain.policies import RefundPolicyConfig

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    """Default policy values, independent of the environment."""
    return RefundPolicyConfig()


@pytest.fixture
def reporter():
    return CollectingErrorReporter()


@pytest.fixture
def make_item():
    def factory(item_id, price, quantity=1, **fields):
        fields.setdefault("unit_price", price)
        fields.setdefault("item_total", price * quantity)
        return OrderItem(item_id=item_id, quantity=quantity, name=f"Item {item_id}", **fields)
    return factory


@pytest.fixture
def make_order():
    def factory(items, delivery=50.0, status=OrderStatus.PROCESSING, order_id="ORD-1", **fields):
        subtotal = sum(item.item_total for item in items)
        fields.setdefault("order_date", NOW - timedelta(days=1))
        return Order(
            order_id=order_id,
            items=list(items),
            sub_total_amt=subtotal,
            delivery_charge=delivery,
            total_amt=subtotal + delivery,
            order_status=status,
            **fields,
        )
    return factory


@pytest.fixture
def make_cancellation():
    def factory(
        item_ids=None,
        status=CancellationStatus.APPROVED,
        request_id="CAN-1",
        order_id="ORD-1",
        refund_amount=0.0,
        refund_percentage=None,
        request_date=NOW,
    ):
        admin_response = None
        if refund_amount or refund_percentage is not None:
            admin_response = AdminResponse(
                processed_by="admin",
                refund_amount=refund_amount,
                refund_percentage=refund_percentage,
            )
        return CancellationRequest(
            request_id=request_id,
            order_id=order_id,
            status=status,
            items=[CancellationItem(item_id=i) for i in item_ids or []],
            reason="Changed my mind",
            request_date=request_date,
            admin_response=admin_response,
        )
    return factory


@pytest.fixture
def make_return():
    def factory(
        item_id,
        status=ReturnStatus.REQUESTED,
        return_id="RET-1",
        order_id="ORD-1",
        quantity=1,
        unit_refund=0.0,
        locked_amount=None,
    ):
        return ReturnRequest(
            return_id=return_id,
            order_id=order_id,
            item_id=item_id,
            status=status,
            item_details=ReturnItemDetails(
                name=f"Item {item_id}",
                quantity=quantity,
                refund_amount=unit_refund,
            ),
            request_date=NOW,
            refund_details=RefundDetails(actual_refund_amount=locked_amount),
        )
    return factory
