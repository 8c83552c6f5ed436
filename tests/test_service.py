from datetime import timedelta

import pytest

from core.data import QueryOptions
from use_cases.order_lifecycle.domain.errors import (
    InvalidTransitionError,
    OrderFrozenError,
    RecordNotFoundError,
)
from use_cases.order_lifecycle.domain.models import (
    CancellationStatus,
    ItemType,
    Order,
    OrderStatus,
    ProductReference,
    RefundStatus,
    ReturnStatus,
)
from use_cases.order_lifecycle.domain.policies import CustomerProfile
from use_cases.order_lifecycle.repositories import CatalogResolver, InMemoryCatalog, InMemoryRepository
from use_cases.order_lifecycle.service import OrderLedgerService


@pytest.fixture
def order(make_item, make_order):
    return make_order([make_item("A", 200), make_item("B", 300)])


@pytest.fixture
def service(order, config, reporter):
    return OrderLedgerService(
        orders=InMemoryRepository("order_id", [order]),
        cancellations=InMemoryRepository("request_id"),
        returns=InMemoryRepository("return_id"),
        config=config,
        reporter=reporter,
    )


class TestCancellationApproval:
    def test_partial_approval_records_refund(self, service, make_cancellation, now):
        service.cancellations.save(make_cancellation(["A"], status=CancellationStatus.PENDING))

        approved = service.approve_cancellation("CAN-1", processed_by="admin", now=now)
        assert approved.status == CancellationStatus.APPROVED
        assert approved.admin_response.refund_percentage == 75
        assert approved.admin_response.refund_amount == 150
        assert approved.refund_details.refund_status == RefundStatus.PENDING
        assert approved.refund_details.refund_id.startswith("REF-")
        assert service.get_cancellation("CAN-1") == approved

        view = service.get_active_view("ORD-1")
        assert [item.item_id for item in view.active_items] == ["B"]
        assert view.refund_amount == 150
        assert view.remaining_total == 350

    def test_full_approval_cancels_order(self, service, make_cancellation, now):
        service.cancellations.save(make_cancellation(status=CancellationStatus.PENDING))
        customer = CustomerProfile(is_vip=True)

        approved = service.approve_cancellation("CAN-1", processed_by="admin", customer=customer, now=now)
        assert approved.admin_response.refund_percentage == 85
        assert approved.admin_response.refund_amount == 467.5
        assert service.get_order("ORD-1").order_status == OrderStatus.CANCELLED

        view = service.get_active_view("ORD-1")
        assert view.is_fully_cancelled
        assert view.refund_amount == 467.5
        assert view.retention_fee == 82.5

    def test_quote_does_not_save(self, service, make_cancellation):
        service.cancellations.save(make_cancellation(["B"], status=CancellationStatus.PENDING))
        quote = service.quote_cancellation("CAN-1", override_percentage=50)
        assert quote.refund_amount == 150
        assert service.get_cancellation("CAN-1").is_pending

    def test_only_pending_requests_can_be_approved(self, service, make_cancellation):
        service.cancellations.save(make_cancellation(["A"]))
        with pytest.raises(InvalidTransitionError):
            service.approve_cancellation("CAN-1", processed_by="admin")

    def test_reject(self, service, make_cancellation):
        service.cancellations.save(make_cancellation(["A"], status=CancellationStatus.PENDING))
        rejected = service.reject_cancellation("CAN-1", processed_by="admin", admin_comments="Already packed")
        assert rejected.status == CancellationStatus.REJECTED
        assert rejected.admin_response.admin_comments == "Already packed"
        assert service.get_active_view("ORD-1").refund_amount == 0

    def test_missing_records(self, service):
        with pytest.raises(RecordNotFoundError):
            service.get_active_view("ORD-404")
        with pytest.raises(RecordNotFoundError):
            service.approve_cancellation("CAN-404", processed_by="admin")


class TestStatusAndReturns:
    def test_status_update_is_saved(self, service):
        update = service.update_status("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
        assert update.previous_status == OrderStatus.PROCESSING
        assert service.get_order("ORD-1").order_status == OrderStatus.OUT_FOR_DELIVERY

    def test_status_frozen_by_pending_request(self, service, make_cancellation):
        service.cancellations.save(make_cancellation(["A"], status=CancellationStatus.PENDING))
        with pytest.raises(OrderFrozenError):
            service.update_status("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
        assert service.get_order("ORD-1").order_status == OrderStatus.PROCESSING

    def test_return_flow(self, service, now):
        service.update_status("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
        service.update_status("ORD-1", OrderStatus.DELIVERED, now=now - timedelta(hours=1))

        request = service.request_return("ORD-1", "B", reason="DEFECTIVE_PRODUCT", now=now)
        assert service.get_active_view("ORD-1").active_item_count == 2

        approved = service.advance_return(request.return_id, ReturnStatus.APPROVED, "Approved", processed_by="ops")
        assert approved.refund_details.actual_refund_amount == 195

        view = service.get_active_view("ORD-1")
        assert [item.item_id for item in view.active_items] == ["A"]
        assert view.refund_amount == 195
        assert view.remaining_total == 250

    def test_resubmit(self, service, make_return):
        service.returns.save(make_return("B", status=ReturnStatus.REJECTED))
        fresh = service.resubmit_return("RET-1")
        assert fresh.resubmitted_from == "RET-1"
        assert service.get_return(fresh.return_id).status == ReturnStatus.REQUESTED
        assert len(service.ledgers("ORD-1")[1]) == 2


class TestRepositories:
    def test_find_pages_and_filters(self, make_return):
        repo = InMemoryRepository("return_id", [
            make_return("A", return_id=f"RET-{n}", order_id="ORD-1" if n % 2 else "ORD-2")
            for n in range(5)
        ])
        page = repo.find(QueryOptions(limit=2, filters={"order_id": "ORD-2"}, order_by="return_id"))
        assert [r.return_id for r in page.data] == ["RET-0", "RET-2"]
        assert page.total_count == 3
        assert page.has_more
        assert page.next_offset == 2
        assert len(repo.find_by(order_id="ORD-1")) == 2

    def test_delete(self, make_return):
        repo = InMemoryRepository("return_id", [make_return("A")])
        assert repo.delete("RET-1")
        assert not repo.delete("RET-1")
        assert repo.get_by_id("RET-1") is None

    def test_catalog_resolver_feeds_ingestion(self):
        products = InMemoryCatalog.from_documents(
            [{"_id": "P-1", "price": 1000, "discount": 10, "sizePricing": {"L": 1100}}],
            ItemType.PRODUCT,
        )
        resolver = CatalogResolver(products)
        order = Order.from_dict(
            {
                "orderId": "ORD-9",
                "orderDate": "2024-06-01T10:00:00Z",
                "items": [{"_id": "L1", "productId": "P-1", "quantity": 2, "size": "L"}],
            },
            catalog=resolver,
        )
        assert isinstance(order.items[0].reference, ProductReference)
        assert resolver("missing", ItemType.BUNDLE) is None

    def test_catalog_snapshot_reloads_after_invalidate(self):
        class CountingCatalog(InMemoryCatalog):
            loads = 0

            def get_all(self):
                CountingCatalog.loads += 1
                return super().get_all()

        products = CountingCatalog.from_documents([{"_id": "P-1", "price": 500}], ItemType.PRODUCT)
        resolver = CatalogResolver(products)

        assert resolver("P-1", ItemType.PRODUCT).price == 500
        assert resolver("P-1", ItemType.PRODUCT) is not None
        assert CountingCatalog.loads == 1

        resolver.invalidate()
        resolver("P-1", ItemType.PRODUCT)
        assert CountingCatalog.loads == 2

    def test_service_over_many_ledger_entries(self, service, make_cancellation):
        for n in range(150):
            service.cancellations.save(
                make_cancellation(["A"], status=CancellationStatus.REJECTED, request_id=f"CAN-{n:03d}")
            )
        cancellations, _ = service.ledgers("ORD-1")
        assert len(cancellations) == 150
