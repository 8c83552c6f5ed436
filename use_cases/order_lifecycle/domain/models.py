"""
Order Lifecycle Records.

Typed snapshots of the records the core works on: orders and their lines,
cancellation requests, refund-summary audit lines and return requests.
Storage hands these over as documents; `from_dict` converts them once at
ingestion (accepting the stored camelCase keys), so the algorithms never
sniff document shapes again.

Product and bundle references are a tagged union (`ProductReference` or
`BundleReference`) decided by the line's item type when the line is loaded.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from core.domain import parse_date


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_enum(enum_cls, value, default=None):
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    token = str(value).strip()
    normalized = token.upper().replace("-", "_").replace(" ", "_")
    for member in enum_cls:
        if member.name == normalized or str(member.value).upper() == token.upper():
            return member
    if default is not None:
        return default
    raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}")


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(Enum):
    ORDER_PLACED = "ORDER PLACED"
    PROCESSING = "PROCESSING"
    OUT_FOR_DELIVERY = "OUT FOR DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        return _parse_enum(cls, value)


class ItemType(Enum):
    PRODUCT = "product"
    BUNDLE = "bundle"


class ItemStatus(Enum):
    """Annotation stored on the order line itself."""
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class CancellationStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSED = "PROCESSED"

    @classmethod
    def parse(cls, value) -> "CancellationStatus":
        # A request stored without a status has not been reviewed yet
        if value is None or not str(value).strip():
            return cls.PENDING
        return _parse_enum(cls, value)


class RefundStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RefundMethod(Enum):
    ORIGINAL_PAYMENT_METHOD = "ORIGINAL_PAYMENT_METHOD"
    BANK_TRANSFER = "BANK_TRANSFER"
    WALLET_CREDIT = "WALLET_CREDIT"


class ReturnStatus(Enum):
    REQUESTED = "REQUESTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKED_UP = "PICKED_UP"
    INSPECTED = "INSPECTED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value) -> "ReturnStatus":
        return _parse_enum(cls, value)


class ReturnReason(Enum):
    DEFECTIVE_PRODUCT = "DEFECTIVE_PRODUCT"
    WRONG_SIZE = "WRONG_SIZE"
    WRONG_ITEM = "WRONG_ITEM"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    NOT_AS_DESCRIBED = "NOT_AS_DESCRIBED"
    DAMAGED_IN_SHIPPING = "DAMAGED_IN_SHIPPING"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value) -> "ReturnReason":
        return _parse_enum(cls, value)


# Refund-summary statuses that count as money actually owed back
SETTLED_SUMMARY_STATUSES = {"approved", "completed"}


# =============================================================================
# CATALOG REFERENCES
# =============================================================================

@dataclass(frozen=True)
class SizeVariant:
    size: str
    price: float


@dataclass(frozen=True)
class ProductReference:
    id: str
    price: float = 0.0
    discount: float = 0.0
    size_pricing: Dict[str, float] = field(default_factory=dict)
    variants: Tuple[SizeVariant, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductReference":
        variants = tuple(
            SizeVariant(size=str(v.get("size", "")), price=_number(v.get("price")))
            for v in data.get("variants") or []
            if isinstance(v, dict)
        )
        size_pricing = {
            str(size): _number(price)
            for size, price in (data.get("sizePricing") or data.get("size_pricing") or {}).items()
        }
        return cls(
            id=str(_pick(data, "_id", "id", default="")),
            price=_number(data.get("price")),
            discount=_number(data.get("discount")),
            size_pricing=size_pricing,
            variants=variants,
        )


@dataclass(frozen=True)
class BundleReference:
    id: str
    bundle_price: float = 0.0
    price: float = 0.0
    discount: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleReference":
        return cls(
            id=str(_pick(data, "_id", "id", default="")),
            bundle_price=_number(_pick(data, "bundlePrice", "bundle_price")),
            price=_number(data.get("price")),
            discount=_number(data.get("discount")),
        )


LineReference = Union[ProductReference, BundleReference]

# Resolves a catalog id to its reference; supplied by the caller
CatalogLookup = Callable[[str, "ItemType"], Optional[LineReference]]


def line_reference_from_dict(data: Dict[str, Any], item_type: "ItemType") -> LineReference:
    if item_type == ItemType.BUNDLE:
        return BundleReference.from_dict(data)
    return ProductReference.from_dict(data)


# =============================================================================
# ORDERS
# =============================================================================

@dataclass
class OrderItem:
    """
    One purchased line.

    unit_price / size_adjusted_price / item_total are the amounts captured at
    purchase time. When present they win over anything computed from the
    catalog reference.
    """
    item_id: str
    item_type: ItemType = ItemType.PRODUCT
    quantity: int = 1
    size: Optional[str] = None
    name: str = ""
    reference: Optional[LineReference] = None
    unit_price: float = 0.0
    size_adjusted_price: float = 0.0
    item_total: float = 0.0
    status: ItemStatus = ItemStatus.ACTIVE
    cancel_approved: bool = False
    refund_amount: float = 0.0

    @property
    def is_marked_cancelled(self) -> bool:
        return self.status == ItemStatus.CANCELLED or self.cancel_approved

    @classmethod
    def from_dict(cls, data: Dict[str, Any], catalog: Optional[CatalogLookup] = None) -> "OrderItem":
        item_type = _parse_enum(
            ItemType,
            _pick(data, "itemType", "item_type"),
            default=ItemType.BUNDLE if data.get("bundleId") else ItemType.PRODUCT,
        )
        raw_ref = _pick(
            data, "bundleId", "bundleDetails", "productId", "productDetails", "reference"
        )
        reference = None
        if isinstance(raw_ref, dict):
            reference = line_reference_from_dict(raw_ref, item_type)
        elif raw_ref is not None and catalog is not None:
            reference = catalog(str(raw_ref), item_type)

        name = _pick(data, "name", default="")
        if not name and isinstance(raw_ref, dict):
            name = _pick(raw_ref, "name", "title", default="")

        return cls(
            item_id=str(_pick(data, "_id", "itemId", "item_id", default="")),
            item_type=item_type,
            quantity=int(_number(data.get("quantity"), 1) or 1),
            size=data.get("size"),
            name=name,
            reference=reference,
            unit_price=_number(_pick(data, "unitPrice", "unit_price")),
            size_adjusted_price=_number(_pick(data, "sizeAdjustedPrice", "size_adjusted_price")),
            item_total=_number(_pick(data, "itemTotal", "item_total")),
            status=_parse_enum(ItemStatus, data.get("status"), default=ItemStatus.ACTIVE),
            cancel_approved=bool(_pick(data, "cancelApproved", "cancel_approved", default=False)),
            refund_amount=_number(_pick(data, "refundAmount", "refund_amount")),
        )


@dataclass
class RefundSummaryEntry:
    """Refund audit line recorded directly on the order."""
    item_id: str
    status: str
    amount: float = 0.0
    processed_date: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.status.strip().lower() in SETTLED_SUMMARY_STATUSES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefundSummaryEntry":
        return cls(
            item_id=str(_pick(data, "itemId", "item_id", default="")),
            status=str(data.get("status") or "Pending"),
            amount=_number(data.get("amount")),
            processed_date=parse_date(_pick(data, "processedDate", "processed_date")),
        )


@dataclass
class OrderRefundDetails:
    """Order-level refund record written when a whole order is refunded."""
    refund_id: Optional[str] = None
    refund_amount: float = 0.0
    refund_percentage: Optional[float] = None
    refund_date: Optional[datetime] = None
    retained_amount: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderRefundDetails":
        percentage = _pick(data, "refundPercentage", "refund_percentage")
        return cls(
            refund_id=_pick(data, "refundId", "refund_id"),
            refund_amount=_number(_pick(data, "refundAmount", "refund_amount")),
            refund_percentage=None if percentage is None else _number(percentage),
            refund_date=parse_date(_pick(data, "refundDate", "refund_date")),
            retained_amount=_number(_pick(data, "retainedAmount", "retained_amount")),
        )


@dataclass
class Order:
    order_id: str
    order_date: datetime
    items: List[OrderItem] = field(default_factory=list)
    total_amt: float = 0.0
    sub_total_amt: float = 0.0
    delivery_charge: float = 0.0
    order_status: OrderStatus = OrderStatus.ORDER_PLACED
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    payment_status: str = ""
    payment_method: str = ""
    refund_summary: List[RefundSummaryEntry] = field(default_factory=list)
    refund_details: Optional[OrderRefundDetails] = None

    @property
    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.items]

    def get_item(self, item_id: str) -> Optional[OrderItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], catalog: Optional[CatalogLookup] = None) -> "Order":
        refund_details = _pick(data, "refundDetails", "refund_details")
        return cls(
            order_id=str(_pick(data, "orderId", "order_id", "_id", default="")),
            order_date=parse_date(_pick(data, "orderDate", "order_date", "createdAt")),
            items=[OrderItem.from_dict(i, catalog) for i in data.get("items") or []],
            total_amt=_number(_pick(data, "totalAmt", "total_amt")),
            sub_total_amt=_number(_pick(data, "subTotalAmt", "sub_total_amt")),
            delivery_charge=_number(_pick(data, "deliveryCharge", "delivery_charge")),
            order_status=OrderStatus.parse(_pick(data, "orderStatus", "order_status", default="ORDER PLACED")),
            estimated_delivery_date=parse_date(_pick(data, "estimatedDeliveryDate", "estimated_delivery_date")),
            actual_delivery_date=parse_date(_pick(data, "actualDeliveryDate", "actual_delivery_date")),
            payment_status=str(_pick(data, "paymentStatus", "payment_status", default="")),
            payment_method=str(_pick(data, "paymentMethod", "payment_method", default="")),
            refund_summary=[
                RefundSummaryEntry.from_dict(e)
                for e in _pick(data, "refundSummary", "refund_summary", default=[])
            ],
            refund_details=OrderRefundDetails.from_dict(refund_details) if refund_details else None,
        )


# =============================================================================
# CANCELLATION LEDGER
# =============================================================================

@dataclass
class CancellationItem:
    item_id: str
    quantity: int = 1
    item_total: float = 0.0
    refund_amount: float = 0.0


@dataclass
class AdminResponse:
    processed_by: Optional[str] = None
    processed_date: Optional[datetime] = None
    refund_amount: float = 0.0
    refund_percentage: Optional[float] = None
    admin_comments: str = ""


@dataclass
class RefundDetails:
    refund_id: Optional[str] = None
    refund_status: RefundStatus = RefundStatus.PENDING
    refund_method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT_METHOD
    refund_date: Optional[datetime] = None
    actual_refund_amount: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefundDetails":
        amount = _pick(data, "actualRefundAmount", "actual_refund_amount")
        return cls(
            refund_id=_pick(data, "refundId", "refund_id"),
            refund_status=_parse_enum(
                RefundStatus, _pick(data, "refundStatus", "refund_status"), default=RefundStatus.PENDING
            ),
            refund_method=_parse_enum(
                RefundMethod,
                _pick(data, "refundMethod", "refund_method"),
                default=RefundMethod.ORIGINAL_PAYMENT_METHOD,
            ),
            refund_date=parse_date(_pick(data, "refundDate", "refund_date")),
            actual_refund_amount=None if amount is None else _number(amount),
        )


@dataclass
class CancellationRequest:
    """
    A cancellation request. No items means the whole order; otherwise only
    the listed lines are cancelled.
    """
    request_id: str
    order_id: str
    status: CancellationStatus = CancellationStatus.PENDING
    items: List[CancellationItem] = field(default_factory=list)
    reason: str = ""
    request_date: Optional[datetime] = None
    additional_reason: str = ""
    admin_response: Optional[AdminResponse] = None
    refund_details: Optional[RefundDetails] = None

    @property
    def is_full_order(self) -> bool:
        return not self.items

    @property
    def is_pending(self) -> bool:
        return self.status == CancellationStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status in (CancellationStatus.APPROVED, CancellationStatus.PROCESSED)

    @property
    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.items]

    @property
    def explicit_refund_amount(self) -> Optional[float]:
        """Refund figure recorded by the admin, if one was recorded."""
        if self.admin_response and self.admin_response.refund_amount > 0:
            return self.admin_response.refund_amount
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CancellationRequest":
        items = [
            CancellationItem(
                item_id=str(_pick(i, "itemId", "item_id", "_id", default="")),
                quantity=int(_number(i.get("quantity"), 1) or 1),
                item_total=_number(_pick(i, "itemTotal", "item_total")),
                refund_amount=_number(_pick(i, "refundAmount", "refund_amount")),
            )
            for i in _pick(data, "itemsToCancel", "items", default=[])
        ]
        admin = _pick(data, "adminResponse", "admin_response")
        refund = _pick(data, "refundDetails", "refund_details")
        admin_response = None
        if admin:
            percentage = _pick(admin, "refundPercentage", "refund_percentage")
            admin_response = AdminResponse(
                processed_by=_pick(admin, "processedBy", "processed_by"),
                processed_date=parse_date(_pick(admin, "processedDate", "processed_date")),
                refund_amount=_number(_pick(admin, "refundAmount", "refund_amount")),
                refund_percentage=None if percentage is None else _number(percentage),
                admin_comments=str(_pick(admin, "adminComments", "admin_comments", default="")),
            )
        return cls(
            request_id=str(_pick(data, "_id", "requestId", "request_id", default="")),
            order_id=str(_pick(data, "orderId", "order_id", default="")),
            status=CancellationStatus.parse(data.get("status")),
            items=items,
            reason=str(data.get("reason") or ""),
            request_date=parse_date(_pick(data, "requestDate", "request_date", "createdAt")),
            additional_reason=str(_pick(data, "additionalReason", "additional_reason", default="")),
            admin_response=admin_response,
            refund_details=RefundDetails.from_dict(refund) if refund else None,
        )


# =============================================================================
# RETURN LEDGER
# =============================================================================

@dataclass
class ReturnItemDetails:
    name: str = ""
    size: Optional[str] = None
    quantity: int = 1
    original_price: float = 0.0
    # Per-unit amount payable once the return is approved
    refund_amount: float = 0.0


@dataclass(frozen=True)
class TimelineEntry:
    status: str
    note: str
    timestamp: datetime


@dataclass
class ReturnAdminResponse:
    admin_comments: str = ""
    processed_by: Optional[str] = None
    processed_date: Optional[datetime] = None
    inspection_notes: str = ""


@dataclass
class ReturnRequest:
    return_id: str
    order_id: str
    item_id: str
    status: ReturnStatus = ReturnStatus.REQUESTED
    item_details: ReturnItemDetails = field(default_factory=ReturnItemDetails)
    return_reason: ReturnReason = ReturnReason.OTHER
    return_description: str = ""
    request_date: Optional[datetime] = None
    admin_response: ReturnAdminResponse = field(default_factory=ReturnAdminResponse)
    refund_details: RefundDetails = field(default_factory=RefundDetails)
    timeline: Tuple[TimelineEntry, ...] = ()
    resubmitted_from: Optional[str] = None

    @property
    def claimed_quantity(self) -> int:
        return self.item_details.quantity

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReturnRequest":
        details = _pick(data, "itemDetails", "item_details", default={})
        admin = _pick(data, "adminResponse", "admin_response", default={})
        refund = _pick(data, "refundDetails", "refund_details", default={})
        timeline = tuple(
            TimelineEntry(
                status=str(entry.get("status", "")),
                note=str(entry.get("note") or ""),
                timestamp=parse_date(entry.get("timestamp")),
            )
            for entry in data.get("timeline") or []
        )
        return cls(
            return_id=str(_pick(data, "_id", "returnId", "return_id", default="")),
            order_id=str(_pick(data, "orderId", "order_id", default="")),
            item_id=str(_pick(data, "itemId", "item_id", default="")),
            status=ReturnStatus.parse(data.get("status") or "REQUESTED"),
            item_details=ReturnItemDetails(
                name=str(details.get("name") or ""),
                size=details.get("size"),
                quantity=int(_number(details.get("quantity"), 1) or 1),
                original_price=_number(_pick(details, "originalPrice", "original_price")),
                refund_amount=_number(_pick(details, "refundAmount", "refund_amount")),
            ),
            return_reason=_parse_enum(
                ReturnReason, _pick(data, "returnReason", "return_reason"), default=ReturnReason.OTHER
            ),
            return_description=str(_pick(data, "returnDescription", "return_description", default="")),
            request_date=parse_date(_pick(data, "requestDate", "request_date", "createdAt")),
            admin_response=ReturnAdminResponse(
                admin_comments=str(_pick(admin, "adminComments", "admin_comments", default="")),
                processed_by=_pick(admin, "processedBy", "processed_by"),
                processed_date=parse_date(_pick(admin, "processedDate", "processed_date")),
                inspection_notes=str(_pick(admin, "inspectionNotes", "inspection_notes", default="")),
            ),
            refund_details=RefundDetails.from_dict(refund),
            timeline=timeline,
            resubmitted_from=_pick(data, "resubmittedFrom", "resubmitted_from"),
        )
