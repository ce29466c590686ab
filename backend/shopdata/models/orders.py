from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_COMPLETED = "completed"
ORDER_CANCELLED = "cancelled"
ORDER_REFUNDED = "refunded"

# Lifecycle order (used for sorting and reports)
ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    ORDER_REFUNDED,
)

# Orders whose fulfilment is still in flight; they pin their product
OPEN_ORDER_STATUSES = {ORDER_PENDING, ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED}

# Display text written by older snapshots
LEGACY_ORDER_STATUS_TEXT = {
    "Đang chờ xử lý": ORDER_PENDING,
    "Đang xử lý": ORDER_PROCESSING,
    "Hoàn thành": ORDER_COMPLETED,
    "Đã huỷ": ORDER_CANCELLED,
    "Đã hủy": ORDER_CANCELLED,
    "Đã hoàn tiền": ORDER_REFUNDED,
}

# Stage timestamp stamped when an order enters a status
STATUS_TIMESTAMP_FIELDS = {
    ORDER_PROCESSING: "processing_at",
    ORDER_SHIPPED: "shipped_at",
    ORDER_DELIVERED: "delivered_at",
    ORDER_COMPLETED: "completed_at",
    ORDER_CANCELLED: "cancelled_at",
    ORDER_REFUNDED: "refunded_at",
}


@dataclass
class Order(RecordMixin):
    ID_PREFIX = "ord"
    DATETIME_FIELDS = frozenset({"created_at", "updated_at", *STATUS_TIMESTAMP_FIELDS.values()})

    id: str
    user_id: str
    product_id: str
    quantity: int
    unit_price: int
    total_amount: int
    status: str = ORDER_PENDING
    selected_option_id: Optional[str] = None
    checkout_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    delivery_info: Optional[str] = None
    admin_notes: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_reason: Optional[str] = None
    refunded_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    processing_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data):
        status = data.get("status")
        if status in LEGACY_ORDER_STATUS_TEXT:
            data = {**data, "status": LEGACY_ORDER_STATUS_TEXT[status]}
        return super().from_dict(data)
