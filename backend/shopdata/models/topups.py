from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


TOPUP_PENDING = "pending"
TOPUP_APPROVED = "approved"
TOPUP_REJECTED = "rejected"
TOPUP_CANCELLED = "cancelled"
TOPUP_STATUSES = {TOPUP_PENDING, TOPUP_APPROVED, TOPUP_REJECTED, TOPUP_CANCELLED}

TOPUP_MIN_AMOUNT = 10_000  # VND
TOPUP_MAX_AMOUNT = 10_000_000  # VND

# Display text written by older snapshots
LEGACY_TOPUP_STATUS_TEXT = {
    "Đang chờ xử lý": TOPUP_PENDING,
    "Đã duyệt": TOPUP_APPROVED,
    "Từ chối": TOPUP_REJECTED,
    "Đã huỷ": TOPUP_CANCELLED,
    "Đã hủy": TOPUP_CANCELLED,
}


@dataclass
class BankInfo(RecordMixin):
    DATETIME_FIELDS = frozenset()

    bank_name: str = ""
    account_number: str = ""
    account_name: str = ""
    bank_code: str = ""


@dataclass
class TopupRequest(RecordMixin):
    """
    Deposit request. Leaves 'pending' exactly once; approved_amount is
    immutable after approval.
    """
    ID_PREFIX = "topup"
    DATETIME_FIELDS = frozenset({"created_at", "updated_at", "processed_at"})
    NESTED = {"bank_info": (BankInfo, False)}

    id: str
    user_id: str
    user_email: str
    requested_amount: int
    user_name: Optional[str] = None
    approved_amount: Optional[int] = None
    status: str = TOPUP_PENDING
    user_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    processed_by_name: Optional[str] = None
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    qr_code_data: Optional[str] = None
    transfer_content: Optional[str] = None
    bank_info: Optional[BankInfo] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == TOPUP_PENDING

    @classmethod
    def from_dict(cls, data):
        status = data.get("status")
        if status in LEGACY_TOPUP_STATUS_TEXT:
            data = {**data, "status": LEGACY_TOPUP_STATUS_TEXT[status]}
        return super().from_dict(data)
