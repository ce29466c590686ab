from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


TARGET_USER = "user"
TARGET_PRODUCT = "product"
TARGET_ORDER = "order"
TARGET_CATEGORY = "category"
TARGET_TOPUP_REQUEST = "topup-request"
TARGET_EXPENSE = "expense"
TARGET_SYSTEM = "system"

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_NAME = "System"


@dataclass
class ActivityLog(RecordMixin):
    """Audit record of an admin or system action. Append-only."""
    ID_PREFIX = "activity"
    DATETIME_FIELDS = frozenset({"created_at"})

    id: str
    admin_id: str
    admin_name: str
    action: str
    target_type: str
    description: str
    target_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
