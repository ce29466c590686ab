from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


ROLE_USER = "user"
ROLE_ADMIN = "admin"
USER_ROLES = {ROLE_USER, ROLE_ADMIN}

USER_ACTIVE = "active"
USER_SUSPENDED = "suspended"
USER_BANNED = "banned"
USER_STATUSES = {USER_ACTIVE, USER_SUSPENDED, USER_BANNED}

TX_CREDIT = "credit"
TX_DEBIT = "debit"
TX_PURCHASE = "purchase"
TX_REFUND = "refund"
TRANSACTION_TYPES = {TX_CREDIT, TX_DEBIT, TX_PURCHASE, TX_REFUND}

# Sign each transaction type carries when applied to a balance
INCOMING_TRANSACTION_TYPES = {TX_CREDIT, TX_REFUND}
OUTGOING_TRANSACTION_TYPES = {TX_DEBIT, TX_PURCHASE}


@dataclass
class User(RecordMixin):
    """Storefront account. Identity is the lower-cased email."""
    ID_PREFIX = "user"
    DATETIME_FIELDS = frozenset({"created_at", "updated_at", "last_login_at"})

    id: str
    email: str
    name: Optional[str] = None
    role: str = ROLE_USER
    status: str = USER_ACTIVE
    balance: int = 0
    total_orders: int = 0
    total_spent: int = 0
    registration_source: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None


@dataclass
class Transaction(RecordMixin):
    """
    Ledger entry behind a balance change. Append-only.

    amount is signed: credit/refund are positive, debit/purchase negative.
    """
    ID_PREFIX = "tx"
    DATETIME_FIELDS = frozenset({"created_at"})

    id: str
    user_id: str
    type: str
    amount: int
    description: str = ""
    order_id: Optional[str] = None
    admin_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
