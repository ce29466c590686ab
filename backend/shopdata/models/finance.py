from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


EXPENSE_COGS = "cogs"
EXPENSE_OPERATIONAL = "operational"
EXPENSE_MARKETING = "marketing"
EXPENSE_ADMINISTRATIVE = "administrative"
EXPENSE_TRANSACTION_FEES = "transaction_fees"
EXPENSE_OTHER = "other"
EXPENSE_CATEGORIES = (
    EXPENSE_COGS,
    EXPENSE_OPERATIONAL,
    EXPENSE_MARKETING,
    EXPENSE_ADMINISTRATIVE,
    EXPENSE_TRANSACTION_FEES,
    EXPENSE_OTHER,
)

# Expense categories spread across the products sold in a window
SHARED_EXPENSE_CATEGORIES = (EXPENSE_OPERATIONAL, EXPENSE_MARKETING, EXPENSE_TRANSACTION_FEES)

RECURRING_PERIODS = {"daily", "weekly", "monthly", "yearly"}

ALERT_LOW_MARGIN = "low_margin"
ALERT_NEGATIVE_PROFIT = "negative_profit"
ALERT_HIGH_COST = "high_cost"
ALERT_DECLINING_TREND = "declining_trend"
ALERT_TYPES = {ALERT_LOW_MARGIN, ALERT_NEGATIVE_PROFIT, ALERT_HIGH_COST, ALERT_DECLINING_TREND}

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"
ALERT_SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL)


@dataclass
class Expense(RecordMixin):
    ID_PREFIX = "expense"
    DATETIME_FIELDS = frozenset({"date", "created_at", "updated_at"})

    id: str
    category: str
    description: str
    amount: int
    date: datetime
    is_recurring: bool = False
    recurring_period: Optional[str] = None
    allocated_to_products: list[str] = field(default_factory=list)
    created_by: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ProfitAlert(RecordMixin):
    ID_PREFIX = "alert"
    DATETIME_FIELDS = frozenset({"created_at"})

    id: str
    type: str
    severity: str
    title: str
    description: str
    current_value: float
    threshold: float
    recommendation: str
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    is_read: bool = False
    is_resolved: bool = False
    created_at: datetime = field(default_factory=utcnow)
