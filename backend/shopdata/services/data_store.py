# Overview: Authoritative in-memory entity tables with invariant checks, change events and debounced snapshots.

"""
Storefront Data Store

================================================================================
PURPOSE: One owner for every storefront record held in memory
================================================================================

TABLES:
    users, products, transactions, topups, orders, categories, expenses,
    profit_alerts (keyed by id) and activities (newest first, capped)

MUTATION PATH:
    1. Validate the patch against the entity's RecordPolicy
    2. Apply the change and enforce cross-entity invariants
    3. Append activity-log entries for tracked field changes
    4. Emit the matching StoreEvent (listeners run inside the lock)
    5. Ask the SnapshotScheduler for a debounced write

RULES:
1. Every public mutation runs under one re-entrant lock
2. Getters hand out copies; callers never hold live records
3. Balance moves through adjust_balance so each change has a ledger entry
4. Products are soft-deleted while orders still point at them
5. The `uncategorized` category always exists

================================================================================
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterable, Optional

from ..catalog_seed import SEED_CATEGORIES, SEED_DEFAULT_STOCK, SEED_PRODUCTS, UNCATEGORIZED_CATEGORY
from ..models import (
    ActivityLog,
    BankInfo,
    Category,
    Expense,
    Order,
    Product,
    ProductOption,
    ProfitAlert,
    SupplierInfo,
    TopupRequest,
    Transaction,
    User,
    UNCATEGORIZED_SLUG,
    new_id,
)
from ..models.activity import (
    SYSTEM_ACTOR_ID,
    SYSTEM_ACTOR_NAME,
    TARGET_CATEGORY,
    TARGET_EXPENSE,
    TARGET_ORDER,
    TARGET_PRODUCT,
    TARGET_SYSTEM,
    TARGET_TOPUP_REQUEST,
    TARGET_USER,
)
from ..models.catalog import PRODUCT_BADGES, SUPPLIER_PROVIDERS
from ..models.finance import ALERT_SEVERITIES, ALERT_TYPES, EXPENSE_CATEGORIES, RECURRING_PERIODS
from ..models.orders import (
    OPEN_ORDER_STATUSES,
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_STATUSES,
    STATUS_TIMESTAMP_FIELDS,
)
from ..models.topups import TOPUP_MAX_AMOUNT, TOPUP_MIN_AMOUNT, TOPUP_PENDING, TOPUP_STATUSES
from ..models.users import (
    INCOMING_TRANSACTION_TYPES,
    OUTGOING_TRANSACTION_TYPES,
    TRANSACTION_TYPES,
    TX_CREDIT,
    TX_DEBIT,
    USER_ROLES,
    USER_STATUSES,
)
from ..slugs import slugify
from ..time_utils import in_window, resolve_window, utcnow
from ..validation import (
    ConflictError,
    RecordPolicy,
    ReferentialIntegrityError,
    ValidationError,
    coerce_amount,
    coerce_datetime_field,
    coerce_int,
    normalize_email,
    require_choice,
    require_text,
    validate_patch,
)
from . import event_bus as events
from .concurrency import synchronized
from .event_bus import EventBus, Subscription
from .order_status import validate_transition
from .persistence_scheduler import SnapshotScheduler
from .snapshot_backends import MemorySnapshotBackend
from .snapshot_codec import COLLECTIONS, SnapshotDecodeError, decode_collection, encode_collection


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Patch policies
# ---------------------------------------------------------------------------

USER_MUTABLE_FIELDS = frozenset({
    "name", "role", "status", "balance", "total_orders", "total_spent",
    "registration_source", "last_login_at",
})
USER_CREATE_POLICY = RecordPolicy(
    writable_fields=USER_MUTABLE_FIELDS | {"email"},
    required_on_create=frozenset({"email"}),
    int_fields=frozenset({"balance", "total_orders", "total_spent"}),
    datetime_fields=frozenset({"last_login_at"}),
    text_fields=frozenset({"email", "name", "role", "status", "registration_source"}),
    nullable_fields=frozenset({"name", "registration_source", "last_login_at"}),
)
USER_UPDATE_POLICY = RecordPolicy(
    writable_fields=USER_MUTABLE_FIELDS,
    int_fields=USER_CREATE_POLICY.int_fields,
    datetime_fields=USER_CREATE_POLICY.datetime_fields,
    text_fields=USER_CREATE_POLICY.text_fields,
    nullable_fields=USER_CREATE_POLICY.nullable_fields,
)

PRODUCT_MUTABLE_FIELDS = frozenset({
    "title", "description", "price", "currency", "category", "stock", "sold",
    "is_active", "options", "supplier", "image_emoji", "image_url", "badge",
    "long_description", "faqs",
})
PRODUCT_POLICY = RecordPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS,
    required_on_create=frozenset({"title"}),
    int_fields=frozenset({"price", "stock", "sold"}),
    bool_fields=frozenset({"is_active"}),
    text_fields=frozenset({
        "title", "description", "currency", "category", "image_emoji",
        "image_url", "badge", "long_description",
    }),
    nullable_fields=frozenset({"price", "supplier", "image_emoji", "image_url", "badge", "long_description"}),
)

TRANSACTION_POLICY = RecordPolicy(
    writable_fields=frozenset({"user_id", "type", "amount", "description", "order_id", "admin_id", "metadata"}),
    required_on_create=frozenset({"user_id", "type", "amount"}),
    int_fields=frozenset({"amount"}),
    text_fields=frozenset({"user_id", "type", "description", "order_id", "admin_id"}),
    nullable_fields=frozenset({"order_id", "admin_id", "metadata", "description"}),
)

TOPUP_CREATE_POLICY = RecordPolicy(
    writable_fields=frozenset({
        "user_id", "user_email", "user_name", "requested_amount", "user_notes",
        "qr_code_data", "transfer_content", "bank_info",
    }),
    required_on_create=frozenset({"user_id", "requested_amount"}),
    int_fields=frozenset({"requested_amount"}),
    text_fields=frozenset({"user_id", "user_email", "user_name", "user_notes", "qr_code_data", "transfer_content"}),
    nullable_fields=frozenset({"user_email", "user_name", "user_notes", "qr_code_data", "transfer_content", "bank_info"}),
)
TOPUP_MUTABLE_FIELDS = frozenset({
    "admin_notes", "user_email", "user_name", "user_notes", "qr_code_data",
    "transfer_content", "bank_info",
})
# Written only by the approval workflow (update_topup_request(..., workflow=True))
TOPUP_WORKFLOW_FIELDS = frozenset({
    "status", "approved_amount", "processed_at", "processed_by", "processed_by_name",
    "transaction_id", "rejection_reason", "user_id",
})
TOPUP_WORKFLOW_POLICY = RecordPolicy(
    writable_fields=TOPUP_MUTABLE_FIELDS | TOPUP_WORKFLOW_FIELDS,
    int_fields=frozenset({"approved_amount"}),
    datetime_fields=frozenset({"processed_at"}),
    text_fields=frozenset({
        "status", "admin_notes", "processed_by", "processed_by_name", "transaction_id",
        "rejection_reason", "user_id", "user_email", "user_name", "user_notes",
        "qr_code_data", "transfer_content",
    }),
    nullable_fields=frozenset({
        "approved_amount", "admin_notes", "processed_at", "processed_by", "processed_by_name",
        "transaction_id", "rejection_reason", "user_name", "user_notes", "qr_code_data",
        "transfer_content", "bank_info",
    }),
)
TOPUP_UPDATE_POLICY = RecordPolicy(
    writable_fields=TOPUP_MUTABLE_FIELDS,
    text_fields=TOPUP_WORKFLOW_POLICY.text_fields,
    nullable_fields=TOPUP_WORKFLOW_POLICY.nullable_fields,
)

ORDER_CREATE_POLICY = RecordPolicy(
    writable_fields=frozenset({
        "user_id", "product_id", "quantity", "unit_price", "total_amount", "status",
        "selected_option_id", "checkout_id", "payment_method", "payment_id",
        "delivery_info", "admin_notes", "created_at",
    }),
    required_on_create=frozenset({"user_id", "product_id"}),
    int_fields=frozenset({"quantity", "unit_price", "total_amount"}),
    datetime_fields=frozenset({"created_at"}),
    text_fields=frozenset({
        "user_id", "product_id", "status", "selected_option_id", "checkout_id",
        "payment_method", "payment_id", "delivery_info", "admin_notes",
    }),
    nullable_fields=frozenset({
        "unit_price", "total_amount", "selected_option_id", "checkout_id",
        "payment_method", "payment_id", "delivery_info", "admin_notes",
    }),
)
# Status moves through update_order_status only
ORDER_MUTABLE_FIELDS = frozenset({
    "admin_notes", "delivery_info", "payment_method", "payment_id",
    "refund_amount", "refund_reason", "refunded_by",
})
ORDER_UPDATE_POLICY = RecordPolicy(
    writable_fields=ORDER_MUTABLE_FIELDS,
    int_fields=frozenset({"refund_amount"}),
    text_fields=frozenset({"admin_notes", "delivery_info", "payment_method", "payment_id", "refund_reason", "refunded_by"}),
    nullable_fields=ORDER_MUTABLE_FIELDS,
)

CATEGORY_MUTABLE_FIELDS = frozenset({
    "name", "slug", "description", "icon", "featured_product_ids", "is_active", "sort_order",
})
CATEGORY_POLICY = RecordPolicy(
    writable_fields=CATEGORY_MUTABLE_FIELDS,
    required_on_create=frozenset({"name"}),
    int_fields=frozenset({"sort_order"}),
    bool_fields=frozenset({"is_active"}),
    text_fields=frozenset({"name", "slug", "description", "icon"}),
    nullable_fields=frozenset({"description", "icon"}),
)

EXPENSE_MUTABLE_FIELDS = frozenset({
    "category", "description", "amount", "date", "is_recurring",
    "recurring_period", "allocated_to_products", "metadata",
})
EXPENSE_POLICY = RecordPolicy(
    writable_fields=EXPENSE_MUTABLE_FIELDS,
    required_on_create=frozenset({"category", "description", "amount", "date"}),
    int_fields=frozenset({"amount"}),
    bool_fields=frozenset({"is_recurring"}),
    datetime_fields=frozenset({"date"}),
    text_fields=frozenset({"category", "description", "recurring_period"}),
    nullable_fields=frozenset({"recurring_period", "metadata"}),
)

# Field changes that produce their own activity-log line
TRACKED_USER_FIELDS = ("name", "role", "status")
TRACKED_PRODUCT_FIELDS = ("title", "price", "stock", "is_active", "category")
TRACKED_CATEGORY_FIELDS = ("name", "slug", "is_active")

UNCATEGORIZED_SORT_ORDER = 9999


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, int):
        return f"{value:,}"
    if value is None:
        return "none"
    return str(value)


def _apply_patch(record, patch: dict) -> dict[str, tuple[Any, Any]]:
    """Set patched attributes; return {field: (old, new)} for real changes."""
    changes = {}
    for key, value in patch.items():
        old = getattr(record, key)
        if old != value:
            changes[key] = (old, value)
            setattr(record, key, value)
    return changes


def _window(start, end):
    try:
        return resolve_window(start, end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date window: {exc}")


class DataStore:
    """
    In-memory tables for the storefront plus the event and snapshot plumbing.

    Construct one per process (the app factory does) and pass it to the
    service functions; tests build their own with a MemorySnapshotBackend.
    """

    def __init__(
        self,
        backend=None,
        *,
        bus: EventBus | None = None,
        debounce_seconds: float = 0.2,
        activity_limit: int = 1000,
        seed_catalog: bool = True,
        estimated_cost_ratio: float = 0.7,
        low_margin_threshold: float = 10,
    ):
        self._lock = threading.RLock()
        self.backend = backend if backend is not None else MemorySnapshotBackend()
        self.events = bus if bus is not None else EventBus()
        self.scheduler = SnapshotScheduler(self.persist_all, debounce_seconds)
        self.activity_limit = activity_limit
        self.seed_catalog = seed_catalog
        self.estimated_cost_ratio = estimated_cost_ratio
        self.low_margin_threshold = low_margin_threshold

        self._users: dict[str, User] = {}
        self._products: dict[str, Product] = {}
        self._transactions: dict[str, Transaction] = {}
        self._topups: dict[str, TopupRequest] = {}
        self._orders: dict[str, Order] = {}
        self._categories: dict[str, Category] = {}
        self._expenses: dict[str, Expense] = {}
        self._alerts: dict[str, ProfitAlert] = {}
        self._activities: list[ActivityLog] = []

        self._ensure_uncategorized()

    @classmethod
    def from_config(cls, config, backend) -> "DataStore":
        return cls(
            backend,
            debounce_seconds=float(config.get("SAVE_DEBOUNCE_SECONDS", 0.2)),
            activity_limit=int(config.get("ACTIVITY_LOG_LIMIT", 1000)),
            seed_catalog=bool(config.get("SEED_CATALOG", True)),
            estimated_cost_ratio=float(config.get("ESTIMATED_COST_RATIO", 0.7)),
            low_margin_threshold=float(config.get("PROFIT_LOW_MARGIN_THRESHOLD", 10)),
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self):
        """Hold the store lock so several calls form one atomic step."""
        with self._lock:
            yield self

    def subscribe(self, listener) -> Subscription:
        return self.events.subscribe(listener)

    def _emit(self, event_type: str, payload: dict) -> None:
        self.events.emit(event_type, payload)

    def _changed(self) -> None:
        self.scheduler.request()

    @staticmethod
    def _actor(admin_id: str | None, admin_name: str | None) -> tuple[str, str]:
        return admin_id or SYSTEM_ACTOR_ID, admin_name or SYSTEM_ACTOR_NAME

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    @synchronized
    def log_activity(
        self,
        *,
        action: str,
        target_type: str,
        description: str,
        target_id: str | None = None,
        admin_id: str | None = None,
        admin_name: str | None = None,
        metadata: dict | None = None,
    ) -> ActivityLog:
        admin_id, admin_name = self._actor(admin_id, admin_name)
        entry = ActivityLog(
            id=new_id(ActivityLog.ID_PREFIX),
            admin_id=admin_id,
            admin_name=admin_name,
            action=require_text(action, "action"),
            target_type=require_text(target_type, "target_type"),
            description=description,
            target_id=target_id,
            metadata=dict(metadata or {}),
        )
        self._activities.insert(0, entry)
        if len(self._activities) > self.activity_limit:
            del self._activities[self.activity_limit:]
        self._changed()
        return entry.copy()

    @synchronized
    def get_recent_activity(self, limit: int = 10) -> list[ActivityLog]:
        return [a.copy() for a in self._activities[:limit]]

    def _log_changes(self, *, target_type, target_id, label, changes, tracked, admin_id, admin_name):
        for field_name in tracked:
            if field_name not in changes:
                continue
            old, new = changes[field_name]
            self.log_activity(
                action=f"update_{target_type.replace('-', '_')}_{field_name}",
                target_type=target_type,
                target_id=target_id,
                description=f"{label}: {field_name} changed from {_fmt(old)} to {_fmt(new)}",
                admin_id=admin_id,
                admin_name=admin_name,
                metadata={"field": field_name, "old": old, "new": new},
            )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @synchronized
    def get_users(self) -> list[User]:
        return [u.copy() for u in self._users.values()]

    @synchronized
    def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.copy() if user else None

    def _find_user_by_email(self, email: str | None) -> Optional[User]:
        if not email:
            return None
        wanted = email.strip().lower()
        for user in self._users.values():
            if user.email.lower() == wanted:
                return user
        return None

    @synchronized
    def get_user_by_email(self, email: str) -> Optional[User]:
        user = self._find_user_by_email(email)
        return user.copy() if user else None

    @synchronized
    def get_recent_users(self, limit: int = 10) -> list[User]:
        users = sorted(self._users.values(), key=lambda u: u.created_at, reverse=True)
        return [u.copy() for u in users[:limit]]

    @staticmethod
    def _check_user_patch(patch: dict) -> None:
        if "role" in patch:
            require_choice(patch["role"], "role", USER_ROLES)
        if "status" in patch:
            require_choice(patch["status"], "status", USER_STATUSES)
        for name in ("balance", "total_orders", "total_spent"):
            if name in patch:
                patch[name] = coerce_amount(patch[name], name)

    @synchronized
    def create_user(self, patch: dict, *, admin_id: str | None = None, admin_name: str | None = None) -> User:
        """
        Create a user. An opening balance is booked as a credit transaction
        so the ledger always explains the balance.

        Raises:
            ValidationError: malformed fields
            ConflictError: email already registered (case-insensitive)
        """
        data = validate_patch(payload=patch, policy=USER_CREATE_POLICY, partial=False)
        email = normalize_email(data.pop("email"))
        if self._find_user_by_email(email) is not None:
            raise ConflictError(f"A user with email {email} already exists")
        self._check_user_patch(data)
        opening_balance = data.pop("balance", 0)

        user = User(id=new_id(User.ID_PREFIX), email=email, **data)
        self._users[user.id] = user

        self.log_activity(
            action="create_user",
            target_type=TARGET_USER,
            target_id=user.id,
            description=f"New user registered: {user.email}",
            admin_id=admin_id,
            admin_name=admin_name,
        )
        self._emit(events.USER_CREATED, user.to_dict())

        if opening_balance:
            self._apply_balance(
                user,
                opening_balance,
                tx_type=TX_CREDIT,
                description="Opening balance",
                admin_id=admin_id,
                admin_name=admin_name,
            )
        self._changed()
        return user.copy()

    @synchronized
    def update_user(
        self,
        user_id: str,
        patch: dict,
        *,
        admin_id: str | None = None,
        admin_name: str | None = None,
    ) -> Optional[User]:
        """
        Patch a user. Direct balance writes are allowed for bookkeeping and
        emit USER_BALANCE_CHANGED besides USER_UPDATED; they create no
        ledger entry (use adjust_balance for that).
        """
        user = self._users.get(user_id)
        if user is None:
            return None
        data = validate_patch(payload=patch, policy=USER_UPDATE_POLICY, partial=True)
        self._check_user_patch(data)

        changes = _apply_patch(user, data)
        if not changes:
            return user.copy()
        user.updated_at = utcnow()

        if "balance" in changes:
            old, new = changes["balance"]
            delta = new - old
            self.log_activity(
                action="credit_user" if delta > 0 else "debit_user",
                target_type=TARGET_USER,
                target_id=user.id,
                description=f"{'Credited' if delta > 0 else 'Debited'} {abs(delta):,} VND for {user.email}",
                admin_id=admin_id,
                admin_name=admin_name,
                metadata={"old_balance": old, "new_balance": new},
            )
            self._emit(events.USER_BALANCE_CHANGED, {"user_id": user.id, "old_balance": old, "new_balance": new})

        self._log_changes(
            target_type=TARGET_USER, target_id=user.id, label=user.email, changes=changes,
            tracked=TRACKED_USER_FIELDS, admin_id=admin_id, admin_name=admin_name,
        )
        self._emit(events.USER_UPDATED, user.to_dict())
        self._changed()
        return user.copy()

    @staticmethod
    def _check_transaction_sign(tx_type: str, amount: int) -> None:
        require_choice(tx_type, "transaction type", TRANSACTION_TYPES)
        if amount == 0:
            raise ValidationError("Transaction amount must be non-zero")
        if tx_type in INCOMING_TRANSACTION_TYPES and amount < 0:
            raise ValidationError(f"A {tx_type} transaction must have a positive amount")
        if tx_type in OUTGOING_TRANSACTION_TYPES and amount > 0:
            raise ValidationError(f"A {tx_type} transaction must have a negative amount")

    def _record_transaction(self, *, user_id, tx_type, amount, description="", order_id=None,
                            admin_id=None, metadata=None) -> Transaction:
        self._check_transaction_sign(tx_type, amount)
        tx = Transaction(
            id=new_id(Transaction.ID_PREFIX),
            user_id=user_id,
            type=tx_type,
            amount=amount,
            description=description or "",
            order_id=order_id,
            admin_id=admin_id,
            metadata=dict(metadata or {}),
        )
        self._transactions[tx.id] = tx
        self._emit(events.TRANSACTION_CREATED, tx.to_dict())
        return tx

    def _apply_balance(self, user: User, amount: int, *, tx_type: str, description: str = "",
                       order_id=None, admin_id=None, admin_name=None, metadata=None) -> Transaction:
        new_balance = user.balance + amount
        if new_balance < 0:
            raise ValidationError(
                f"Insufficient balance: {user.email} has {user.balance:,}, needs {-amount:,}"
            )
        tx = self._record_transaction(
            user_id=user.id, tx_type=tx_type, amount=amount, description=description,
            order_id=order_id, admin_id=admin_id, metadata=metadata,
        )
        old_balance = user.balance
        user.balance = new_balance
        user.updated_at = utcnow()
        if admin_id:
            self.log_activity(
                action="credit_user" if amount > 0 else "debit_user",
                target_type=TARGET_USER,
                target_id=user.id,
                description=f"{'Credited' if amount > 0 else 'Debited'} {abs(amount):,} VND for {user.email}",
                admin_id=admin_id,
                admin_name=admin_name,
                metadata={"transaction_id": tx.id, **(metadata or {})},
            )
        self._emit(events.USER_BALANCE_CHANGED, {"user_id": user.id, "old_balance": old_balance, "new_balance": new_balance})
        self._emit(events.USER_UPDATED, user.to_dict())
        return tx

    @synchronized
    def adjust_balance(
        self,
        user_id: str,
        amount: Any,
        *,
        tx_type: str | None = None,
        description: str = "",
        order_id: str | None = None,
        admin_id: str | None = None,
        admin_name: str | None = None,
        metadata: dict | None = None,
    ) -> tuple[User, Transaction]:
        """
        Apply a signed amount to a user's balance and append the matching
        ledger entry in one step.

        tx_type defaults to credit for positive amounts and debit for
        negative ones. A change that would leave the balance negative is a
        ValidationError and nothing is written.
        """
        user = self._users.get(user_id)
        if user is None:
            raise ReferentialIntegrityError(f"User {user_id} not found")
        amount = coerce_amount(amount, "amount", allow_zero=False, allow_negative=True)
        if tx_type is None:
            tx_type = TX_CREDIT if amount > 0 else TX_DEBIT
        tx = self._apply_balance(
            user, amount, tx_type=tx_type, description=description, order_id=order_id,
            admin_id=admin_id, admin_name=admin_name, metadata=metadata,
        )
        self._changed()
        return user.copy(), tx.copy()

    @synchronized
    def reconcile_balance(self, user_id: str) -> Optional[dict]:
        """Compare a user's stored balance with the sum of their ledger entries."""
        user = self._users.get(user_id)
        if user is None:
            return None
        ledger_total = sum(t.amount for t in self._transactions.values() if t.user_id == user_id)
        return {
            "user_id": user_id,
            "balance": user.balance,
            "ledger_total": ledger_total,
            "difference": user.balance - ledger_total,
            "consistent": user.balance == ledger_total,
        }

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @synchronized
    def create_transaction(self, patch: dict) -> Transaction:
        """
        Append a ledger entry without moving the balance (imports and
        corrections). Balance-affecting paths use adjust_balance.
        """
        data = validate_patch(payload=patch, policy=TRANSACTION_POLICY, partial=False)
        if data["user_id"] not in self._users:
            raise ReferentialIntegrityError(f"User {data['user_id']} not found")
        amount = coerce_amount(data["amount"], "amount", allow_zero=False, allow_negative=True)
        tx = self._record_transaction(
            user_id=data["user_id"],
            tx_type=data["type"],
            amount=amount,
            description=data.get("description") or "",
            order_id=data.get("order_id"),
            admin_id=data.get("admin_id"),
            metadata=data.get("metadata"),
        )
        self._changed()
        return tx.copy()

    @synchronized
    def get_transactions(self, limit: int | None = None) -> list[Transaction]:
        txs = sorted(self._transactions.values(), key=lambda t: t.created_at, reverse=True)
        if limit is not None:
            txs = txs[:limit]
        return [t.copy() for t in txs]

    @synchronized
    def get_user_transactions(self, user_id: str) -> list[Transaction]:
        txs = [t for t in self._transactions.values() if t.user_id == user_id]
        txs.sort(key=lambda t: t.created_at, reverse=True)
        return [t.copy() for t in txs]

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    @synchronized
    def get_products(self) -> list[Product]:
        """Catalog without soft-deleted products."""
        return [p.copy() for p in self._products.values() if not p.is_deleted]

    @synchronized
    def get_active_products(self) -> list[Product]:
        return [p.copy() for p in self._products.values() if not p.is_deleted and p.is_active]

    @synchronized
    def get_all_products(self) -> list[Product]:
        """Everything, soft-deleted included (admin recovery)."""
        return [p.copy() for p in self._products.values()]

    @synchronized
    def get_deleted_products(self) -> list[Product]:
        return [p.copy() for p in self._products.values() if p.is_deleted]

    @synchronized
    def get_product(self, product_id: str) -> Optional[Product]:
        """Lookup by id; soft-deleted products still resolve for order history."""
        product = self._products.get(product_id)
        return product.copy() if product else None

    @staticmethod
    def _coerce_options(raw) -> list[ProductOption]:
        if not isinstance(raw, list):
            raise ValidationError("options must be a list")
        options: list[ProductOption] = []
        seen: set[str] = set()
        for item in raw:
            if isinstance(item, ProductOption):
                item = item.to_dict()
            if not isinstance(item, dict):
                raise ValidationError("Each option must be an object")
            option_id = require_text(item.get("id"), "option id")
            if option_id in seen:
                raise ValidationError(f"Duplicate option id: {option_id}")
            seen.add(option_id)
            base_price = item.get("base_price")
            margin = item.get("profit_margin")
            options.append(ProductOption(
                id=option_id,
                label=require_text(item.get("label"), "option label"),
                price=coerce_amount(item.get("price"), "option price"),
                stock=coerce_amount(item.get("stock", 0), "option stock"),
                base_price=coerce_amount(base_price, "option base_price") if base_price is not None else None,
                profit_margin=float(margin) if margin is not None else None,
                kiosk_token=item.get("kiosk_token"),
            ))
        return options

    @staticmethod
    def _coerce_supplier(raw) -> SupplierInfo:
        if isinstance(raw, SupplierInfo):
            raw = raw.to_dict()
        if not isinstance(raw, dict):
            raise ValidationError("supplier must be an object")
        unknown = set(raw) - SupplierInfo.field_names()
        if unknown:
            raise ValidationError(f"Field not allowed: supplier.{sorted(unknown)[0]}")
        data = dict(raw)
        require_choice(data.get("provider", "manual"), "supplier provider", SUPPLIER_PROVIDERS)
        for name in ("base_price", "last_stock"):
            if data.get(name) is not None:
                data[name] = coerce_amount(data[name], f"supplier {name}")
        if data.get("markup_percent") is not None:
            data["markup_percent"] = float(data["markup_percent"])
        if data.get("last_synced_at") is not None:
            data["last_synced_at"] = coerce_datetime_field(data["last_synced_at"], "supplier last_synced_at")
        return SupplierInfo.from_dict(data)

    def _check_product_patch(self, data: dict) -> None:
        for name in ("price", "stock", "sold"):
            if data.get(name) is not None:
                data[name] = coerce_amount(data[name], name)
        if "category" in data:
            slug = data["category"] or UNCATEGORIZED_SLUG
            if self._find_category_by_slug(slug) is None:
                raise ReferentialIntegrityError(f"Category '{slug}' does not exist")
            data["category"] = slug
        if data.get("badge") is not None:
            require_choice(data["badge"], "badge", PRODUCT_BADGES)
        if "options" in data:
            data["options"] = self._coerce_options(data["options"] or [])
        if data.get("supplier") is not None:
            data["supplier"] = self._coerce_supplier(data["supplier"])
        if "faqs" in data:
            faqs = data["faqs"] or []
            if not isinstance(faqs, list) or not all(isinstance(f, dict) for f in faqs):
                raise ValidationError("faqs must be a list of objects")
            data["faqs"] = [dict(f) for f in faqs]

    @staticmethod
    def _check_product_priced(product: Product) -> None:
        if product.price is None and not product.options:
            raise ValidationError("A product needs a price or at least one option")

    @synchronized
    def create_product(
        self,
        patch: dict,
        *,
        product_id: str | None = None,
        admin_id: str | None = None,
        admin_name: str | None = None,
    ) -> Product:
        data = validate_patch(payload=patch, policy=PRODUCT_POLICY, partial=False)
        data.setdefault("category", UNCATEGORIZED_SLUG)
        self._check_product_patch(data)
        product_id = product_id or new_id(Product.ID_PREFIX)
        if product_id in self._products:
            raise ConflictError(f"Product {product_id} already exists")

        actor_id, actor_name = self._actor(admin_id, admin_name)
        product = Product(id=product_id, created_by=actor_id, last_modified_by=actor_id, **data)
        self._check_product_priced(product)
        self._products[product.id] = product

        self.log_activity(
            action="create_product",
            target_type=TARGET_PRODUCT,
            target_id=product.id,
            description=f"Created product: {product.title}",
            admin_id=actor_id,
            admin_name=actor_name,
        )
        self._emit(events.PRODUCT_CREATED, product.to_dict())
        self._changed()
        return product.copy()

    @synchronized
    def update_product(
        self,
        product_id: str,
        patch: dict,
        *,
        admin_id: str | None = None,
        admin_name: str | None = None,
    ) -> Optional[Product]:
        product = self._products.get(product_id)
        if product is None:
            return None
        data = validate_patch(payload=patch, policy=PRODUCT_POLICY, partial=True)
        self._check_product_patch(data)

        candidate = product.copy()
        changes = _apply_patch(candidate, data)
        if not changes:
            return product.copy()
        self._check_product_priced(candidate)

        actor_id, actor_name = self._actor(admin_id, admin_name)
        candidate.updated_at = utcnow()
        candidate.last_modified_by = actor_id
        self._products[product_id] = candidate

        self._log_changes(
            target_type=TARGET_PRODUCT, target_id=product_id, label=candidate.title, changes=changes,
            tracked=TRACKED_PRODUCT_FIELDS, admin_id=actor_id, admin_name=actor_name,
        )
        self._emit(events.PRODUCT_UPDATED, candidate.to_dict())
        self._changed()
        return candidate.copy()

    def _open_orders_for(self, product_id: str) -> list[Order]:
        return [
            o for o in self._orders.values()
            if o.product_id == product_id and o.status in OPEN_ORDER_STATUSES
        ]

    @synchronized
    def delete_product(self, product_id: str, *, admin_id: str | None = None, admin_name: str | None = None) -> bool:
        """
        Soft delete: stamp deleted_at and hide from listings.

        Raises:
            ReferentialIntegrityError: an open order still references the product
        """
        product = self._products.get(product_id)
        if product is None:
            return False
        if product.is_deleted:
            return True
        open_orders = self._open_orders_for(product_id)
        if open_orders:
            raise ReferentialIntegrityError(
                f"Cannot delete product {product.title}: {len(open_orders)} open order(s) reference it"
            )
        now = utcnow()
        actor_id, actor_name = self._actor(admin_id, admin_name)
        product.deleted_at = now
        product.updated_at = now
        product.last_modified_by = actor_id

        self.log_activity(
            action="delete_product",
            target_type=TARGET_PRODUCT,
            target_id=product_id,
            description=f"Deleted product: {product.title}",
            admin_id=actor_id,
            admin_name=actor_name,
        )
        self._emit(events.PRODUCT_DELETED, {"product_id": product_id, "permanent": False})
        self._changed()
        return True

    @synchronized
    def restore_product(self, product_id: str, *, admin_id: str | None = None, admin_name: str | None = None) -> Optional[Product]:
        product = self._products.get(product_id)
        if product is None:
            return None
        if not product.is_deleted:
            return product.copy()
        actor_id, actor_name = self._actor(admin_id, admin_name)
        # The category may have been deleted meanwhile
        if self._find_category_by_slug(product.category) is None:
            product.category = UNCATEGORIZED_SLUG
        product.deleted_at = None
        product.updated_at = utcnow()
        product.last_modified_by = actor_id

        self.log_activity(
            action="restore_product",
            target_type=TARGET_PRODUCT,
            target_id=product_id,
            description=f"Restored product: {product.title}",
            admin_id=actor_id,
            admin_name=actor_name,
        )
        self._emit(events.PRODUCT_RESTORED, product.to_dict())
        self._changed()
        return product.copy()

    @synchronized
    def purge_product(self, product_id: str, *, admin_id: str | None = None, admin_name: str | None = None) -> bool:
        """
        Permanently remove a product.

        Raises:
            ReferentialIntegrityError: any order (open or not) references it
        """
        product = self._products.get(product_id)
        if product is None:
            return False
        referencing = sum(1 for o in self._orders.values() if o.product_id == product_id)
        if referencing:
            raise ReferentialIntegrityError(
                f"Cannot permanently delete product {product.title}: {referencing} order(s) reference it"
            )
        del self._products[product_id]
        for category in self._categories.values():
            if product_id in category.featured_product_ids:
                category.featured_product_ids = [p for p in category.featured_product_ids if p != product_id]
                category.updated_at = utcnow()

        self.log_activity(
            action="purge_product",
            target_type=TARGET_PRODUCT,
            target_id=product_id,
            description=f"Permanently deleted product: {product.title}",
            admin_id=admin_id,
            admin_name=admin_name,
        )
        self._emit(events.PRODUCT_DELETED, {"product_id": product_id, "permanent": True})
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Top-up requests
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_bank_info(raw) -> BankInfo:
        if isinstance(raw, BankInfo):
            return raw.copy()
        if not isinstance(raw, dict):
            raise ValidationError("bank_info must be an object")
        unknown = set(raw) - BankInfo.field_names()
        if unknown:
            raise ValidationError(f"Field not allowed: bank_info.{sorted(unknown)[0]}")
        return BankInfo.from_dict(raw)

    @synchronized
    def create_topup_request(self, patch: dict) -> TopupRequest:
        data = validate_patch(payload=patch, policy=TOPUP_CREATE_POLICY, partial=False)
        amount = coerce_int(data["requested_amount"], "requested_amount")
        if amount < TOPUP_MIN_AMOUNT:
            raise ValidationError(f"Minimum top-up amount is {TOPUP_MIN_AMOUNT:,} VND")
        if amount > TOPUP_MAX_AMOUNT:
            raise ValidationError(f"Maximum top-up amount is {TOPUP_MAX_AMOUNT:,} VND")
        data["requested_amount"] = amount

        user = self._users.get(data["user_id"])
        if user is not None:
            data["user_email"] = user.email
            data.setdefault("user_name", user.name)
        elif not data.get("user_email"):
            raise ValidationError("user_email is required when the user is not registered")
        else:
            data["user_email"] = normalize_email(data["user_email"])
        if data.get("bank_info") is not None:
            data["bank_info"] = self._coerce_bank_info(data["bank_info"])

        request = TopupRequest(id=new_id(TopupRequest.ID_PREFIX), **data)
        self._topups[request.id] = request

        self.log_activity(
            action="create_topup_request",
            target_type=TARGET_TOPUP_REQUEST,
            target_id=request.id,
            description=f"Top-up request of {amount:,} VND from {request.user_email}",
            admin_id=request.user_id,
            admin_name=request.user_name or request.user_email,
        )
        self._emit(events.TOPUP_REQUEST_CREATED, request.to_dict())
        self._changed()
        return request.copy()

    @synchronized
    def get_topup_request(self, request_id: str) -> Optional[TopupRequest]:
        request = self._topups.get(request_id)
        return request.copy() if request else None

    def _sorted_topups(self, predicate=None) -> list[TopupRequest]:
        items = [r for r in self._topups.values() if predicate is None or predicate(r)]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return [r.copy() for r in items]

    @synchronized
    def get_topup_requests(self) -> list[TopupRequest]:
        return self._sorted_topups()

    @synchronized
    def get_pending_topup_requests(self) -> list[TopupRequest]:
        return self._sorted_topups(lambda r: r.status == TOPUP_PENDING)

    @synchronized
    def get_user_topup_requests(self, user_id: str) -> list[TopupRequest]:
        return self._sorted_topups(lambda r: r.user_id == user_id)

    @synchronized
    def update_topup_request(
        self,
        request_id: str,
        patch: dict,
        *,
        event_type: str = events.TOPUP_REQUEST_UPDATED,
        workflow: bool = False,
    ) -> Optional[TopupRequest]:
        """
        Patch a top-up request.

        Callers may only touch notes, contact and bank-transfer fields.
        Status and processing fields need workflow=True, which topup_service
        passes once the credit (if any) is booked. A request leaves
        'pending' once; approved_amount cannot change after it has been set.
        event_type lets the workflow announce TOPUP_REQUEST_PROCESSED instead
        of a plain update.
        """
        if event_type not in (events.TOPUP_REQUEST_UPDATED, events.TOPUP_REQUEST_PROCESSED):
            raise ValueError(f"Unsupported event type for top-up updates: {event_type}")
        request = self._topups.get(request_id)
        if request is None:
            return None
        policy = TOPUP_WORKFLOW_POLICY if workflow else TOPUP_UPDATE_POLICY
        data = validate_patch(payload=patch, policy=policy, partial=True)

        if "status" in data and data["status"] != request.status:
            require_choice(data["status"], "top-up status", TOPUP_STATUSES)
            if request.status != TOPUP_PENDING:
                raise ValidationError(f"Top-up request {request_id} is already {request.status}")
        if "approved_amount" in data:
            if request.approved_amount is not None and data["approved_amount"] != request.approved_amount:
                raise ValidationError("approved_amount cannot be changed once set")
            if data["approved_amount"] is not None:
                data["approved_amount"] = coerce_amount(data["approved_amount"], "approved_amount", allow_zero=False)
        if data.get("bank_info") is not None:
            data["bank_info"] = self._coerce_bank_info(data["bank_info"])

        changes = _apply_patch(request, data)
        if changes:
            request.updated_at = utcnow()
        self._emit(event_type, request.to_dict())
        self._changed()
        return request.copy()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @synchronized
    def create_order(self, patch: dict, *, admin_id: str | None = None, admin_name: str | None = None) -> Order:
        """
        Record an order against an existing product.

        unit_price defaults to the selected option's price, else the product
        price; total_amount defaults to unit_price * quantity. An order created
        as completed books its sale like a completion through
        update_order_status.
        """
        data = validate_patch(payload=patch, policy=ORDER_CREATE_POLICY, partial=False)
        product = self._products.get(data["product_id"])
        if product is None:
            raise ReferentialIntegrityError(f"Product {data['product_id']} does not exist")

        quantity = data.get("quantity", 1)
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")
        data["quantity"] = quantity

        option = None
        if data.get("selected_option_id"):
            option = product.get_option(data["selected_option_id"])
            if option is None:
                raise ValidationError(
                    f"Option {data['selected_option_id']} does not exist on product {product.id}"
                )
        if data.get("unit_price") is None:
            data["unit_price"] = option.price if option else product.price
            if data["unit_price"] is None:
                raise ValidationError("unit_price is required for a product without a price")
        data["unit_price"] = coerce_amount(data["unit_price"], "unit_price")
        if data.get("total_amount") is None:
            data["total_amount"] = data["unit_price"] * quantity
        data["total_amount"] = coerce_amount(data["total_amount"], "total_amount")
        data["status"] = require_choice(data.get("status", ORDER_PENDING), "order status", ORDER_STATUSES)
        order = Order(id=new_id(Order.ID_PREFIX), **data)
        if "created_at" in data:
            order.updated_at = order.created_at
        stamp = STATUS_TIMESTAMP_FIELDS.get(order.status)
        if stamp:
            setattr(order, stamp, order.created_at)
        self._orders[order.id] = order
        if order.status == ORDER_COMPLETED:
            self._book_sale(order)

        if admin_id:
            self.log_activity(
                action="create_order",
                target_type=TARGET_ORDER,
                target_id=order.id,
                description=f"Created order for {product.title} x{quantity}",
                admin_id=admin_id,
                admin_name=admin_name,
            )
        self._emit(events.ORDER_CREATED, order.to_dict())
        self._changed()
        return order.copy()

    @synchronized
    def get_order(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.copy() if order else None

    @synchronized
    def get_all_orders(self) -> list[Order]:
        orders = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        return [o.copy() for o in orders]

    @synchronized
    def get_orders_by_user(self, user_id: str) -> list[Order]:
        orders = [o for o in self._orders.values() if o.user_id == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [o.copy() for o in orders]

    @synchronized
    def update_order(self, order_id: str, patch: dict) -> Optional[Order]:
        """Patch non-status fields. Status changes go through update_order_status."""
        order = self._orders.get(order_id)
        if order is None:
            return None
        if isinstance(patch, dict) and "status" in patch:
            raise ValidationError("Use update_order_status to change an order's status")
        data = validate_patch(payload=patch, policy=ORDER_UPDATE_POLICY, partial=True)
        if data.get("refund_amount") is not None:
            data["refund_amount"] = coerce_amount(data["refund_amount"], "refund_amount")
            if data["refund_amount"] > order.total_amount:
                raise ValidationError("refund_amount cannot exceed the order total")

        if _apply_patch(order, data):
            order.updated_at = utcnow()
        self._emit(events.ORDER_UPDATED, order.to_dict())
        self._changed()
        return order.copy()

    @synchronized
    def update_order_status(
        self,
        order_id: str,
        new_status: str,
        *,
        admin_id: str | None = None,
        admin_name: str | None = None,
        admin_notes: str | None = None,
    ) -> Optional[Order]:
        """
        Move an order along the transition table and stamp the stage time.

        Completing an order books the sale on its product: sold goes up and
        the product (or selected option) stock goes down, never below zero.

        Raises:
            OrderStatusError: transition not in the table
        """
        order = self._orders.get(order_id)
        if order is None:
            return None
        old_status = order.status
        validate_transition(old_status, new_status)

        now = utcnow()
        order.status = new_status
        order.updated_at = now
        stamp = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if stamp:
            setattr(order, stamp, now)
        if admin_notes is not None:
            order.admin_notes = admin_notes

        if new_status == ORDER_COMPLETED:
            self._book_sale(order)

        self.log_activity(
            action="update_order_status",
            target_type=TARGET_ORDER,
            target_id=order.id,
            description=f"Order {order.id}: status changed from {old_status} to {new_status}",
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={"old_status": old_status, "new_status": new_status},
        )
        self._emit(events.ORDER_UPDATED, order.to_dict())
        self._changed()
        return order.copy()

    def _book_sale(self, order: Order) -> None:
        product = self._products.get(order.product_id)
        if product is None:
            return
        product.sold += order.quantity
        option = product.get_option(order.selected_option_id)
        if option is not None:
            option.stock = max(0, option.stock - order.quantity)
        else:
            product.stock = max(0, product.stock - order.quantity)
        product.updated_at = utcnow()
        self._emit(events.PRODUCT_UPDATED, product.to_dict())

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _find_category_by_slug(self, slug: str | None) -> Optional[Category]:
        if not slug:
            return None
        for category in self._categories.values():
            if category.slug == slug:
                return category
        return None

    def _ensure_uncategorized(self) -> bool:
        if self._find_category_by_slug(UNCATEGORIZED_SLUG) is not None:
            return False
        category = Category(
            id=new_id(Category.ID_PREFIX),
            name=UNCATEGORIZED_CATEGORY["name"],
            slug=UNCATEGORIZED_SLUG,
            icon=UNCATEGORIZED_CATEGORY["icon"],
            sort_order=UNCATEGORIZED_SORT_ORDER,
        )
        self._categories[category.id] = category
        return True

    @staticmethod
    def _category_sort_key(category: Category):
        return (category.sort_order, category.name.lower())

    @synchronized
    def get_categories(self) -> list[Category]:
        """Active categories in display order."""
        items = sorted((c for c in self._categories.values() if c.is_active), key=self._category_sort_key)
        return [c.copy() for c in items]

    @synchronized
    def get_all_categories(self) -> list[Category]:
        return [c.copy() for c in sorted(self._categories.values(), key=self._category_sort_key)]

    @synchronized
    def get_category(self, category_id: str) -> Optional[Category]:
        category = self._categories.get(category_id)
        return category.copy() if category else None

    @synchronized
    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        category = self._find_category_by_slug(slug)
        return category.copy() if category else None

    def _check_category_patch(self, data: dict, *, current: Category | None) -> None:
        if "slug" in data or "name" in data:
            source = data.get("slug") or data.get("name")
            if "slug" in data or current is None or current.slug != UNCATEGORIZED_SLUG:
                slug = slugify(source)
                if not slug:
                    raise ValidationError("Category name must contain letters or digits")
                if current is not None and current.slug == UNCATEGORIZED_SLUG and slug != UNCATEGORIZED_SLUG:
                    raise ReferentialIntegrityError("The uncategorized category keeps its slug")
                clash = self._find_category_by_slug(slug)
                if clash is not None and (current is None or clash.id != current.id):
                    raise ConflictError(f"Category slug '{slug}' is already used by {clash.name}")
                data["slug"] = slug
        if "featured_product_ids" in data:
            ids = data["featured_product_ids"] or []
            if not isinstance(ids, list):
                raise ValidationError("featured_product_ids must be a list")
            missing = [pid for pid in ids if pid not in self._products]
            if missing:
                raise ReferentialIntegrityError(f"Unknown product(s): {', '.join(missing)}")
            data["featured_product_ids"] = list(dict.fromkeys(ids))

    @synchronized
    def create_category(self, patch: dict, *, admin_id: str | None = None, admin_name: str | None = None) -> Category:
        """
        Create a category. The slug comes from `slug` when given, else from
        the name.

        Raises:
            ConflictError: the slug is already taken
        """
        data = validate_patch(payload=patch, policy=CATEGORY_POLICY, partial=False)
        self._check_category_patch(data, current=None)
        if "sort_order" not in data:
            regular = [c.sort_order for c in self._categories.values() if c.slug != UNCATEGORIZED_SLUG]
            data["sort_order"] = max(regular, default=-1) + 1

        category = Category(id=new_id(Category.ID_PREFIX), **data)
        self._categories[category.id] = category

        self.log_activity(
            action="create_category",
            target_type=TARGET_CATEGORY,
            target_id=category.id,
            description=f"Created category: {category.name}",
            admin_id=admin_id,
            admin_name=admin_name,
        )
        self._emit(events.CATEGORY_CREATED, category.to_dict())
        self._changed()
        return category.copy()

    @synchronized
    def update_category(
        self,
        category_id: str,
        patch: dict,
        *,
        admin_id: str | None = None,
        admin_name: str | None = None,
    ) -> Optional[Category]:
        """
        Patch a category. A rename re-derives the slug and the products that
        used the old slug follow it.
        """
        category = self._categories.get(category_id)
        if category is None:
            return None
        data = validate_patch(payload=patch, policy=CATEGORY_POLICY, partial=True)
        self._check_category_patch(data, current=category)

        changes = _apply_patch(category, data)
        if not changes:
            return category.copy()
        now = utcnow()
        category.updated_at = now

        if "slug" in changes:
            old_slug, new_slug = changes["slug"]
            for product in self._products.values():
                if product.category == old_slug:
                    product.category = new_slug
                    product.updated_at = now
                    self._emit(events.PRODUCT_UPDATED, product.to_dict())

        self._log_changes(
            target_type=TARGET_CATEGORY, target_id=category.id, label=category.name, changes=changes,
            tracked=TRACKED_CATEGORY_FIELDS, admin_id=admin_id, admin_name=admin_name,
        )
        self._emit(events.CATEGORY_UPDATED, category.to_dict())
        self._changed()
        return category.copy()

    @synchronized
    def delete_category(self, category_id: str, *, admin_id: str | None = None, admin_name: str | None = None) -> bool:
        """
        Remove a category and move its products (soft-deleted ones too) to
        `uncategorized`.

        Raises:
            ReferentialIntegrityError: target is the uncategorized category
        """
        category = self._categories.get(category_id)
        if category is None:
            return False
        if category.slug == UNCATEGORIZED_SLUG:
            raise ReferentialIntegrityError("The uncategorized category cannot be deleted")

        now = utcnow()
        moved: list[str] = []
        for product in self._products.values():
            if product.category == category.slug:
                product.category = UNCATEGORIZED_SLUG
                product.updated_at = now
                moved.append(product.id)
                self._emit(events.PRODUCT_UPDATED, product.to_dict())
        del self._categories[category_id]

        self.log_activity(
            action="delete_category",
            target_type=TARGET_CATEGORY,
            target_id=category_id,
            description=f"Deleted category: {category.name} ({len(moved)} product(s) moved to {UNCATEGORIZED_SLUG})",
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={"reassigned_product_ids": moved},
        )
        self._emit(events.CATEGORY_DELETED, {
            "category_id": category_id,
            "slug": category.slug,
            "reassigned_product_ids": moved,
        })
        self._changed()
        return True

    @synchronized
    def reorder_categories(self, ordered_ids: Iterable[str]) -> list[Category]:
        """Set sort_order from list position; unlisted categories keep theirs."""
        ordered_ids = list(ordered_ids)
        unknown = [cid for cid in ordered_ids if cid not in self._categories]
        if unknown:
            raise ValidationError(f"Unknown category id(s): {', '.join(unknown)}")
        now = utcnow()
        for position, category_id in enumerate(ordered_ids):
            category = self._categories[category_id]
            if category.sort_order != position:
                category.sort_order = position
                category.updated_at = now
                self._emit(events.CATEGORY_UPDATED, category.to_dict())
        self._changed()
        return self.get_all_categories()

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def _check_expense_patch(self, data: dict, *, current: Expense | None) -> None:
        if "category" in data:
            require_choice(data["category"], "expense category", EXPENSE_CATEGORIES)
        if "amount" in data:
            data["amount"] = coerce_amount(data["amount"], "amount", allow_zero=False)
        if data.get("recurring_period") is not None:
            require_choice(data["recurring_period"], "recurring_period", RECURRING_PERIODS)
        is_recurring = data.get("is_recurring", current.is_recurring if current else False)
        period = data["recurring_period"] if "recurring_period" in data else (current.recurring_period if current else None)
        if is_recurring and not period:
            raise ValidationError("recurring_period is required for a recurring expense")
        if "allocated_to_products" in data:
            ids = data["allocated_to_products"] or []
            if not isinstance(ids, list):
                raise ValidationError("allocated_to_products must be a list")
            missing = [pid for pid in ids if pid not in self._products]
            if missing:
                raise ReferentialIntegrityError(f"Unknown product(s): {', '.join(missing)}")
            data["allocated_to_products"] = list(dict.fromkeys(ids))
        if data.get("metadata") is not None and not isinstance(data["metadata"], dict):
            raise ValidationError("metadata must be an object")

    @synchronized
    def create_expense(self, patch: dict, *, admin_id: str | None = None, admin_name: str | None = None) -> Expense:
        data = validate_patch(payload=patch, policy=EXPENSE_POLICY, partial=False)
        self._check_expense_patch(data, current=None)
        if data.get("metadata") is None:
            data.pop("metadata", None)
        actor_id, actor_name = self._actor(admin_id, admin_name)
        expense = Expense(id=new_id(Expense.ID_PREFIX), created_by=actor_id, **data)
        self._expenses[expense.id] = expense

        self.log_activity(
            action="create_expense",
            target_type=TARGET_EXPENSE,
            target_id=expense.id,
            description=f"Recorded {expense.category} expense of {expense.amount:,} VND: {expense.description}",
            admin_id=actor_id,
            admin_name=actor_name,
        )
        self._emit(events.EXPENSE_CREATED, expense.to_dict())
        self._changed()
        return expense.copy()

    @synchronized
    def update_expense(self, expense_id: str, patch: dict, *, admin_id: str | None = None, admin_name: str | None = None) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        if expense is None:
            return None
        data = validate_patch(payload=patch, policy=EXPENSE_POLICY, partial=True)
        self._check_expense_patch(data, current=expense)
        if "metadata" in data and data["metadata"] is None:
            data["metadata"] = {}

        changes = _apply_patch(expense, data)
        if changes:
            expense.updated_at = utcnow()
            self.log_activity(
                action="update_expense",
                target_type=TARGET_EXPENSE,
                target_id=expense.id,
                description=f"Updated expense {expense.description}: {', '.join(sorted(changes))}",
                admin_id=admin_id,
                admin_name=admin_name,
            )
        self._emit(events.EXPENSE_UPDATED, expense.to_dict())
        self._changed()
        return expense.copy()

    @synchronized
    def delete_expense(self, expense_id: str, *, admin_id: str | None = None, admin_name: str | None = None) -> bool:
        expense = self._expenses.pop(expense_id, None)
        if expense is None:
            return False
        self.log_activity(
            action="delete_expense",
            target_type=TARGET_EXPENSE,
            target_id=expense_id,
            description=f"Deleted expense: {expense.description}",
            admin_id=admin_id,
            admin_name=admin_name,
        )
        self._emit(events.EXPENSE_DELETED, {"expense_id": expense_id})
        self._changed()
        return True

    @synchronized
    def get_expenses(self, category: str | None = None, start=None, end=None) -> list[Expense]:
        """Expenses filtered by category and inclusive date window, newest first."""
        start_dt, end_dt = _window(start, end)
        items = [
            e for e in self._expenses.values()
            if (category is None or e.category == category)
            and in_window(e.date, start_dt, end_dt)
        ]
        items.sort(key=lambda e: e.date, reverse=True)
        return [e.copy() for e in items]

    @synchronized
    def get_expense(self, expense_id: str) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.copy() if expense else None

    # ------------------------------------------------------------------
    # Profit alerts
    # ------------------------------------------------------------------

    @synchronized
    def record_profit_alerts(self, alerts: Iterable) -> list[ProfitAlert]:
        added: list[ProfitAlert] = []
        for alert in alerts:
            if isinstance(alert, dict):
                alert = ProfitAlert.from_dict({"id": new_id(ProfitAlert.ID_PREFIX), **alert})
            require_choice(alert.type, "alert type", ALERT_TYPES)
            require_choice(alert.severity, "alert severity", ALERT_SEVERITIES)
            alert = alert.copy()
            self._alerts[alert.id] = alert
            added.append(alert)
        if added:
            self._emit(events.PROFIT_ALERTS_UPDATED, {
                "added": [a.id for a in added],
                "total": len(self._alerts),
            })
            self._changed()
        return [a.copy() for a in added]

    @synchronized
    def get_profit_alerts(self, unread_only: bool = False, include_resolved: bool = True) -> list[ProfitAlert]:
        items = [
            a for a in self._alerts.values()
            if (not unread_only or not a.is_read) and (include_resolved or not a.is_resolved)
        ]
        items.sort(key=lambda a: a.created_at, reverse=True)
        return [a.copy() for a in items]

    def _flag_alert(self, alert_id: str, **flags) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        for name, value in flags.items():
            setattr(alert, name, value)
        self._emit(events.PROFIT_ALERTS_UPDATED, {"alert_id": alert_id, **flags})
        self._changed()
        return True

    @synchronized
    def mark_alert_read(self, alert_id: str) -> bool:
        return self._flag_alert(alert_id, is_read=True)

    @synchronized
    def resolve_alert(self, alert_id: str) -> bool:
        return self._flag_alert(alert_id, is_read=True, is_resolved=True)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _tables(self) -> dict[str, list]:
        return {
            "users": list(self._users.values()),
            "products": list(self._products.values()),
            "transactions": list(self._transactions.values()),
            "topups": list(self._topups.values()),
            "activities": list(self._activities),
            "orders": list(self._orders.values()),
            "categories": list(self._categories.values()),
            "expenses": list(self._expenses.values()),
            "profit_alerts": list(self._alerts.values()),
        }

    @synchronized
    def stats(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self._tables().items()}

    @synchronized
    def _encode_all(self):
        return [encode_collection(name, rows) for name, rows in self._tables().items()]

    def persist_all(self) -> None:
        """
        Encode every collection under the lock, then write outside it.

        Raises whatever the backend raises; the scheduler logs and retries.
        """
        documents = self._encode_all()
        self.backend.write_many(documents)

    def flush_now(self) -> bool:
        # Not synchronized: the scheduler takes its write lock before the
        # store lock, never the other way round.
        return self.scheduler.flush_now()

    def shutdown(self) -> bool:
        return self.scheduler.shutdown()

    def load(self) -> dict[str, Any]:
        """
        Restore every collection from the backend.

        A missing document is an empty collection; an unreadable one is
        logged and skipped. The catalog is seeded (and saved at once) when
        no products were loaded and seeding is enabled.
        """
        summary = self._load_locked()
        if summary["seeded"]:
            self.scheduler.request()
            self.flush_now()
        elif summary["repaired"]:
            self.scheduler.request()
        return summary

    @synchronized
    def _load_locked(self) -> dict[str, Any]:
        loaded: dict[str, int] = {}
        skipped: list[str] = []
        for name in COLLECTIONS:
            try:
                body = self.backend.read(name)
            except Exception:
                logger.exception("Could not read snapshot document %s; skipping", name)
                skipped.append(name)
                continue
            if body is None:
                continue
            try:
                records = decode_collection(name, body)
            except SnapshotDecodeError as exc:
                logger.error("Malformed snapshot document %s skipped: %s", name, exc)
                skipped.append(name)
                continue
            self._install(name, records)
            loaded[name] = len(records)

        repaired = self._ensure_uncategorized()
        repaired = self._repair_category_refs() or repaired
        seeded = False
        if not self._products and self.seed_catalog:
            self._seed_catalog()
            seeded = True
        logger.info(
            "Store loaded: %s (skipped: %s, seeded: %s)",
            ", ".join(f"{k}={v}" for k, v in loaded.items()) or "nothing",
            ", ".join(skipped) or "none",
            seeded,
        )
        return {"loaded": loaded, "skipped": skipped, "seeded": seeded, "repaired": repaired}

    def _install(self, name: str, records: list) -> None:
        if name == "activities":
            records.sort(key=lambda a: a.created_at, reverse=True)
            self._activities = records[: self.activity_limit]
            return
        table = {
            "users": self._users,
            "products": self._products,
            "transactions": self._transactions,
            "topups": self._topups,
            "orders": self._orders,
            "categories": self._categories,
            "expenses": self._expenses,
            "profit_alerts": self._alerts,
        }[name]
        table.clear()
        for record in records:
            table[record.id] = record

    def _repair_category_refs(self) -> bool:
        repaired = False
        for product in self._products.values():
            if self._find_category_by_slug(product.category) is None:
                logger.warning(
                    "Product %s references missing category %r; moved to %s",
                    product.id, product.category, UNCATEGORIZED_SLUG,
                )
                product.category = UNCATEGORIZED_SLUG
                repaired = True
        return repaired

    def _seed_catalog(self) -> None:
        for position, seed in enumerate(SEED_CATEGORIES):
            if self._find_category_by_slug(seed["slug"]) is None:
                category = Category(id=new_id(Category.ID_PREFIX), sort_order=position, **seed)
                self._categories[category.id] = category
        for seed in SEED_PRODUCTS:
            data = {k: v for k, v in seed.items() if k != "id"}
            data.setdefault("stock", SEED_DEFAULT_STOCK)
            self._check_product_patch(data)
            product = Product(id=seed["id"], **data)
            self._products[product.id] = product
        self.log_activity(
            action="seed_catalog",
            target_type=TARGET_SYSTEM,
            description=f"Seeded {len(SEED_PRODUCTS)} catalog products",
        )
        logger.info("Seeded catalog with %d products", len(SEED_PRODUCTS))
