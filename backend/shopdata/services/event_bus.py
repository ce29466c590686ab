# Overview: In-process publish/subscribe for store change notifications.

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..time_utils import utcnow, to_utc_z


logger = logging.getLogger(__name__)


USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
USER_BALANCE_CHANGED = "USER_BALANCE_CHANGED"
PRODUCT_CREATED = "PRODUCT_CREATED"
PRODUCT_UPDATED = "PRODUCT_UPDATED"
PRODUCT_DELETED = "PRODUCT_DELETED"
PRODUCT_RESTORED = "PRODUCT_RESTORED"
TRANSACTION_CREATED = "TRANSACTION_CREATED"
TOPUP_REQUEST_CREATED = "TOPUP_REQUEST_CREATED"
TOPUP_REQUEST_UPDATED = "TOPUP_REQUEST_UPDATED"
TOPUP_REQUEST_PROCESSED = "TOPUP_REQUEST_PROCESSED"
ORDER_CREATED = "ORDER_CREATED"
ORDER_UPDATED = "ORDER_UPDATED"
CATEGORY_CREATED = "CATEGORY_CREATED"
CATEGORY_UPDATED = "CATEGORY_UPDATED"
CATEGORY_DELETED = "CATEGORY_DELETED"
EXPENSE_CREATED = "EXPENSE_CREATED"
EXPENSE_UPDATED = "EXPENSE_UPDATED"
EXPENSE_DELETED = "EXPENSE_DELETED"
PROFIT_ALERTS_UPDATED = "PROFIT_ALERTS_UPDATED"

EVENT_TYPES = {
    USER_CREATED, USER_UPDATED, USER_BALANCE_CHANGED,
    PRODUCT_CREATED, PRODUCT_UPDATED, PRODUCT_DELETED, PRODUCT_RESTORED,
    TRANSACTION_CREATED,
    TOPUP_REQUEST_CREATED, TOPUP_REQUEST_UPDATED, TOPUP_REQUEST_PROCESSED,
    ORDER_CREATED, ORDER_UPDATED,
    CATEGORY_CREATED, CATEGORY_UPDATED, CATEGORY_DELETED,
    EXPENSE_CREATED, EXPENSE_UPDATED, EXPENSE_DELETED,
    PROFIT_ALERTS_UPDATED,
}


@dataclass(frozen=True)
class StoreEvent:
    type: str
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """JSON-ready form handed to transport collaborators."""
        return {
            "type": self.type,
            "payload": _jsonable(self.payload),
            "emitted_at": to_utc_z(self.emitted_at),
        }


def _jsonable(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


Listener = Callable[[StoreEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe; unsubscribe() is idempotent."""

    def __init__(self, bus: "EventBus", listener: Listener):
        self._bus = bus
        self._listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self._listener)


class EventBus:
    """
    Synchronous event fan-out.

    Listeners run in registration order on the emitting thread. A listener
    that raises is logged and skipped; delivery continues with the next one.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Subscription:
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, event_type: str, payload: dict[str, Any]) -> StoreEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        event = StoreEvent(type=event_type, payload=payload)
        # Snapshot so listeners may (un)subscribe while being notified
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Store event listener failed for %s", event_type)
        return event
