# Overview: JSON encoding of entity collections, with timestamp revival on read.

from __future__ import annotations

import json
import logging
from dataclasses import is_dataclass
from datetime import datetime
from typing import Iterable, NamedTuple

from ..models import (
    ActivityLog,
    Category,
    Expense,
    Order,
    Product,
    ProfitAlert,
    TopupRequest,
    Transaction,
    User,
)
from ..time_utils import ISO_DATETIME_RE, parse_iso_datetime, to_utc_z


logger = logging.getLogger(__name__)


# Durable document name -> record class, in write order
COLLECTIONS = {
    "users": User,
    "products": Product,
    "transactions": Transaction,
    "topups": TopupRequest,
    "activities": ActivityLog,
    "orders": Order,
    "categories": Category,
    "expenses": Expense,
    "profit_alerts": ProfitAlert,
}


class SnapshotDecodeError(ValueError):
    """A stored document is not a JSON array of records."""


class EncodedDocument(NamedTuple):
    name: str
    body: str
    record_count: int


def _json_default(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_collection(name: str, records: Iterable) -> EncodedDocument:
    rows = [r.to_dict() if is_dataclass(r) else r for r in records]
    body = json.dumps(rows, default=_json_default, ensure_ascii=False)
    return EncodedDocument(name=name, body=body, record_count=len(rows))


def _revive(record_cls, raw: dict) -> dict:
    """
    Parse timestamp strings back into datetimes for the fields record_cls
    declares, descending into nested records.
    """
    if not isinstance(raw, dict):
        raise SnapshotDecodeError(f"{record_cls.__name__} record must be an object")
    out = dict(raw)
    for name in record_cls.DATETIME_FIELDS:
        value = out.get(name)
        if isinstance(value, str):
            if not ISO_DATETIME_RE.match(value):
                raise SnapshotDecodeError(f"{record_cls.__name__}.{name} is not a timestamp: {value!r}")
            out[name] = parse_iso_datetime(value)
    for name, (nested_cls, many) in record_cls.NESTED.items():
        value = out.get(name)
        if value is None:
            continue
        if many:
            out[name] = [_revive(nested_cls, item) for item in value]
        else:
            out[name] = _revive(nested_cls, value)
    return out


def decode_collection(name: str, body: str) -> list:
    """
    Decode one stored document into records.

    Raises SnapshotDecodeError when the document itself is unusable. A single
    bad record is logged and dropped; its siblings still load.
    """
    record_cls = COLLECTIONS.get(name)
    if record_cls is None:
        raise SnapshotDecodeError(f"Unknown collection: {name}")
    try:
        rows = json.loads(body)
    except json.JSONDecodeError as exc:
        raise SnapshotDecodeError(f"{name}: invalid JSON ({exc})") from exc
    if not isinstance(rows, list):
        raise SnapshotDecodeError(f"{name}: expected a JSON array")

    records = []
    for index, raw in enumerate(rows):
        try:
            records.append(record_cls.from_dict(_revive(record_cls, raw)))
        except (SnapshotDecodeError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed %s record #%d: %s", name, index, exc)
    return records
