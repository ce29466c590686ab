from __future__ import annotations

import copy
import dataclasses
import uuid
from typing import Any, ClassVar


def new_id(prefix: str) -> str:
    """Generated record key, e.g. 'user-3f2a...'."""
    return f"{prefix}-{uuid.uuid4().hex}"


class RecordMixin:
    """
    Shared behaviour for the in-memory record dataclasses.

    DATETIME_FIELDS names the fields the snapshot codec revives from text;
    NESTED maps a field to (record class, is_list) for nested records.
    """
    ID_PREFIX: ClassVar[str] = "rec"
    DATETIME_FIELDS: ClassVar[frozenset[str]] = frozenset({"created_at", "updated_at"})
    NESTED: ClassVar[dict[str, tuple[type, bool]]] = {}

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    def copy(self):
        return copy.deepcopy(self)

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in dataclasses.fields(cls)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        known = cls.field_names()
        kwargs = {k: v for k, v in data.items() if k in known}
        for name, (nested_cls, many) in cls.NESTED.items():
            raw = kwargs.get(name)
            if raw is None:
                continue
            if many:
                kwargs[name] = [
                    item if isinstance(item, nested_cls) else nested_cls.from_dict(item)
                    for item in raw
                ]
            elif not isinstance(raw, nested_cls):
                kwargs[name] = nested_cls.from_dict(raw)
        return cls(**kwargs)
