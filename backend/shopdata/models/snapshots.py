from __future__ import annotations

from ..extensions import db
from shopdata.time_utils import to_utc_z


class SnapshotDocument(db.Model):
    """
    One durable snapshot document per entity collection.

    The body is the codec's JSON text; rows are replaced wholesale on every
    flush, never patched.
    """
    __tablename__ = "snapshot_documents"

    name = db.Column(db.String(64), primary_key=True)
    body = db.Column(db.Text, nullable=False)
    record_count = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "record_count": self.record_count,
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
