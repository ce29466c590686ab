# Overview: Durable homes for snapshot documents (memory, JSON files, SQL rows).

from __future__ import annotations

import logging
import os
import tempfile
from typing import Iterable, Optional

from ..extensions import db
from ..models.snapshots import SnapshotDocument
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .snapshot_codec import EncodedDocument


logger = logging.getLogger(__name__)


class MemorySnapshotBackend:
    """Keeps documents in a dict. Nothing survives the process."""

    name = "memory"

    def __init__(self, documents: Optional[dict[str, str]] = None):
        self.documents: dict[str, str] = dict(documents or {})
        self.write_count = 0

    def read(self, name: str) -> Optional[str]:
        return self.documents.get(name)

    def write_many(self, documents: Iterable[EncodedDocument]) -> None:
        for doc in documents:
            self.documents[doc.name] = doc.body
        self.write_count += 1


class FileSnapshotBackend:
    """One `<name>.json` file per collection under data_dir."""

    name = "file"

    def __init__(self, data_dir: str):
        self.data_dir = os.path.abspath(data_dir)

    def path_for(self, name: str) -> str:
        return os.path.join(self.data_dir, f"{name}.json")

    def read(self, name: str) -> Optional[str]:
        path = self.path_for(name)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()

    def _write_one(self, doc: EncodedDocument) -> None:
        # Write beside the target then rename, so readers never see a torn file
        fd, tmp_path = tempfile.mkstemp(prefix=f".{doc.name}.", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(doc.body)
            os.replace(tmp_path, self.path_for(doc.name))
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def write_many(self, documents: Iterable[EncodedDocument]) -> None:
        documents = list(documents)

        def _op():
            os.makedirs(self.data_dir, exist_ok=True)
            for doc in documents:
                self._write_one(doc)

        run_with_retry(_op)


class SqlSnapshotBackend:
    """
    One snapshot_documents row per collection, written through
    Flask-SQLAlchemy.

    Timer threads have no application context, so every call pushes one.
    """

    name = "sql"

    def __init__(self, app):
        self.app = app
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            db.create_all()
            self._schema_ready = True

    def read(self, name: str) -> Optional[str]:
        with self.app.app_context():
            self._ensure_schema()
            row = db.session.get(SnapshotDocument, name)
            return row.body if row is not None else None

    def write_many(self, documents: Iterable[EncodedDocument]) -> None:
        documents = list(documents)

        def _op():
            now = utcnow()
            for doc in documents:
                row = db.session.get(SnapshotDocument, doc.name)
                if row is None:
                    row = SnapshotDocument(name=doc.name)
                    db.session.add(row)
                row.body = doc.body
                row.record_count = doc.record_count
                row.updated_at = now
            db.session.commit()

        with self.app.app_context():
            self._ensure_schema()
            run_with_retry(_op, on_retry=db.session.rollback)

    def list_documents(self) -> list[dict]:
        with self.app.app_context():
            self._ensure_schema()
            rows = db.session.query(SnapshotDocument).order_by(SnapshotDocument.name).all()
            return [row.to_dict() for row in rows]


def build_backend(app):
    """Backend named by SNAPSHOT_BACKEND in the app config."""
    kind = (app.config.get("SNAPSHOT_BACKEND") or "file").lower()
    if kind == "memory":
        return MemorySnapshotBackend()
    if kind == "file":
        return FileSnapshotBackend(app.config["DATA_DIR"])
    if kind == "sql":
        return SqlSnapshotBackend(app)
    raise ValueError(f"Unknown SNAPSHOT_BACKEND '{kind}'. Must be one of: file, memory, sql")
