"""MetricSync — Durable Storage Backends.

A storage port persists whole collections: each collection is a map from
record id to a JSON-compatible dict. The metric store decides when to load
and save; backends only move snapshots.
"""

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from metricsync.config import settings
from metricsync.core.errors import PersistenceError, ValidationError
from metricsync.core.logging import get_logger
from metricsync.models.storage_models import StoredRecord

logger = get_logger("storage.backends")

Snapshot = Dict[str, Dict[str, Any]]


class StoragePort(ABC):
    """Abstract durable store of id → record collections."""

    name: str = "abstract"

    @abstractmethod
    def load(self, collection: str) -> Snapshot:
        """Return the full durable snapshot of a collection (empty if none)."""
        ...

    @abstractmethod
    def save(self, collection: str, records: Snapshot) -> None:
        """Replace the durable snapshot of a collection. Raises PersistenceError."""
        ...

    def close(self) -> None:
        return None


class MemoryStorage(StoragePort):
    """Process-local fake; stores deep copies so callers cannot alias it."""

    name = "memory"

    def __init__(self) -> None:
        self.collections: Dict[str, Snapshot] = {}

    def load(self, collection: str) -> Snapshot:
        return copy.deepcopy(self.collections.get(collection, {}))

    def save(self, collection: str, records: Snapshot) -> None:
        self.collections[collection] = copy.deepcopy(records)


class JsonFileStorage(StoragePort):
    """One JSON file per collection under a data directory."""

    name = "json"

    def __init__(self, data_dir: str | os.PathLike) -> None:
        self.data_dir = Path(data_dir)

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def load(self, collection: str) -> Snapshot:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{path} does not hold an id → record map")
        return data

    def save(self, collection: str, records: Snapshot) -> None:
        path = self._path(collection)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so readers never see a half-written file
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{collection}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2, default=str)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e


class SqlStorage(StoragePort):
    """Collections as rows of the stored_records table."""

    name = "sql"

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def load(self, collection: str) -> Snapshot:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(StoredRecord).where(StoredRecord.collection == collection)
                ).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load {collection}: {e}") from e
        return {row.record_id: json.loads(row.payload_json) for row in rows}

    def save(self, collection: str, records: Snapshot) -> None:
        try:
            with Session(self.engine) as session:
                existing = session.exec(
                    select(StoredRecord).where(StoredRecord.collection == collection)
                ).all()
                for row in existing:
                    session.delete(row)
                session.flush()
                for record_id, payload in records.items():
                    session.add(
                        StoredRecord(
                            collection=collection,
                            record_id=record_id,
                            payload_json=json.dumps(payload, default=str),
                        )
                    )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save {collection}: {e}") from e

    def close(self) -> None:
        self.engine.dispose()


def build_storage(backend: Optional[str] = None) -> StoragePort:
    """Construct the configured storage backend."""
    backend = (backend or settings.storage_backend).lower()
    logger.info(f"Storage backend: {backend}")
    if backend == "json":
        return JsonFileStorage(settings.effective_data_dir)
    if backend == "memory":
        return MemoryStorage()
    if backend == "sql":
        from metricsync.database import build_engine, init_db, test_connection

        engine = build_engine()
        if not test_connection(engine):
            raise PersistenceError("Database is unreachable, cannot start SQL storage")
        init_db(engine)
        return SqlStorage(engine)
    raise ValidationError(f"Unknown storage backend: {backend}")
