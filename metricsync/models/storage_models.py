"""MetricSync — SQL Snapshot Rows.

Used only by the "sql" storage backend. Each row is one record of one
collection, serialised as JSON; the metric store owns the schema of the
payload.
"""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class StoredRecord(SQLModel, table=True):
    """One record of a durable collection."""

    __tablename__ = "stored_records"

    collection: str = Field(primary_key=True, description="metrics | providers | sync_jobs")
    record_id: str = Field(primary_key=True)
    payload_json: str = Field(description="Full record as JSON")
    written_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
