"""MetricSync — Stored Record Models.

Every persisted collection (metrics, providers, sync jobs) holds one of
these, keyed by id. Records serialise to plain JSON via model_dump(mode="json").
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from metricsync.core.metric_registry import MetricName, ProviderType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class MetricStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    PENDING = "pending"
    DISABLED = "disabled"


class SyncFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


class SyncJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = {SyncJobStatus.COMPLETED, SyncJobStatus.FAILED}


class EncryptedCredentials(BaseModel):
    """Vault output. Hex-encoded; never holds plaintext."""

    ciphertext: str
    iv: str


class MetricRecord(BaseModel):
    """One measured KPI value.

    Identity fields are fixed at creation. Only the override fields, status,
    and (for the current record of a provider) value/timestamps change.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    metric_name: MetricName
    source: ProviderType
    value: float
    timestamp: datetime = Field(default_factory=utcnow)
    last_synced_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # Store-assigned write order; the highest revision per key is "current"
    revision: int = 0
    is_manual_override: bool = False
    override_value: Optional[float] = None
    override_timestamp: Optional[datetime] = None
    status: MetricStatus = MetricStatus.ACTIVE
    error_message: Optional[str] = None

    @field_validator("timestamp", "last_synced_at", "updated_at", "override_timestamp")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def effective_value(self) -> float:
        """The overridden value when a manual override is set."""
        if self.is_manual_override and self.override_value is not None:
            return self.override_value
        return self.value


class ProviderConfig(BaseModel):
    """A connected data source for one user."""

    id: str = Field(default_factory=new_id)
    user_id: str
    source: ProviderType
    is_active: bool = True
    credentials: EncryptedCredentials
    sync_frequency: SyncFrequency = SyncFrequency.DAILY
    last_sync_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def public_dict(self) -> dict:
        """Serialised view without the credential blob."""
        return self.model_dump(mode="json", exclude={"credentials"})


class SyncJob(BaseModel):
    """Audit record of one sync attempt. Immutable once terminal."""

    id: str = Field(default_factory=new_id)
    user_id: str
    source_id: str
    status: SyncJobStatus = SyncJobStatus.PENDING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metrics_synced: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


# Fields a caller may change on a stored metric
METRIC_MUTABLE_FIELDS = {
    "value",
    "timestamp",
    "last_synced_at",
    "is_manual_override",
    "override_value",
    "override_timestamp",
    "status",
    "error_message",
}

# Fields a caller may change on a provider config
PROVIDER_MUTABLE_FIELDS = {
    "is_active",
    "credentials",
    "sync_frequency",
    "last_sync_at",
}
