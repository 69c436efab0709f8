"""MetricSync — Adapter Output Models."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from metricsync.core.metric_registry import MetricName


class HistoricalDataPoint(BaseModel):
    """A dated value produced by an adapter; becomes a MetricRecord on persistence."""

    metric: MetricName
    value: float
    date: datetime


class IntegrationResult(BaseModel):
    """What every ProviderAdapter.sync() returns.

    A value of 0 in ``data`` means "not reported by this provider".
    """

    success: bool
    data: Dict[MetricName, float] = Field(default_factory=dict)
    historical_data: List[HistoricalDataPoint] = Field(default_factory=list)
    error: Optional[str] = None
    metrics_synced: int = 0

    @classmethod
    def ok(
        cls,
        data: Dict[MetricName, float],
        historical_data: Optional[List[HistoricalDataPoint]] = None,
    ) -> "IntegrationResult":
        """Successful result with metrics_synced derived from the positive entries."""
        return cls(
            success=True,
            data=data,
            historical_data=historical_data or [],
            metrics_synced=count_reported(data),
        )

    @classmethod
    def failed(cls, error: str) -> "IntegrationResult":
        return cls(success=False, error=error, metrics_synced=0)


class SyncOutcome(BaseModel):
    """What sync_data_source hands back to the caller."""

    success: bool
    metrics_synced: int = 0
    error: Optional[str] = None
    job_id: Optional[str] = None
    historical_points: int = 0


def count_reported(data: Dict[MetricName, float]) -> int:
    """Number of metrics the provider actually reported (value > 0)."""
    return sum(1 for v in data.values() if v > 0)
