"""MetricSync — Trend Output Models."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel

from metricsync.core.metric_registry import MetricName


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TrendPoint(BaseModel):
    """One point of a trend series."""

    value: float
    timestamp: datetime


class TrendSummary(BaseModel):
    """A trend series with its direction and latest change."""

    metric_name: MetricName
    window_days: int
    series: List[TrendPoint] = []
    trend: TrendDirection = TrendDirection.STABLE
    percentage_change: float = 0.0
    """(latest − previous) / previous × 100 over the last two points."""
    source_class: str = "none"
    """"authoritative", "manual", or "none" when the series is empty."""
