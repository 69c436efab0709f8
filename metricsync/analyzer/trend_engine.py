"""MetricSync — Trend Engine.

Turns a user's stored records for one metric into a trend series:
  - records split into authoritative (synced) and manual (user-entered) sets
  - authoritative wins whenever it exists; the two are never interleaved
  - an authoritative set with nothing inside the window degrades to its
    single most recent point instead of an empty series

Direction compares the mean of the last 7 points with the 7 before them.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName, is_manual_provider
from metricsync.models.records import MetricRecord, utcnow
from metricsync.models.trend_models import TrendDirection, TrendPoint, TrendSummary
from metricsync.storage.metric_store import MetricStore

logger = get_logger("analyzer.trend")

DIRECTION_WINDOW = 7
DIRECTION_THRESHOLD_PCT = 5.0


def _to_points(records: Sequence[MetricRecord]) -> List[TrendPoint]:
    ordered = sorted(records, key=lambda r: r.timestamp)
    return [TrendPoint(value=r.effective_value, timestamp=r.timestamp) for r in ordered]


def select_series(
    records: Sequence[MetricRecord],
    window_days: int,
    now: Optional[datetime] = None,
) -> Tuple[List[TrendPoint], str]:
    """Pick the trend series from one metric's records. Returns (points, source class)."""
    now = now or utcnow()
    since = now - timedelta(days=window_days)

    authoritative = [r for r in records if not is_manual_provider(r.source)]
    manual = [r for r in records if is_manual_provider(r.source)]

    if authoritative:
        in_window = [r for r in authoritative if r.timestamp >= since]
        if in_window:
            return _to_points(in_window), "authoritative"
        latest = max(authoritative, key=lambda r: r.timestamp)
        return _to_points([latest]), "authoritative"

    if manual:
        return _to_points([r for r in manual if r.timestamp >= since]), "manual"

    return [], "none"


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def trend_direction(values: Sequence[float]) -> TrendDirection:
    """Mean of the most recent 7 values vs the preceding 7, ±5% bands."""
    recent = values[-DIRECTION_WINDOW:]
    previous = values[-2 * DIRECTION_WINDOW:-DIRECTION_WINDOW]
    if not recent or not previous:
        return TrendDirection.STABLE

    previous_mean = _mean(previous)
    if previous_mean == 0:
        return TrendDirection.STABLE
    change = (_mean(recent) - previous_mean) / abs(previous_mean) * 100

    if change > DIRECTION_THRESHOLD_PCT:
        return TrendDirection.UP
    if change < -DIRECTION_THRESHOLD_PCT:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def percentage_change(latest: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return round((latest - previous) / previous * 100, 2)


async def get_trends(
    store: MetricStore,
    user_id: str,
    metric_name: MetricName,
    window_days: int,
    now: Optional[datetime] = None,
) -> List[TrendPoint]:
    """Trend series for (user, metric) over the last ``window_days`` days."""
    records = await store.get_user_metric_series(user_id, metric_name)
    points, _ = select_series(records, window_days, now)
    return points


async def get_trend_summary(
    store: MetricStore,
    user_id: str,
    metric_name: MetricName,
    window_days: int,
    now: Optional[datetime] = None,
) -> TrendSummary:
    records = await store.get_user_metric_series(user_id, metric_name)
    points, source_class = select_series(records, window_days, now)
    values = [p.value for p in points]

    change = percentage_change(values[-1], values[-2]) if len(values) >= 2 else 0.0
    summary = TrendSummary(
        metric_name=metric_name,
        window_days=window_days,
        series=points,
        trend=trend_direction(values),
        percentage_change=change,
        source_class=source_class,
    )
    logger.info(
        f"Trend {metric_name.value}: {len(points)} points, {summary.trend.value}",
        extra={"user_id": user_id, "metric": metric_name.value},
    )
    return summary
