"""MetricSync — Metric and Trend API Routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from metricsync.api.dependencies import get_service, http_error, not_found
from metricsync.core.errors import MetricSyncError
from metricsync.core.metric_registry import KPI_METRICS, MetricName, ProviderType
from metricsync.models.records import MetricStatus
from metricsync.services.kpi_service import KPIService

router = APIRouter(tags=["Metrics"])


# ── Request Models ──


class CreateMetricRequest(BaseModel):
    """Request body for POST /metrics."""

    user_id: str
    metric_name: MetricName
    source: ProviderType = ProviderType.MANUAL
    value: float
    timestamp: Optional[datetime] = None


class UpdateMetricRequest(BaseModel):
    """Request body for PATCH /metrics/{id}. Only status fields are editable."""

    status: Optional[MetricStatus] = None
    error_message: Optional[str] = None


class OverrideRequest(BaseModel):
    value: float


# ── Endpoints ──


@router.get("/metrics/catalog")
async def metric_catalog():
    """Every metric the engine understands."""
    return {
        "status": "success",
        "metrics": [
            {
                "name": m.name.value,
                "label": m.label,
                "unit": m.unit,
                "type": m.metric_type.value,
                "description": m.description,
                "is_core": m.is_core,
                "goal": m.goal,
            }
            for m in KPI_METRICS.values()
        ],
    }


@router.post("/metrics", status_code=201)
async def create_metric(request: CreateMetricRequest, service: KPIService = Depends(get_service)):
    try:
        record = await service.create_metric(
            request.user_id,
            request.metric_name,
            request.source,
            request.value,
            timestamp=request.timestamp,
        )
    except MetricSyncError as e:
        raise http_error(e)
    return {"status": "success", "metric": record.model_dump(mode="json")}


@router.get("/metrics")
async def list_metrics(
    user_id: str = Query(..., min_length=1),
    seed: bool = Query(False, description="Seed sample data when the user has none"),
    service: KPIService = Depends(get_service),
):
    """All metric records for a user, oldest first."""
    seeded = 0
    if seed:
        seeded = await service.seed_sample_data(user_id)
    records = await service.get_metrics_by_user(user_id)
    return {
        "status": "success",
        "count": len(records),
        "seeded": seeded,
        "metrics": [r.model_dump(mode="json") | {"effective_value": r.effective_value} for r in records],
    }


@router.get("/metrics/{metric_id}")
async def get_metric(metric_id: str, service: KPIService = Depends(get_service)):
    record = await service.get_metric(metric_id)
    if record is None:
        raise not_found("Metric", metric_id)
    return {"status": "success", "metric": record.model_dump(mode="json")}


@router.patch("/metrics/{metric_id}")
async def update_metric(
    metric_id: str, request: UpdateMetricRequest, service: KPIService = Depends(get_service)
):
    try:
        record = await service.update_metric(metric_id, request.model_dump(exclude_unset=True))
    except MetricSyncError as e:
        raise http_error(e)
    if record is None:
        raise not_found("Metric", metric_id)
    return {"status": "success", "metric": record.model_dump(mode="json")}


@router.delete("/metrics/{metric_id}")
async def delete_metric(metric_id: str, service: KPIService = Depends(get_service)):
    if not await service.delete_metric(metric_id):
        raise not_found("Metric", metric_id)
    return {"status": "success", "deleted": metric_id}


@router.post("/metrics/{metric_id}/override")
async def override_metric(
    metric_id: str, request: OverrideRequest, service: KPIService = Depends(get_service)
):
    """Pin a manual value on a record; trends use it instead of the synced value."""
    try:
        record = await service.override_metric(metric_id, request.value)
    except MetricSyncError as e:
        raise http_error(e)
    if record is None:
        raise not_found("Metric", metric_id)
    return {"status": "success", "metric": record.model_dump(mode="json")}


@router.delete("/metrics/{metric_id}/override")
async def clear_override(metric_id: str, service: KPIService = Depends(get_service)):
    record = await service.clear_override(metric_id)
    if record is None:
        raise not_found("Metric", metric_id)
    return {"status": "success", "metric": record.model_dump(mode="json")}


@router.get("/trends")
async def get_trend(
    user_id: str = Query(..., min_length=1),
    metric: str = Query(...),
    window_days: int = Query(30, ge=1, le=365),
    service: KPIService = Depends(get_service),
):
    """Trend series plus direction and latest percentage change."""
    try:
        summary = await service.get_trend_summary(user_id, metric, window_days)
    except MetricSyncError as e:
        raise http_error(e)
    return {"status": "success", "trend": summary.model_dump(mode="json")}
