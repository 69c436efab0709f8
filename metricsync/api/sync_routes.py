"""MetricSync — Sync API Routes."""

from fastapi import APIRouter, Depends, Query

from metricsync.api.dependencies import get_service, http_error
from metricsync.core.errors import MetricSyncError
from metricsync.services.kpi_service import KPIService

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("/schedule")
async def run_schedule(service: KPIService = Depends(get_service)):
    """Run one scheduling pass now: sync every active provider that is due."""
    try:
        outcomes = await service.schedule_sync_jobs()
    except MetricSyncError as e:
        raise http_error(e)
    return {
        "status": "success",
        "synced": len(outcomes),
        "failed": sum(1 for o in outcomes if not o.success),
        "outcomes": [o.model_dump(mode="json") for o in outcomes],
    }


@router.get("/jobs")
async def list_sync_jobs(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    service: KPIService = Depends(get_service),
):
    """Sync history for a user, newest first."""
    jobs = await service.get_sync_jobs(user_id, limit=limit)
    return {
        "status": "success",
        "count": len(jobs),
        "jobs": [j.model_dump(mode="json") for j in jobs],
    }


@router.get("/status")
async def sync_status(
    user_id: str = Query(..., min_length=1), service: KPIService = Depends(get_service)
):
    summary = await service.get_sync_status(user_id)
    return {"status": "success", "summary": summary.model_dump()}


@router.post("/{provider_id}")
async def sync_provider(provider_id: str, service: KPIService = Depends(get_service)):
    """Synchronise one data source now.

    A provider that cannot be reached returns ``success: false`` with 200;
    unknown providers and bad credentials are 404 / 400.
    """
    try:
        outcome = await service.sync_data_source(provider_id, raise_on_fatal=True)
    except MetricSyncError as e:
        raise http_error(e)
    return {
        "status": "success" if outcome.success else "error",
        **outcome.model_dump(mode="json"),
    }
