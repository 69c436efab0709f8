"""MetricSync — Provider (Data Source) API Routes.

Responses never carry credentials, not even the encrypted blob.
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from metricsync.api.dependencies import get_service, http_error, not_found
from metricsync.core.errors import MetricSyncError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import PROVIDERS
from metricsync.models.records import SyncFrequency
from metricsync.services.kpi_service import KPIService

logger = get_logger("api.providers")

router = APIRouter(prefix="/providers", tags=["Providers"])


# ── Request Models ──


class CreateProviderRequest(BaseModel):
    """Request body for POST /providers."""

    user_id: str
    source: str
    credentials: Union[str, Dict[str, Any]]
    """Plaintext credential payload; JSON object or a bare API key."""
    sync_frequency: SyncFrequency = SyncFrequency.DAILY

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-1",
                    "source": "Stripe",
                    "credentials": {"apiKey": "sk_test_..."},
                    "sync_frequency": "daily",
                }
            ]
        }
    }


class CsvUploadRequest(BaseModel):
    """Request body for POST /providers/csv."""

    user_id: str
    csv_data: str
    file_name: str
    source_name: Optional[str] = None


class UpdateProviderRequest(BaseModel):
    is_active: Optional[bool] = None
    sync_frequency: Optional[SyncFrequency] = None
    credentials: Optional[Union[str, Dict[str, Any]]] = None


# ── Endpoints ──


@router.get("/catalog")
async def provider_catalog():
    return {
        "status": "success",
        "providers": [
            {
                "source": p.provider.value,
                "label": p.label,
                "description": p.description,
                "auth_type": p.auth_type,
            }
            for p in PROVIDERS.values()
        ],
    }


@router.post("", status_code=201)
async def create_provider(
    request: CreateProviderRequest, service: KPIService = Depends(get_service)
):
    """Connect a data source. Credentials are validated and encrypted before storage."""
    try:
        config = await service.create_provider(
            request.user_id, request.source, request.credentials, request.sync_frequency
        )
    except MetricSyncError as e:
        raise http_error(e)
    return {"status": "success", "provider": config.public_dict()}


@router.post("/csv", status_code=201)
async def upload_csv(request: CsvUploadRequest, service: KPIService = Depends(get_service)):
    """Store an uploaded CSV as a manually synced data source."""
    try:
        config = await service.create_csv_provider(
            request.user_id, request.csv_data, request.file_name, request.source_name
        )
    except MetricSyncError as e:
        raise http_error(e)
    return {"status": "success", "provider": config.public_dict()}


@router.get("")
async def list_providers(
    user_id: str = Query(..., min_length=1), service: KPIService = Depends(get_service)
):
    configs = await service.get_providers_by_user(user_id)
    return {
        "status": "success",
        "count": len(configs),
        "providers": [c.public_dict() for c in configs],
    }


@router.get("/{provider_id}")
async def get_provider(provider_id: str, service: KPIService = Depends(get_service)):
    config = await service.get_provider(provider_id)
    if config is None:
        raise not_found("Data source", provider_id)
    return {"status": "success", "provider": config.public_dict()}


@router.patch("/{provider_id}")
async def update_provider(
    provider_id: str, request: UpdateProviderRequest, service: KPIService = Depends(get_service)
):
    try:
        config = await service.update_provider(provider_id, request.model_dump(exclude_unset=True))
    except MetricSyncError as e:
        raise http_error(e)
    if config is None:
        raise not_found("Data source", provider_id)
    return {"status": "success", "provider": config.public_dict()}


@router.delete("/{provider_id}")
async def delete_provider(provider_id: str, service: KPIService = Depends(get_service)):
    try:
        deleted = await service.delete_provider(provider_id)
    except MetricSyncError as e:
        raise http_error(e)
    if not deleted:
        raise not_found("Data source", provider_id)
    logger.info("Data source disconnected", extra={"provider_id": provider_id})
    return {"status": "success", "deleted": provider_id}
