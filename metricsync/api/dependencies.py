"""MetricSync — Route Dependencies and Error Mapping."""

from fastapi import HTTPException, Request

from metricsync.core.errors import (
    DecryptionError,
    MetricSyncError,
    ParseError,
    PersistenceError,
    ProviderNotFoundError,
    UnsupportedProviderError,
    ValidationError,
)
from metricsync.core.logging import get_logger
from metricsync.services.kpi_service import KPIService

logger = get_logger("api")

CLIENT_ERRORS = (ValidationError, UnsupportedProviderError, ParseError, DecryptionError)


def get_service(request: Request) -> KPIService:
    """The service instance built during application startup."""
    return request.app.state.kpi_service


def http_error(e: MetricSyncError) -> HTTPException:
    """Translate an engine error into the matching HTTP status."""
    if isinstance(e, ProviderNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, CLIENT_ERRORS):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PersistenceError):
        logger.error(f"Persistence failure: {e}")
        return HTTPException(status_code=500, detail=f"Storage failure: {e}")
    logger.error(f"Unhandled engine error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def not_found(kind: str, record_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} not found: {record_id}")
