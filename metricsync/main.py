"""MetricSync — FastAPI Application Entry Point.

Multi-provider KPI ingestion and sync engine.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from metricsync.api.metric_routes import router as metric_router
from metricsync.api.provider_routes import router as provider_router
from metricsync.api.sync_routes import router as sync_router
from metricsync.config import settings
from metricsync.core.logging import get_logger
from metricsync.core.vault import CredentialVault
from metricsync.scheduler.jobs import start_scheduler, stop_scheduler
from metricsync.services.kpi_service import KPIService
from metricsync.storage.backends import build_storage
from metricsync.storage.metric_store import MetricStore

logger = get_logger("main")

VERSION = "1.0.0"

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 MetricSync starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    vault = CredentialVault()
    store = MetricStore(build_storage())
    await store.start()
    service = KPIService(store, vault)
    app.state.kpi_service = service
    if not IS_SERVERLESS:
        start_scheduler(service.orchestrator)
    try:
        yield
    finally:
        if not IS_SERVERLESS:
            stop_scheduler()
        await store.close()
        logger.info("MetricSync shut down")


app = FastAPI(
    title="MetricSync",
    description="Pull startup KPIs from billing, spreadsheet, analytics and task providers, reconcile them into one metric store, and serve trends.",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(metric_router)
app.include_router(provider_router)
app.include_router(sync_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "metricsync",
        "version": VERSION,
        "storage": settings.storage_backend,
    }
