"""MetricSync — Sync Orchestrator.

Runs one synchronization end to end:
  load config → decrypt credentials → build adapter → test connection →
  fetch → reconcile into the metric store → stamp last_sync_at

Concurrent syncs of the same provider are sequenced: each run takes a
monotonically increasing token before any network I/O, and reconciliation
runs under a per-provider lock. A run whose token is older than one that
already reconciled appends its historical points but leaves current records
alone. No lock is held while an adapter is talking to its provider.
"""

import asyncio
import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

import httpx

from metricsync.config import settings
from metricsync.connectors.base import ProviderAdapter
from metricsync.connectors.factory import build_adapter
from metricsync.core.errors import (
    DecryptionError,
    MetricSyncError,
    PersistenceError,
    ProviderConnectionError,
    ProviderNotFoundError,
    UnsupportedProviderError,
    ValidationError,
)
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName
from metricsync.core.vault import CredentialVault
from metricsync.models.integration_models import IntegrationResult, SyncOutcome
from metricsync.models.records import (
    MetricRecord,
    MetricStatus,
    ProviderConfig,
    SyncFrequency,
    SyncJob,
    SyncJobStatus,
    utcnow,
)
from metricsync.storage.metric_store import MetricStore

logger = get_logger("sync.orchestrator")

FREQUENCY_HOURS: Dict[SyncFrequency, float] = {
    SyncFrequency.HOURLY: 1,
    SyncFrequency.DAILY: 24,
    SyncFrequency.WEEKLY: 168,
}

# Raised to the caller when raise_on_fatal is set; everything else becomes an outcome
FATAL_ERRORS = (ValidationError, DecryptionError, UnsupportedProviderError, ProviderNotFoundError)

AdapterFactory = Callable[..., ProviderAdapter]


def should_sync_now(config: ProviderConfig, now: Optional[datetime] = None) -> bool:
    """True when the provider has never synced or its frequency interval has elapsed."""
    if config.last_sync_at is None:
        return True
    threshold = FREQUENCY_HOURS.get(config.sync_frequency)
    if threshold is None:
        return False
    now = now or utcnow()
    hours_since = (now - config.last_sync_at).total_seconds() / 3600
    return hours_since >= threshold


class SyncOrchestrator:
    """Drives provider syncs against one metric store."""

    def __init__(
        self,
        store: MetricStore,
        vault: CredentialVault,
        adapter_factory: AdapterFactory = build_adapter,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.vault = vault
        self.adapter_factory = adapter_factory
        self.timeout = settings.sync_timeout_seconds if timeout is None else timeout
        self.http_client = http_client
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._issued: Dict[str, int] = defaultdict(int)
        self._reconciled: Dict[str, int] = defaultdict(int)

    # ── Single sync ──

    async def sync_data_source(self, provider_id: str, raise_on_fatal: bool = False) -> SyncOutcome:
        """Synchronise one provider and reconcile its output into the store."""
        if not provider_id:
            raise ValidationError("provider_id is required")

        config = await self.store.get_provider(provider_id)
        if config is None:
            error = ProviderNotFoundError(provider_id)
            if raise_on_fatal:
                raise error
            logger.error(str(error), extra={"provider_id": provider_id})
            return SyncOutcome(success=False, error=str(error))

        self._issued[provider_id] += 1
        token = self._issued[provider_id]
        job = await self.store.create_sync_job(
            SyncJob(user_id=config.user_id, source_id=provider_id, status=SyncJobStatus.RUNNING)
        )
        log_extra = {"provider_id": provider_id, "provider": config.source.value, "job_id": job.id}
        started = time.monotonic()
        logger.info(f"Starting {config.source.value} sync", extra=log_extra)

        try:
            result = await self._run_adapter(config)
            if not result.success:
                raise ProviderConnectionError(result.error or "Sync failed")

            async with self._locks[provider_id]:
                historical = await self.reconcile(config, result, stale=token < self._reconciled[provider_id])
                self._reconciled[provider_id] = max(self._reconciled[provider_id], token)

            await self.store.update_provider(provider_id, {"last_sync_at": utcnow()})
        except PersistenceError as e:
            await self._finish_job(job, SyncJobStatus.FAILED, error=str(e))
            logger.error(f"Sync persistence failure: {e}", extra=log_extra)
            raise
        except MetricSyncError as e:
            await self._finish_job(job, SyncJobStatus.FAILED, error=str(e))
            logger.error(
                f"{config.source.value} sync failed: {e}",
                extra={**log_extra, "duration_ms": _elapsed_ms(started)},
            )
            if raise_on_fatal and isinstance(e, FATAL_ERRORS):
                raise
            return SyncOutcome(success=False, error=str(e), job_id=job.id)
        except Exception as e:
            # Malformed provider payloads surface here as KeyError, TypeError and the like
            await self._finish_job(job, SyncJobStatus.FAILED, error=f"Unexpected error: {e}")
            logger.error(
                f"{config.source.value} sync crashed: {e!r}",
                extra={**log_extra, "duration_ms": _elapsed_ms(started)},
            )
            return SyncOutcome(success=False, error=f"Unexpected error: {e}", job_id=job.id)

        await self._finish_job(job, SyncJobStatus.COMPLETED, metrics_synced=result.metrics_synced)
        logger.info(
            f"{config.source.value} sync complete: {result.metrics_synced} metrics, "
            f"{historical} historical points",
            extra={**log_extra, "duration_ms": _elapsed_ms(started)},
        )
        return SyncOutcome(
            success=True,
            metrics_synced=result.metrics_synced,
            job_id=job.id,
            historical_points=historical,
        )

    async def _run_adapter(self, config: ProviderConfig) -> IntegrationResult:
        """Decrypt, build, test, fetch. Raises on any failure before reconciliation."""
        credentials = self.vault.decrypt_blob(config.credentials)
        adapter = self.adapter_factory(
            config.source, credentials, config.user_id, client=self.http_client
        )
        try:
            connected = await self._bounded(adapter.test_connection(), "connection test")
            if not connected:
                raise ProviderConnectionError(
                    f"Failed to connect to {config.source.value} data source"
                )
            return await self._bounded(adapter.sync(), "sync")
        finally:
            await adapter.close()

    async def _bounded(self, coro, what: str):
        if not self.timeout or self.timeout <= 0:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderConnectionError(
                f"Provider {what} timed out after {self.timeout:g}s"
            ) from None

    async def _finish_job(
        self,
        job: SyncJob,
        status: SyncJobStatus,
        error: Optional[str] = None,
        metrics_synced: int = 0,
    ) -> None:
        await self.store.update_sync_job(
            job.id,
            {
                "status": status,
                "completed_at": utcnow(),
                "error_message": error,
                "metrics_synced": metrics_synced,
            },
        )

    # ── Reconciliation ──

    async def reconcile(
        self, config: ProviderConfig, result: IntegrationResult, stale: bool = False
    ) -> int:
        """Merge an adapter result into the store. Returns historical points written.

        Historical points are always appended. Each positive value in ``data``
        updates the current record for (user, metric, provider) or creates it.
        Zero means "not reported" and never touches a current record.
        """
        now = utcnow()
        reported = {m: v for m, v in result.data.items() if v > 0}
        # Resolve current records before appending history so a fresh point is never mistaken for one
        currents: Dict[MetricName, Optional[MetricRecord]] = {
            metric: self.store.find_current_metric(config.user_id, metric, config.source)
            for metric in reported
        }

        for point in result.historical_data:
            await self.store.create_metric(
                config.user_id,
                point.metric,
                config.source,
                point.value,
                timestamp=point.date,
                last_synced_at=now,
            )

        if stale:
            logger.warning(
                "A newer sync already reconciled this provider, leaving current records",
                extra={"provider_id": config.id},
            )
            return len(result.historical_data)

        for metric, value in reported.items():
            current = currents[metric]
            if current is not None:
                await self.store.update_metric(
                    current.id,
                    {
                        "value": value,
                        "timestamp": now,
                        "last_synced_at": now,
                        "status": MetricStatus.ACTIVE,
                        "error_message": None,
                    },
                )
            else:
                await self.store.create_metric(
                    config.user_id, metric, config.source, value, timestamp=now, last_synced_at=now
                )
        return len(result.historical_data)

    # ── Scheduling ──

    async def schedule_sync_jobs(self, now: Optional[datetime] = None) -> List[SyncOutcome]:
        """Sync every active provider that is due, one after another."""
        now = now or utcnow()
        outcomes: List[SyncOutcome] = []
        configs = await self.store.list_providers(active_only=True)
        due = [c for c in configs if should_sync_now(c, now)]
        logger.info(f"{len(due)} of {len(configs)} active providers due for sync")

        for config in due:
            try:
                outcomes.append(await self.sync_data_source(config.id))
            except Exception as e:
                logger.error(
                    f"Scheduled sync of {config.id} failed: {e}",
                    extra={"provider_id": config.id},
                )
                outcomes.append(SyncOutcome(success=False, error=str(e)))
        return outcomes


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
