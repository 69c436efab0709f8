"""MetricSync — KPI Service.

The small set of calls the route layer consumes: metric CRUD and overrides,
trends, provider CRUD (credentials encrypted on the way in), syncs, sync
history, and sample-data seeding.
"""

import json
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from metricsync.analyzer import trend_engine
from metricsync.config import settings
from metricsync.connectors.factory import build_adapter, resolve_provider
from metricsync.connectors.tabular import validate_csv_upload
from metricsync.core.errors import ValidationError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import SAMPLE_METRICS, MetricName, ProviderType
from metricsync.core.vault import CredentialVault
from metricsync.models.integration_models import SyncOutcome
from metricsync.models.records import (
    MetricRecord,
    MetricStatus,
    ProviderConfig,
    SyncFrequency,
    SyncJob,
    utcnow,
)
from metricsync.models.trend_models import TrendPoint, TrendSummary
from metricsync.storage.metric_store import MetricStore
from metricsync.sync.orchestrator import SyncOrchestrator

logger = get_logger("services.kpi")

Credentials = Union[str, Dict[str, Any]]

STALE_AFTER = timedelta(hours=24)

# Day index → sample value, for 30 days of demo history
SAMPLE_FORMULAS: Dict[MetricName, Callable[[int], float]] = {
    MetricName.MRR: lambda i: 25000 + i * 500 + math.sin(i / 5) * 1000,
    MetricName.NET_PROFIT: lambda i: 5000 + i * 200 + math.cos(i / 7) * 1500,
    MetricName.BURN_RATE: lambda i: 8000 + i * 100 + math.sin(i / 6) * 500,
    MetricName.CASH_ON_HAND: lambda i: 150000 - i * 2000 + math.cos(i / 4) * 5000,
    MetricName.USER_SIGNUPS: lambda i: 50 + i * 3 + math.sin(i / 3) * 10,
    MetricName.RUNWAY: lambda i: 365 - i * 2 + math.cos(i / 8) * 10,
    MetricName.CAC: lambda i: 120 + math.sin(i / 5) * 20,
    MetricName.CHURN_RATE: lambda i: 2.5 + math.sin(i / 7) * 1.5,
    MetricName.ACTIVE_USERS: lambda i: 2000 + i * 50 + math.cos(i / 4) * 200,
    MetricName.CONVERSION_RATE: lambda i: 3.2 + math.sin(i / 6) * 1.0,
}


class SyncStatusSummary(BaseModel):
    """Per-user provider freshness counts."""

    active: int = 0
    error: int = 0
    pending: int = 0
    total: int = 0


def _credential_text(credentials: Credentials) -> str:
    if isinstance(credentials, dict):
        return json.dumps(credentials)
    return credentials


class KPIService:
    """Facade over the metric store, vault, orchestrator and trend engine."""

    def __init__(
        self,
        store: MetricStore,
        vault: CredentialVault,
        orchestrator: Optional[SyncOrchestrator] = None,
        adapter_factory=build_adapter,
    ):
        self.store = store
        self.vault = vault
        self.adapter_factory = adapter_factory
        self.orchestrator = orchestrator or SyncOrchestrator(
            store, vault, adapter_factory=adapter_factory
        )

    # ── Metrics ──

    async def create_metric(
        self,
        owner_id: str,
        metric_name: MetricName | str,
        provider_tag: ProviderType | str,
        value: float,
        timestamp: Optional[datetime] = None,
    ) -> MetricRecord:
        return await self.store.create_metric(
            owner_id, metric_name, resolve_provider(provider_tag), value, timestamp=timestamp
        )

    async def get_metric(self, metric_id: str) -> Optional[MetricRecord]:
        return await self.store.get_metric(metric_id)

    async def get_metrics_by_user(self, owner_id: str) -> List[MetricRecord]:
        return await self.store.get_metrics_by_user(owner_id)

    async def update_metric(self, metric_id: str, patch: Dict[str, Any]) -> Optional[MetricRecord]:
        """Only the override fields and status are caller-editable."""
        allowed = {"is_manual_override", "override_value", "override_timestamp", "status", "error_message"}
        unknown = set(patch) - allowed
        if unknown:
            raise ValidationError(f"Cannot update metric fields: {', '.join(sorted(unknown))}")
        return await self.store.update_metric(metric_id, patch)

    async def delete_metric(self, metric_id: str) -> bool:
        return await self.store.delete_metric(metric_id)

    async def override_metric(self, metric_id: str, value: float) -> Optional[MetricRecord]:
        return await self.store.update_metric(
            metric_id,
            {
                "is_manual_override": True,
                "override_value": value,
                "override_timestamp": utcnow(),
            },
        )

    async def clear_override(self, metric_id: str) -> Optional[MetricRecord]:
        return await self.store.update_metric(
            metric_id,
            {"is_manual_override": False, "override_value": None, "override_timestamp": None},
        )

    # ── Trends ──

    async def get_trend(
        self, owner_id: str, metric_name: MetricName | str, window_days: int = 30
    ) -> List[TrendPoint]:
        return await trend_engine.get_trends(
            self.store, owner_id, self._metric(metric_name), window_days
        )

    async def get_trend_summary(
        self, owner_id: str, metric_name: MetricName | str, window_days: int = 30
    ) -> TrendSummary:
        return await trend_engine.get_trend_summary(
            self.store, owner_id, self._metric(metric_name), window_days
        )

    @staticmethod
    def _metric(metric_name: MetricName | str) -> MetricName:
        try:
            return MetricName(metric_name)
        except ValueError:
            raise ValidationError(f"Unknown metric: {metric_name}") from None

    # ── Providers ──

    def _seal(self, provider: ProviderType, credentials: Credentials, owner_id: str):
        """Check the payload satisfies the adapter, then encrypt it."""
        text = _credential_text(credentials)
        if not text:
            raise ValidationError("credentials are required")
        self.adapter_factory(provider, text, owner_id)
        return self.vault.encrypt(text)

    async def create_provider(
        self,
        owner_id: str,
        provider_tag: ProviderType | str,
        credentials: Credentials,
        frequency: SyncFrequency | str = SyncFrequency.DAILY,
    ) -> ProviderConfig:
        if not owner_id:
            raise ValidationError("owner id is required")
        provider = resolve_provider(provider_tag)
        try:
            frequency = SyncFrequency(frequency)
        except ValueError:
            raise ValidationError(f"Unknown sync frequency: {frequency}") from None

        config = ProviderConfig(
            user_id=owner_id,
            source=provider,
            credentials=self._seal(provider, credentials, owner_id),
            sync_frequency=frequency,
        )
        return await self.store.create_provider(config)

    async def create_csv_provider(
        self,
        owner_id: str,
        csv_data: str,
        file_name: str,
        source_name: Optional[str] = None,
    ) -> ProviderConfig:
        """Validate an uploaded CSV and store it as a manually-synced provider."""
        rows = validate_csv_upload(csv_data, settings.csv_max_bytes)
        payload = {
            "csvData": csv_data,
            "fileName": file_name,
            "uploadedAt": utcnow().isoformat(),
            "sourceName": source_name or file_name,
        }
        logger.info(
            f"CSV upload accepted: {file_name} ({len(rows) - 1} data rows)",
            extra={"user_id": owner_id},
        )
        return await self.create_provider(
            owner_id, ProviderType.CSV, payload, SyncFrequency.MANUAL
        )

    async def get_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        return await self.store.get_provider(provider_id)

    async def get_providers_by_user(self, owner_id: str) -> List[ProviderConfig]:
        return await self.store.get_providers_by_user(owner_id)

    async def update_provider(
        self, provider_id: str, patch: Dict[str, Any]
    ) -> Optional[ProviderConfig]:
        """Apply a patch; plaintext credentials in it are validated and re-encrypted."""
        config = await self.store.get_provider(provider_id)
        if config is None:
            return None
        patch = dict(patch)
        if "credentials" in patch:
            patch["credentials"] = self._seal(config.source, patch["credentials"], config.user_id)
        return await self.store.update_provider(provider_id, patch)

    async def delete_provider(self, provider_id: str) -> bool:
        return await self.store.delete_provider(provider_id)

    # ── Sync ──

    async def sync_data_source(self, provider_id: str, raise_on_fatal: bool = False) -> SyncOutcome:
        return await self.orchestrator.sync_data_source(provider_id, raise_on_fatal=raise_on_fatal)

    async def schedule_sync_jobs(self) -> List[SyncOutcome]:
        return await self.orchestrator.schedule_sync_jobs()

    async def get_sync_jobs(self, owner_id: str, limit: int = 50) -> List[SyncJob]:
        return await self.store.get_sync_jobs_by_user(owner_id, limit=limit)

    async def get_sync_status(
        self, owner_id: str, now: Optional[datetime] = None
    ) -> SyncStatusSummary:
        """Active providers bucketed by freshness: within 24h, older, never synced."""
        now = now or utcnow()
        summary = SyncStatusSummary()
        for config in await self.store.get_providers_by_user(owner_id):
            if not config.is_active:
                continue
            summary.total += 1
            if config.last_sync_at is None:
                summary.pending += 1
            elif now - config.last_sync_at < STALE_AFTER:
                summary.active += 1
            else:
                summary.error += 1
        return summary

    # ── Sample Data ──

    async def has_data(self, owner_id: str) -> bool:
        return bool(await self.store.get_metrics_by_user(owner_id))

    async def seed_sample_data(
        self, owner_id: str, days: int = 30, now: Optional[datetime] = None
    ) -> int:
        """Create ``days`` days of Manual-source history for the sample metrics.

        Does nothing if the user already has any metric records.
        """
        if await self.has_data(owner_id):
            logger.info("User already has metrics, skipping sample data", extra={"user_id": owner_id})
            return 0

        now = now or utcnow()
        created = 0
        for i in range(days):
            day = now - timedelta(days=days - 1 - i)
            for metric in SAMPLE_METRICS:
                await self.store.create_metric(
                    owner_id,
                    metric,
                    ProviderType.MANUAL,
                    max(0.0, SAMPLE_FORMULAS[metric](i)),
                    timestamp=day,
                    last_synced_at=day,
                    status=MetricStatus.ACTIVE,
                )
                created += 1
        logger.info(f"Seeded {created} sample records", extra={"user_id": owner_id})
        return created
