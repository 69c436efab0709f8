"""MetricSync — Metric Store.

Authoritative in-memory collections (metrics, providers, sync jobs) backed
by a durable StoragePort.

Durability policy:
  - Provider configs flush synchronously on every create/update/delete.
    A failed flush rolls the in-memory change back and raises PersistenceError.
  - Metric records and sync jobs are buffered in memory and flushed by a
    periodic background task, and once more on close(). A failed flush is
    logged and retried on the next tick.

Read-repair is best-effort: a lookup miss reloads the durable snapshot,
waits ``read_repair_delay`` and reloads once more. It papers over a
writer-then-reader race between processes and gives no consistency
guarantee beyond that.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from metricsync.config import settings
from metricsync.core.errors import PersistenceError, ValidationError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName, ProviderType
from metricsync.models.records import (
    METRIC_MUTABLE_FIELDS,
    PROVIDER_MUTABLE_FIELDS,
    MetricRecord,
    ProviderConfig,
    SyncJob,
    utcnow,
)
from metricsync.storage.backends import Snapshot, StoragePort

logger = get_logger("storage.metric_store")

METRICS = "metrics"
PROVIDERS = "providers"
SYNC_JOBS = "sync_jobs"

T = TypeVar("T", bound=BaseModel)


class CollectionCache(Generic[T]):
    """In-memory view of one durable collection."""

    def __init__(self, name: str, model: Type[T]):
        self.name = name
        self.model = model
        self.data: Dict[str, T] = {}
        self.last_loaded_at: Optional[datetime] = None
        # Written or deleted in memory since the last successful flush
        self.dirty: Set[str] = set()
        self.deleted: Set[str] = set()

    @property
    def has_pending(self) -> bool:
        return bool(self.dirty or self.deleted)

    def expected_ids(self, snapshot: Snapshot) -> Set[str]:
        """Ids memory should hold once the snapshot is overlaid with pending writes."""
        return (set(snapshot) - self.deleted) | (self.dirty & set(self.data))

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Replace memory with the snapshot, keeping unflushed local writes."""
        fresh: Dict[str, T] = {}
        for record_id, payload in snapshot.items():
            if record_id in self.deleted:
                continue
            try:
                fresh[record_id] = self.model.model_validate(payload)
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable {self.name} record {record_id}: {e}")
        for record_id in self.dirty:
            if record_id in self.data:
                fresh[record_id] = self.data[record_id]
        self.data = fresh
        self.last_loaded_at = datetime.now(timezone.utc)

    def to_snapshot(self) -> Snapshot:
        return {rid: rec.model_dump(mode="json") for rid, rec in self.data.items()}

    def mark_written(self, record_id: str) -> None:
        self.dirty.add(record_id)
        self.deleted.discard(record_id)

    def mark_deleted(self, record_id: str) -> None:
        self.dirty.discard(record_id)
        self.deleted.add(record_id)

    def clear_pending(self) -> None:
        self.dirty.clear()
        self.deleted.clear()


def _patched(record: T, patch: Dict[str, Any], allowed: Set[str], kind: str) -> T:
    """Validate a patch against the allowed fields and return the new record."""
    unknown = set(patch) - allowed
    if unknown:
        raise ValidationError(f"Cannot update {kind} fields: {', '.join(sorted(unknown))}")
    merged = {**record.model_dump(), **patch, "updated_at": utcnow()}
    try:
        return type(record).model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind} update: {e}") from e


class MetricStore:
    """Cache + persistence for metric records, provider configs and sync jobs."""

    def __init__(
        self,
        storage: StoragePort,
        flush_interval: Optional[float] = None,
        read_repair_delay: Optional[float] = None,
    ):
        self.storage = storage
        self.flush_interval = (
            settings.metric_flush_interval_seconds if flush_interval is None else flush_interval
        )
        self.read_repair_delay = (
            settings.read_repair_delay_seconds if read_repair_delay is None else read_repair_delay
        )
        self._metrics: CollectionCache[MetricRecord] = CollectionCache(METRICS, MetricRecord)
        self._providers: CollectionCache[ProviderConfig] = CollectionCache(PROVIDERS, ProviderConfig)
        self._jobs: CollectionCache[SyncJob] = CollectionCache(SYNC_JOBS, SyncJob)
        self._flush_task: Optional[asyncio.Task] = None
        self._revision = 0

    # ── Lifecycle ──

    async def start(self) -> None:
        """Load every collection and start the periodic flush task."""
        for cache in self._caches():
            self._reload(cache)
        if self.flush_interval and self.flush_interval > 0:
            self._flush_task = asyncio.create_task(self._flush_loop(), name="metric-store-flush")
        logger.info(
            f"Metric store ready ({self.storage.name}): "
            f"{len(self._metrics.data)} metrics, {len(self._providers.data)} providers, "
            f"{len(self._jobs.data)} sync jobs"
        )

    async def close(self) -> None:
        """Cancel the flush task, join it, and flush buffered writes once more."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        self.flush()
        self.storage.close()
        logger.info("Metric store closed")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.flush()

    def flush(self) -> bool:
        """Write buffered collections. Returns False if any write failed."""
        ok = True
        for cache in (self._metrics, self._jobs):
            if not cache.has_pending:
                continue
            try:
                self.storage.save(cache.name, cache.to_snapshot())
                cache.clear_pending()
            except PersistenceError as e:
                ok = False
                logger.error(f"Buffered flush of {cache.name} failed, will retry: {e}")
        return ok

    # ── Internal cache helpers ──

    def _caches(self) -> List[CollectionCache]:
        return [self._metrics, self._providers, self._jobs]

    def _reload(self, cache: CollectionCache) -> bool:
        try:
            snapshot = self.storage.load(cache.name)
        except PersistenceError as e:
            logger.warning(f"Reload of {cache.name} failed, serving memory: {e}")
            return False
        cache.apply_snapshot(snapshot)
        if cache is self._metrics:
            self._sync_revision()
        return True

    def _sync_revision(self) -> None:
        highest = max((m.revision for m in self._metrics.data.values()), default=0)
        self._revision = max(self._revision, highest)

    def _next_revision(self) -> int:
        self._revision += 1
        return self._revision

    async def _get_with_repair(self, cache: CollectionCache[T], record_id: str) -> Optional[T]:
        record = cache.data.get(record_id)
        if record is not None:
            return record

        logger.info(f"Cache miss for {cache.name}/{record_id}, reloading")
        self._reload(cache)
        record = cache.data.get(record_id)
        if record is not None:
            return record

        await asyncio.sleep(self.read_repair_delay)
        self._reload(cache)
        record = cache.data.get(record_id)
        if record is None:
            logger.info(f"{cache.name}/{record_id} still missing after read-repair")
        return record

    def _rehydrate_if_changed(self, cache: CollectionCache) -> None:
        """Reload fully when the durable snapshot size disagrees with memory."""
        try:
            snapshot = self.storage.load(cache.name)
        except PersistenceError as e:
            logger.warning(f"Rehydration check of {cache.name} failed: {e}")
            return
        if len(cache.expected_ids(snapshot)) != len(cache.data):
            logger.info(
                f"Rehydrating {cache.name}: memory={len(cache.data)} durable={len(snapshot)}"
            )
            cache.apply_snapshot(snapshot)
            if cache is self._metrics:
                self._sync_revision()

    def _write_provider(self, config: Optional[ProviderConfig], record_id: str) -> None:
        """Apply a provider mutation and flush it before returning."""
        cache = self._providers
        previous = cache.data.get(record_id)
        if config is None:
            cache.data.pop(record_id, None)
        else:
            cache.data[record_id] = config
        try:
            self.storage.save(cache.name, cache.to_snapshot())
        except PersistenceError:
            if previous is None:
                cache.data.pop(record_id, None)
            else:
                cache.data[record_id] = previous
            logger.error(f"Provider config write for {record_id} failed, change rolled back")
            raise

    # ── Metric Records ──

    async def create_metric(
        self,
        user_id: str,
        metric_name: MetricName | str,
        source: ProviderType | str,
        value: float,
        timestamp: Optional[datetime] = None,
        **fields: Any,
    ) -> MetricRecord:
        """Create a metric record (buffered write)."""
        if not user_id:
            raise ValidationError("user_id is required")
        now = utcnow()
        try:
            record = MetricRecord(
                user_id=user_id,
                metric_name=metric_name,
                source=source,
                value=value,
                timestamp=timestamp or now,
                last_synced_at=fields.pop("last_synced_at", now),
                revision=self._next_revision(),
                **fields,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid metric record: {e}") from e
        self._metrics.data[record.id] = record
        self._metrics.mark_written(record.id)
        return record

    async def get_metric(self, metric_id: str) -> Optional[MetricRecord]:
        return await self._get_with_repair(self._metrics, metric_id)

    async def get_metrics_by_user(self, user_id: str) -> List[MetricRecord]:
        """All records for a user, oldest first."""
        self._rehydrate_if_changed(self._metrics)
        records = [m for m in self._metrics.data.values() if m.user_id == user_id]
        return sorted(records, key=lambda m: m.timestamp)

    async def get_user_metric_series(
        self, user_id: str, metric_name: MetricName
    ) -> List[MetricRecord]:
        return [m for m in await self.get_metrics_by_user(user_id) if m.metric_name == metric_name]

    def find_current_metric(
        self, user_id: str, metric_name: MetricName, source: ProviderType
    ) -> Optional[MetricRecord]:
        """The most recently updated record for (user, metric, source)."""
        candidates = [
            m
            for m in self._metrics.data.values()
            if m.user_id == user_id and m.metric_name == metric_name and m.source == source
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda m: (m.revision, m.updated_at))

    async def update_metric(self, metric_id: str, patch: Dict[str, Any]) -> Optional[MetricRecord]:
        record = await self.get_metric(metric_id)
        if record is None:
            return None
        updated = _patched(record, patch, METRIC_MUTABLE_FIELDS, "metric")
        updated.revision = self._next_revision()
        self._metrics.data[metric_id] = updated
        self._metrics.mark_written(metric_id)
        return updated

    async def delete_metric(self, metric_id: str) -> bool:
        if await self.get_metric(metric_id) is None:
            return False
        self._metrics.data.pop(metric_id, None)
        self._metrics.mark_deleted(metric_id)
        return True

    # ── Provider Configs ──

    async def create_provider(self, config: ProviderConfig) -> ProviderConfig:
        """Store a provider config durably before returning."""
        self._write_provider(config, config.id)
        logger.info(
            f"Provider {config.source.value} created",
            extra={"provider_id": config.id, "user_id": config.user_id},
        )
        return config

    async def get_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        return await self._get_with_repair(self._providers, provider_id)

    async def get_providers_by_user(self, user_id: str) -> List[ProviderConfig]:
        self._rehydrate_if_changed(self._providers)
        configs = [p for p in self._providers.data.values() if p.user_id == user_id]
        return sorted(configs, key=lambda p: p.created_at)

    async def list_providers(self, active_only: bool = False) -> List[ProviderConfig]:
        self._rehydrate_if_changed(self._providers)
        configs = sorted(self._providers.data.values(), key=lambda p: p.created_at)
        if active_only:
            return [p for p in configs if p.is_active]
        return configs

    async def update_provider(
        self, provider_id: str, patch: Dict[str, Any]
    ) -> Optional[ProviderConfig]:
        config = await self.get_provider(provider_id)
        if config is None:
            return None
        updated = _patched(config, patch, PROVIDER_MUTABLE_FIELDS, "provider")
        self._write_provider(updated, provider_id)
        return updated

    async def delete_provider(self, provider_id: str) -> bool:
        if await self.get_provider(provider_id) is None:
            return False
        self._write_provider(None, provider_id)
        logger.info("Provider deleted", extra={"provider_id": provider_id})
        return True

    # ── Sync Jobs ──

    async def create_sync_job(self, job: SyncJob) -> SyncJob:
        self._jobs.data[job.id] = job
        self._jobs.mark_written(job.id)
        return job

    async def get_sync_job(self, job_id: str) -> Optional[SyncJob]:
        return await self._get_with_repair(self._jobs, job_id)

    async def update_sync_job(self, job_id: str, patch: Dict[str, Any]) -> Optional[SyncJob]:
        job = await self.get_sync_job(job_id)
        if job is None:
            return None
        if job.is_terminal:
            raise ValidationError(f"Sync job {job_id} is {job.status.value} and cannot change")
        try:
            updated = SyncJob.model_validate({**job.model_dump(), **patch})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid sync job update: {e}") from e
        self._jobs.data[job_id] = updated
        self._jobs.mark_written(job_id)
        return updated

    async def get_sync_jobs_by_user(self, user_id: str, limit: int = 50) -> List[SyncJob]:
        """Newest first."""
        self._rehydrate_if_changed(self._jobs)
        jobs = [j for j in self._jobs.data.values() if j.user_id == user_id]
        jobs.sort(key=lambda j: j.started_at, reverse=True)
        return jobs[:limit]
