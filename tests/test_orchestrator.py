"""Sync orchestrator tests: reconciliation, failure paths, scheduling."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from metricsync.connectors.base import ProviderAdapter
from metricsync.core.errors import DecryptionError, ProviderNotFoundError, UnsupportedProviderError
from metricsync.core.metric_registry import MetricName, ProviderType
from metricsync.core.vault import CredentialVault
from metricsync.models.integration_models import HistoricalDataPoint, IntegrationResult
from metricsync.models.records import ProviderConfig, SyncFrequency, SyncJobStatus
from metricsync.scheduler.jobs import sync_due_providers_job
from metricsync.sync.orchestrator import SyncOrchestrator, should_sync_now

from conftest import sealed

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeAdapter(ProviderAdapter):
    """Adapter that returns a canned result."""

    provider = ProviderType.STRIPE

    def __init__(self, result=None, connected=True, delay=0.0, user_id="user-1", error=None):
        super().__init__(json.dumps({"apiKey": "fake"}), user_id)
        self.result = result or IntegrationResult.ok({})
        self.connected = connected
        self.delay = delay
        self.closed = False
        self.fetches = 0
        self.error = error

    async def fetch(self):
        self.fetches += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    async def check_connection(self):
        return None

    async def test_connection(self):
        return self.connected

    async def close(self):
        self.closed = True


def factory_for(*adapters):
    """Adapter factory that hands out the given adapters in order."""
    queue = list(adapters)

    def build(provider, credentials, user_id, client=None):
        return queue.pop(0)

    return build


async def add_provider(store, vault, source=ProviderType.STRIPE, **fields) -> ProviderConfig:
    config = ProviderConfig(
        user_id="user-1", source=source, credentials=sealed(vault, {"apiKey": "sk_test"}), **fields
    )
    return await store.create_provider(config)


def current_records(store, metric, source=ProviderType.STRIPE):
    return [
        m
        for m in store._metrics.data.values()
        if m.metric_name == metric and m.source == source and m.timestamp > T0
    ]


@pytest.mark.asyncio
async def test_scenario_a_updates_existing_current_record(store, vault):
    config = await add_provider(store, vault)
    existing = await store.create_metric(
        "user-1", MetricName.MRR, ProviderType.STRIPE, 12000, last_synced_at=T0
    )

    adapter = FakeAdapter(IntegrationResult.ok({MetricName.MRR: 15000}))
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter))
    outcome = await orchestrator.sync_data_source(config.id)

    assert outcome.success
    assert outcome.metrics_synced == 1
    mrr = [m for m in store._metrics.data.values() if m.metric_name == MetricName.MRR]
    assert len(mrr) == 1
    assert mrr[0].id == existing.id
    assert mrr[0].value == 15000
    assert mrr[0].last_synced_at > T0
    assert adapter.closed


@pytest.mark.asyncio
async def test_scenario_c_failed_connection_leaves_provider_untouched(store, vault):
    config = await add_provider(store, vault)
    adapter = FakeAdapter(IntegrationResult.ok({MetricName.MRR: 1}), connected=False)
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter))

    outcome = await orchestrator.sync_data_source(config.id)

    assert outcome.success is False
    assert outcome.error
    assert (await store.get_provider(config.id)).last_sync_at is None
    assert adapter.fetches == 0
    assert store._metrics.data == {}
    job = await store.get_sync_job(outcome.job_id)
    assert job.status == SyncJobStatus.FAILED
    assert adapter.closed


@pytest.mark.asyncio
async def test_repeated_sync_keeps_one_current_record_and_appends_history(store, vault):
    config = await add_provider(store, vault)

    def result():
        return IntegrationResult.ok(
            {MetricName.MRR: 500, MetricName.CHURN_RATE: 0},
            [HistoricalDataPoint(metric=MetricName.MRR, value=450, date=T0 - timedelta(days=1))],
        )

    orchestrator = SyncOrchestrator(
        store, vault, adapter_factory=factory_for(FakeAdapter(result()), FakeAdapter(result()))
    )
    first = await orchestrator.sync_data_source(config.id)
    second = await orchestrator.sync_data_source(config.id)

    assert first.success and second.success
    assert first.historical_points == second.historical_points == 1
    assert len(current_records(store, MetricName.MRR)) == 1
    history = [m for m in store._metrics.data.values() if m.value == 450]
    assert len(history) == 2
    # Zero means "not reported": no ChurnRate record is created
    assert not [m for m in store._metrics.data.values() if m.metric_name == MetricName.CHURN_RATE]


@pytest.mark.asyncio
async def test_reported_zero_keeps_existing_current_value(store, vault):
    config = await add_provider(store, vault)
    existing = await store.create_metric(
        "user-1", MetricName.CHURN_RATE, ProviderType.STRIPE, 3.0, last_synced_at=T0
    )
    adapter = FakeAdapter(IntegrationResult.ok({MetricName.CHURN_RATE: 0, MetricName.MRR: 10}))
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter))

    outcome = await orchestrator.sync_data_source(config.id)

    assert outcome.success
    churn = [m for m in store._metrics.data.values() if m.metric_name == MetricName.CHURN_RATE]
    assert len(churn) == 1
    assert churn[0].id == existing.id
    assert churn[0].value == 3.0
    assert churn[0].last_synced_at == T0


@pytest.mark.asyncio
async def test_current_record_is_never_a_historical_point(store, vault):
    config = await add_provider(store, vault)
    orchestrator = SyncOrchestrator(
        store,
        vault,
        adapter_factory=factory_for(
            FakeAdapter(IntegrationResult.ok(
                {MetricName.MRR: 900},
                [HistoricalDataPoint(metric=MetricName.MRR, value=800, date=T0)],
            ))
        ),
    )
    await orchestrator.sync_data_source(config.id)

    values = sorted(m.value for m in store._metrics.data.values())
    assert values == [800, 900]
    current = store.find_current_metric("user-1", MetricName.MRR, ProviderType.STRIPE)
    assert current.value == 900


@pytest.mark.asyncio
async def test_successful_sync_stamps_provider_and_completes_job(store, vault):
    config = await add_provider(store, vault)
    orchestrator = SyncOrchestrator(
        store, vault, adapter_factory=factory_for(FakeAdapter(IntegrationResult.ok({MetricName.MRR: 1})))
    )
    outcome = await orchestrator.sync_data_source(config.id)

    assert (await store.get_provider(config.id)).last_sync_at is not None
    job = await store.get_sync_job(outcome.job_id)
    assert job.status == SyncJobStatus.COMPLETED
    assert job.metrics_synced == 1
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_adapter_failure_result_is_surfaced(store, vault):
    config = await add_provider(store, vault)
    adapter = FakeAdapter(IntegrationResult.failed("Stripe said no"))
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter))

    outcome = await orchestrator.sync_data_source(config.id)
    assert outcome.success is False
    assert outcome.error == "Stripe said no"
    assert (await store.get_provider(config.id)).last_sync_at is None


@pytest.mark.asyncio
async def test_missing_provider(store, vault):
    orchestrator = SyncOrchestrator(store, vault)
    outcome = await orchestrator.sync_data_source("nope")
    assert outcome.success is False
    assert "not found" in outcome.error
    with pytest.raises(ProviderNotFoundError):
        await orchestrator.sync_data_source("nope", raise_on_fatal=True)


@pytest.mark.asyncio
async def test_wrong_vault_key_raises_when_fatal(store, vault):
    config = await add_provider(store, vault)
    other = CredentialVault(secret="rotated", iterations=1000)
    orchestrator = SyncOrchestrator(store, other)

    outcome = await orchestrator.sync_data_source(config.id)
    assert outcome.success is False
    with pytest.raises(DecryptionError):
        await orchestrator.sync_data_source(config.id, raise_on_fatal=True)


@pytest.mark.asyncio
async def test_unsupported_provider_from_factory(store, vault):
    config = await add_provider(store, vault)

    def build(provider, credentials, user_id, client=None):
        raise UnsupportedProviderError("Legacy")

    orchestrator = SyncOrchestrator(store, vault, adapter_factory=build)
    with pytest.raises(UnsupportedProviderError):
        await orchestrator.sync_data_source(config.id, raise_on_fatal=True)


@pytest.mark.asyncio
async def test_slow_adapter_times_out(store, vault):
    config = await add_provider(store, vault)
    adapter = FakeAdapter(IntegrationResult.ok({MetricName.MRR: 1}), delay=1.0)
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter), timeout=0.01)

    outcome = await orchestrator.sync_data_source(config.id)
    assert outcome.success is False
    assert "timed out" in outcome.error
    assert adapter.closed


@pytest.mark.asyncio
async def test_concurrent_syncs_do_not_duplicate_current_record(store, vault):
    config = await add_provider(store, vault)
    slow = FakeAdapter(IntegrationResult.ok({MetricName.MRR: 100}), delay=0.05)
    fast = FakeAdapter(IntegrationResult.ok({MetricName.MRR: 200}), delay=0.0)
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(slow, fast))

    first, second = await asyncio.gather(
        orchestrator.sync_data_source(config.id),
        orchestrator.sync_data_source(config.id),
    )

    assert first.success and second.success
    mrr = [m for m in store._metrics.data.values() if m.metric_name == MetricName.MRR]
    assert len(mrr) == 1
    # The older run finished last but does not overwrite the newer value
    assert mrr[0].value == 200


@pytest.mark.asyncio
async def test_end_to_end_csv_provider(store, vault):
    csv_data = "Date,MRR,Churn Rate\n2024-01-01,100,2.5\n2024-02-01,110,2.0\n2024-03-01,130,1.5\n"
    config = await store.create_provider(
        ProviderConfig(
            user_id="user-1",
            source=ProviderType.CSV,
            credentials=sealed(vault, {"csvData": csv_data, "fileName": "kpis.csv"}),
            sync_frequency=SyncFrequency.MANUAL,
        )
    )
    orchestrator = SyncOrchestrator(store, vault)
    outcome = await orchestrator.sync_data_source(config.id)

    assert outcome.success
    assert outcome.metrics_synced == 2
    assert outcome.historical_points == 6
    current = store.find_current_metric("user-1", MetricName.MRR, ProviderType.CSV)
    assert current.value == 130


# ── Scheduling ──


def _config(frequency, last_sync_at=None) -> ProviderConfig:
    vault = CredentialVault(secret="s", iterations=1000)
    return ProviderConfig(
        user_id="u",
        source=ProviderType.STRIPE,
        credentials=vault.encrypt("k"),
        sync_frequency=frequency,
        last_sync_at=last_sync_at,
    )


@pytest.mark.parametrize("frequency", list(SyncFrequency))
def test_never_synced_is_always_due(frequency):
    assert should_sync_now(_config(frequency), T0) is True


@pytest.mark.parametrize(
    "frequency,hours,due",
    [
        (SyncFrequency.HOURLY, 0.5, False),
        (SyncFrequency.HOURLY, 1, True),
        (SyncFrequency.DAILY, 23, False),
        (SyncFrequency.DAILY, 24, True),
        (SyncFrequency.WEEKLY, 167, False),
        (SyncFrequency.WEEKLY, 168, True),
        (SyncFrequency.MANUAL, 10_000, False),
    ],
)
def test_frequency_thresholds(frequency, hours, due):
    config = _config(frequency, last_sync_at=T0)
    assert should_sync_now(config, T0 + timedelta(hours=hours)) is due


@pytest.mark.parametrize("hours", [0, 0.5, 1, 5, 23, 24, 100, 200])
def test_hourly_is_due_no_later_than_daily(hours):
    now = T0 + timedelta(hours=hours)
    if should_sync_now(_config(SyncFrequency.DAILY, T0), now):
        assert should_sync_now(_config(SyncFrequency.HOURLY, T0), now)


@pytest.mark.asyncio
async def test_schedule_syncs_only_due_active_providers(store, vault):
    now = datetime.now(timezone.utc)
    due = await add_provider(store, vault)
    await add_provider(store, vault, last_sync_at=now)
    await add_provider(store, vault, is_active=False)
    failing = await add_provider(store, vault, sync_frequency=SyncFrequency.HOURLY)

    def build(provider, credentials, user_id, client=None):
        return FakeAdapter(IntegrationResult.ok({MetricName.MRR: 10}))

    orchestrator = SyncOrchestrator(store, vault, adapter_factory=build)
    await store.update_provider(failing.id, {"credentials": CredentialVault(secret="x", iterations=1000).encrypt("k")})

    outcomes = await orchestrator.schedule_sync_jobs(now=now)

    assert len(outcomes) == 2
    assert sorted(o.success for o in outcomes) == [False, True]
    assert (await store.get_provider(due.id)).last_sync_at is not None


@pytest.mark.asyncio
async def test_unexpected_adapter_error_fails_job(store, vault):
    config = await add_provider(store, vault)
    adapter = FakeAdapter(error=KeyError("id"))
    orchestrator = SyncOrchestrator(store, vault, adapter_factory=factory_for(adapter))

    outcome = await orchestrator.sync_data_source(config.id)

    assert outcome.success is False
    assert "id" in outcome.error
    job = await store.get_sync_job(outcome.job_id)
    assert job.status == SyncJobStatus.FAILED
    assert job.completed_at is not None
    assert (await store.get_provider(config.id)).last_sync_at is None
    assert adapter.closed


@pytest.mark.asyncio
async def test_schedule_continues_past_crashing_adapter(store, vault):
    first = await add_provider(store, vault)
    second = await add_provider(store, vault)
    orchestrator = SyncOrchestrator(
        store,
        vault,
        adapter_factory=factory_for(
            FakeAdapter(error=KeyError("id")),
            FakeAdapter(IntegrationResult.ok({MetricName.MRR: 10})),
        ),
    )

    outcomes = await orchestrator.schedule_sync_jobs()

    assert [o.success for o in outcomes] == [False, True]
    assert (await store.get_provider(second.id)).last_sync_at is not None
    assert (await store.get_provider(first.id)).last_sync_at is None
    jobs = [await store.get_sync_job(o.job_id) for o in outcomes]
    assert SyncJobStatus.RUNNING not in [j.status for j in jobs]


class ExplodingOrchestrator:
    async def schedule_sync_jobs(self):
        raise RuntimeError("store unavailable")


@pytest.mark.asyncio
async def test_scheduled_pass_logs_failure(caplog):
    await sync_due_providers_job(ExplodingOrchestrator())

    assert any("store unavailable" in r.getMessage() for r in caplog.records)
