"""MetricSync — Scheduler Jobs.

APScheduler interval job that syncs every provider whose frequency is due.
Retry timing for failed providers is left to the next tick.
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from metricsync.config import settings
from metricsync.core.logging import get_logger
from metricsync.sync.orchestrator import SyncOrchestrator

logger = get_logger("scheduler")

scheduler: Optional[AsyncIOScheduler] = None


async def sync_due_providers_job(orchestrator: SyncOrchestrator):
    """Run one scheduling pass over all active providers."""
    logger.info("Scheduled sync pass starting...")
    try:
        outcomes = await orchestrator.schedule_sync_jobs()
        failed = sum(1 for o in outcomes if not o.success)
        logger.info(f"Scheduled sync pass complete. {len(outcomes)} synced, {failed} failed")
    except Exception as e:
        logger.error(f"Scheduled sync pass failed: {e}")


def start_scheduler(orchestrator: SyncOrchestrator) -> Optional[AsyncIOScheduler]:
    """Configure and start the scheduler."""
    global scheduler
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return None

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sync_due_providers_job,
        "interval",
        minutes=settings.sync_check_interval_minutes,
        args=[orchestrator],
        id="sync_due_providers",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Checking providers every {settings.sync_check_interval_minutes} min"
    )
    return scheduler


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
