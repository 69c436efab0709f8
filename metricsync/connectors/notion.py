"""MetricSync — Notion Task Database Adapter.

Counts tasks in a Notion database over the current week (Monday 00:00 UTC
to now) and turns them into productivity metrics:
  - TasksCompleted: tasks marked done and last edited inside the window
  - TaskCompletionRate: completed / tasks in window (open tasks count too)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from metricsync.config import settings
from metricsync.connectors.base import HTTPProviderAdapter
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName, ProviderType
from metricsync.models.integration_models import IntegrationResult

logger = get_logger("connectors.notion")

MAX_PAGES = 50
DEFAULT_STATUS_PROPERTY = "Status"
DEFAULT_DONE_VALUES = ("done", "complete", "completed")


def start_of_week(now: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing ``now``."""
    day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=day.weekday())


def _timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class NotionAdapter(HTTPProviderAdapter):
    provider = ProviderType.NOTION

    def validate(self) -> None:
        self.require("apiKey", "accessToken", "token")
        self.require("databaseId", "database_id")

    def base_url(self) -> str:
        return settings.notion_base_url

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.require('apiKey', 'accessToken', 'token')}",
            "Notion-Version": settings.notion_api_version,
        }

    @property
    def database_id(self) -> str:
        return self.require("databaseId", "database_id")

    async def query_pages(self) -> List[Dict[str, Any]]:
        pages: List[Dict[str, Any]] = []
        body: Dict[str, Any] = {"page_size": 100}
        for _ in range(MAX_PAGES):
            result = await self.api.post(f"databases/{self.database_id}/query", json=body)
            pages.extend(result.get("results", []))
            if not result.get("has_more") or not result.get("next_cursor"):
                break
            body["start_cursor"] = result["next_cursor"]
        return pages

    def is_done(self, page: Dict[str, Any]) -> bool:
        """A task is done when its status/select matches a done value or its checkbox is ticked."""
        prop_name = self.credential("statusProperty", default=DEFAULT_STATUS_PROPERTY)
        done_values = {
            v.lower() for v in self.credential("doneValues", default=DEFAULT_DONE_VALUES)
        }
        prop = (page.get("properties") or {}).get(prop_name) or {}
        kind = prop.get("type")
        if kind in ("status", "select"):
            option = prop.get(kind) or {}
            return str(option.get("name", "")).lower() in done_values
        if kind == "checkbox":
            return bool(prop.get("checkbox"))
        return False

    async def fetch(self) -> IntegrationResult:
        now = datetime.now(timezone.utc)
        window_start = start_of_week(now)

        total = completed = 0
        for page in await self.query_pages():
            if page.get("archived") or page.get("in_trash"):
                continue
            edited = _timestamp(page.get("last_edited_time"))
            done = self.is_done(page)
            if done:
                if edited and edited >= window_start:
                    completed += 1
                    total += 1
            else:
                # Open tasks belong to every window they are open in
                total += 1

        logger.info(
            f"Notion: {completed}/{total} tasks completed since {window_start.date()}",
            extra={"user_id": self.user_id},
        )
        data = {
            MetricName.TASKS_COMPLETED: float(completed),
            MetricName.TASK_COMPLETION_RATE: round(completed / total * 100, 2) if total else 0.0,
        }
        return IntegrationResult.ok(data)

    async def check_connection(self) -> None:
        await self.api.get(f"databases/{self.database_id}")
