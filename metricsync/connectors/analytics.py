"""MetricSync — Google Analytics 4 Adapter.

Runs one daily report (activeUsers, sessions, conversions) over the last
28 days and aggregates it:
  - DAU / WebsiteTraffic: latest day's active users / sessions, with one
    historical point per day
  - WAU: active users summed over the last 7 days (an upper bound, since
    GA4 daily counts are not de-duplicated across days)
  - LeadConversionRate: conversions / sessions over the whole window
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from metricsync.config import settings
from metricsync.connectors.base import HTTPProviderAdapter
from metricsync.connectors.tabular import parse_number
from metricsync.core.errors import ParseError
from metricsync.core.metric_registry import MetricName, ProviderType
from metricsync.models.integration_models import HistoricalDataPoint, IntegrationResult

REPORT_METRICS = ("activeUsers", "sessions", "conversions")
WINDOW = "28daysAgo"


def _parse_report(body: Dict[str, Any]) -> List[Tuple[datetime, Dict[str, float]]]:
    """Daily rows as (date, {metric: value}), oldest first."""
    headers = [h.get("name") for h in body.get("metricHeaders", [])] or list(REPORT_METRICS)
    days = []
    for row in body.get("rows", []):
        raw_date = (row.get("dimensionValues") or [{}])[0].get("value", "")
        try:
            day = datetime.strptime(raw_date, "%Y%m%d").replace(tzinfo=timezone.utc)
        except ValueError as e:
            raise ParseError(f"Unexpected GA4 date '{raw_date}'") from e
        values = {
            name: parse_number(cell.get("value")) or 0.0
            for name, cell in zip(headers, row.get("metricValues", []))
        }
        days.append((day, values))
    days.sort(key=lambda d: d[0])
    return days


class GoogleAnalyticsAdapter(HTTPProviderAdapter):
    provider = ProviderType.GOOGLE_ANALYTICS

    def validate(self) -> None:
        self.require("accessToken", "access_token")
        self.require("propertyId", "property_id")

    def base_url(self) -> str:
        return settings.analytics_base_url

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.require('accessToken', 'access_token')}"}

    @property
    def property_path(self) -> str:
        return f"properties/{self.require('propertyId', 'property_id')}"

    async def fetch(self) -> IntegrationResult:
        body = await self.api.post(
            f"{self.property_path}:runReport",
            json={
                "dateRanges": [{"startDate": WINDOW, "endDate": "today"}],
                "dimensions": [{"name": "date"}],
                "metrics": [{"name": m} for m in REPORT_METRICS],
            },
        )
        days = _parse_report(body)
        if not days:
            return IntegrationResult.ok({})

        history: List[HistoricalDataPoint] = []
        for day, values in days:
            history.append(HistoricalDataPoint(metric=MetricName.DAU, value=values.get("activeUsers", 0.0), date=day))
            history.append(
                HistoricalDataPoint(metric=MetricName.WEBSITE_TRAFFIC, value=values.get("sessions", 0.0), date=day)
            )

        latest = days[-1][1]
        total_sessions = sum(v.get("sessions", 0.0) for _, v in days)
        total_conversions = sum(v.get("conversions", 0.0) for _, v in days)
        data = {
            MetricName.DAU: latest.get("activeUsers", 0.0),
            MetricName.WAU: sum(v.get("activeUsers", 0.0) for _, v in days[-7:]),
            MetricName.WEBSITE_TRAFFIC: latest.get("sessions", 0.0),
            MetricName.LEAD_CONVERSION_RATE: (
                round(total_conversions / total_sessions * 100, 2) if total_sessions > 0 else 0.0
            ),
        }
        return IntegrationResult.ok(data, history)

    async def check_connection(self) -> None:
        await self.api.get(f"{self.property_path}/metadata")
