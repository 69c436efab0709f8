"""MetricSync — Stripe Adapter.

Subscription-billing provider:
  - MRR: active subscription items normalised to a monthly amount
  - ActiveUsers: distinct customers holding an active subscription
  - UserSignups: customers created in the sync window
  - Revenue: successful, non-refunded charge amounts in the sync window

Amounts are converted from the smallest currency unit.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from metricsync.config import settings
from metricsync.connectors.base import HTTPProviderAdapter
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName, ProviderType
from metricsync.models.integration_models import IntegrationResult

logger = get_logger("connectors.stripe")

PAGE_LIMIT = 100
MAX_PAGES = 50
WINDOW_DAYS = 30

# Multiplier that turns one billing interval into a month
MONTHLY_FACTOR = {
    "day": 365 / 12,
    "week": 52 / 12,
    "month": 1.0,
    "year": 1 / 12,
}


def monthly_amount(item: Dict[str, Any]) -> float:
    """Monthly value of one subscription item, in major currency units."""
    price = item.get("price") or item.get("plan") or {}
    recurring = price.get("recurring") or {}
    interval = recurring.get("interval") or price.get("interval") or "month"
    interval_count = recurring.get("interval_count") or price.get("interval_count") or 1
    unit_amount = price.get("unit_amount")
    if unit_amount is None:
        unit_amount = price.get("amount") or 0
    quantity = item.get("quantity") or 1
    factor = MONTHLY_FACTOR.get(interval, 1.0) / interval_count
    return unit_amount * quantity * factor / 100


class StripeAdapter(HTTPProviderAdapter):
    provider = ProviderType.STRIPE

    def validate(self) -> None:
        self.require("apiKey", "secretKey", "accessToken")

    def base_url(self) -> str:
        return settings.stripe_base_url

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.require('apiKey', 'secretKey', 'accessToken')}"}

    async def list_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Follow Stripe's starting_after cursor until has_more is false."""
        items: List[Dict[str, Any]] = []
        query = {**params, "limit": PAGE_LIMIT}
        for _ in range(MAX_PAGES):
            body = await self.api.get(path, params=query)
            page = body.get("data", [])
            items.extend(page)
            if not body.get("has_more") or not page:
                break
            query["starting_after"] = page[-1]["id"]
        return items

    async def fetch(self) -> IntegrationResult:
        now = datetime.now(timezone.utc)
        since = int((now - timedelta(days=WINDOW_DAYS)).timestamp())

        subscriptions = await self.list_all("subscriptions", {"status": "active"})
        customers = await self.list_all("customers", {"created[gte]": since})
        charges = await self.list_all("charges", {"created[gte]": since})

        mrr = 0.0
        subscribers = set()
        for sub in subscriptions:
            subscribers.add(sub.get("customer"))
            for item in (sub.get("items") or {}).get("data", []):
                mrr += monthly_amount(item)

        revenue = 0.0
        for charge in charges:
            if charge.get("status") != "succeeded" or not charge.get("paid", True):
                continue
            amount = ((charge.get("amount") or 0) - (charge.get("amount_refunded") or 0)) / 100
            revenue += amount

        data = {
            MetricName.MRR: round(mrr, 2),
            MetricName.ACTIVE_USERS: float(len(subscribers - {None})),
            MetricName.USER_SIGNUPS: float(len(customers)),
            MetricName.REVENUE: round(revenue, 2),
        }
        logger.info(
            f"Stripe: {len(subscriptions)} active subscriptions, {len(charges)} charges",
            extra={"user_id": self.user_id},
        )
        return IntegrationResult.ok(data)

    async def check_connection(self) -> None:
        await self.api.get("balance")
