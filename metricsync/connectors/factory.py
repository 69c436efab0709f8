"""MetricSync — Adapter Factory.

Closed registry from provider type to adapter class. The import-time check
below fails fast if a ProviderType is added without an adapter.
"""

from typing import Dict, Optional, Type

import httpx

from metricsync.connectors.airtable import AirtableAdapter
from metricsync.connectors.analytics import GoogleAnalyticsAdapter
from metricsync.connectors.base import ProviderAdapter, parse_credential_payload
from metricsync.connectors.notion import NotionAdapter
from metricsync.connectors.sheets import GoogleSheetsAdapter
from metricsync.connectors.stripe import StripeAdapter
from metricsync.connectors.tabular import CsvAdapter, TabularAdapter
from metricsync.core.errors import UnsupportedProviderError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import ProviderType

logger = get_logger("connectors.factory")

ADAPTERS: Dict[ProviderType, Type[ProviderAdapter]] = {
    ProviderType.STRIPE: StripeAdapter,
    ProviderType.GOOGLE_ANALYTICS: GoogleAnalyticsAdapter,
    ProviderType.AIRTABLE: AirtableAdapter,
    ProviderType.GOOGLE_SHEETS: GoogleSheetsAdapter,
    ProviderType.MANUAL: TabularAdapter,
    ProviderType.CSV: CsvAdapter,
    ProviderType.NOTION: NotionAdapter,
}

# Providers whose payload may carry rows inline instead of a remote locator
TABULAR_FALLBACK = {
    ProviderType.GOOGLE_SHEETS: ("spreadsheetId", "spreadsheet_id"),
    ProviderType.CSV: ("csvData",),
}

_missing = set(ProviderType) - set(ADAPTERS)
if _missing:
    raise RuntimeError(f"No adapter registered for: {sorted(p.value for p in _missing)}")


def resolve_provider(provider: ProviderType | str) -> ProviderType:
    try:
        return ProviderType(provider)
    except ValueError:
        raise UnsupportedProviderError(str(provider)) from None


def build_adapter(
    provider: ProviderType | str,
    credentials: str,
    user_id: str,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderAdapter:
    """Construct the adapter for a provider tag.

    Raises UnsupportedProviderError for unknown tags and ValidationError when
    the credential payload is missing required fields.
    """
    provider = resolve_provider(provider)
    adapter_cls = ADAPTERS[provider]

    locator_keys = TABULAR_FALLBACK.get(provider)
    if locator_keys:
        payload = parse_credential_payload(credentials)
        has_locator = any(payload.get(k) for k in locator_keys)
        if not has_locator and (payload.get("rows") or payload.get("values")):
            logger.info(f"{provider.value} payload carries inline rows, using tabular adapter")
            return TabularAdapter(credentials, user_id, client=client, provider=provider)

    return adapter_cls(credentials, user_id, client=client)
