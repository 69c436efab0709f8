"""MetricSync — Airtable Adapter.

Workspace-database provider: lists every record of a table (offset
pagination), flattens the field dicts into rows, and parses them like a
spreadsheet. The record creation time is appended as a trailing column so
tables without their own date field still get dated points.
"""

from typing import Any, Dict, List
from urllib.parse import quote

from metricsync.config import settings
from metricsync.connectors.base import HTTPProviderAdapter
from metricsync.connectors.tabular import Row, parse_table, records_to_rows
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import ProviderType
from metricsync.models.integration_models import IntegrationResult

logger = get_logger("connectors.airtable")

PAGE_SIZE = 100
MAX_PAGES = 50
CREATED_COLUMN = "Created Time"


class AirtableAdapter(HTTPProviderAdapter):
    provider = ProviderType.AIRTABLE

    def validate(self) -> None:
        self.require("apiKey", "accessToken")
        self.require("baseId")
        self.require("tableName", "tableId")

    def base_url(self) -> str:
        return settings.airtable_base_url

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.require('apiKey', 'accessToken')}"}

    @property
    def table_path(self) -> str:
        table = self.require("tableName", "tableId")
        return f"{self.require('baseId')}/{quote(str(table), safe='')}"

    async def fetch_records(self) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"pageSize": PAGE_SIZE}
        view = self.credential("view")
        if view:
            params["view"] = view

        for _ in range(MAX_PAGES):
            body = await self.api.get(self.table_path, params=dict(params))
            for record in body.get("records", []):
                fields = dict(record.get("fields") or {})
                if record.get("createdTime"):
                    fields[CREATED_COLUMN] = record["createdTime"]
                records.append(fields)
            offset = body.get("offset")
            if not offset:
                break
            params["offset"] = offset

        logger.info(f"Fetched {len(records)} Airtable records", extra={"user_id": self.user_id})
        return records

    async def fetch_rows(self) -> List[Row]:
        records = await self.fetch_records()
        if not records:
            return []
        return records_to_rows(records, trailing=(CREATED_COLUMN,))

    async def fetch(self) -> IntegrationResult:
        return parse_table(await self.fetch_rows())

    async def check_connection(self) -> None:
        await self.api.get(self.table_path, params={"pageSize": 1})
