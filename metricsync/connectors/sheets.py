"""MetricSync — Google Sheets Adapter.

Reads a value range with the stored OAuth access token and hands the rows
to the shared tabular parser. Values are requested unformatted, so date
cells arrive as spreadsheet serial numbers.
"""

from typing import Dict, List
from urllib.parse import quote

from metricsync.config import settings
from metricsync.connectors.base import HTTPProviderAdapter
from metricsync.connectors.tabular import Row, parse_table
from metricsync.core.metric_registry import ProviderType
from metricsync.models.integration_models import IntegrationResult

DEFAULT_RANGE = "A1:Z1000"


class GoogleSheetsAdapter(HTTPProviderAdapter):
    provider = ProviderType.GOOGLE_SHEETS

    def validate(self) -> None:
        self.require("accessToken", "access_token")
        self.require("spreadsheetId", "spreadsheet_id")

    def base_url(self) -> str:
        return settings.sheets_base_url

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.require('accessToken', 'access_token')}"}

    @property
    def spreadsheet_id(self) -> str:
        return self.require("spreadsheetId", "spreadsheet_id")

    async def fetch_rows(self) -> List[Row]:
        cell_range = self.credential("range", "sheetRange", default=DEFAULT_RANGE)
        body = await self.api.get(
            f"spreadsheets/{self.spreadsheet_id}/values/{quote(cell_range, safe='')}",
            params={
                "valueRenderOption": "UNFORMATTED_VALUE",
                "dateTimeRenderOption": "SERIAL_NUMBER",
            },
        )
        return body.get("values", [])

    async def fetch(self) -> IntegrationResult:
        return parse_table(await self.fetch_rows())

    async def check_connection(self) -> None:
        await self.api.get(
            f"spreadsheets/{self.spreadsheet_id}", params={"fields": "spreadsheetId"}
        )
