"""MetricSync — Tabular Parsing + Generic / CSV Adapters.

Spreadsheet-like providers all reduce to a header row plus data rows. This
module maps headers to canonical metrics, finds the date column, parses
dates and numbers, and folds the rows into an IntegrationResult:

  - every (row, metric column) with a numeric cell → one historical point
  - the last row seen for a metric → that metric's value in ``data``

Unrecognised headers and non-numeric cells are skipped and logged.
"""

import csv
import io
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from dateutil import parser as date_parser

from metricsync.connectors.base import ProviderAdapter
from metricsync.core.errors import ParseError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import MetricName, ProviderType, metric_for_header
from metricsync.models.integration_models import HistoricalDataPoint, IntegrationResult

logger = get_logger("connectors.tabular")

DATE_HEADER_KEYWORDS = ("date", "time", "period", "month", "week", "day")

# Spreadsheet serial day 0. Using Dec 30 rather than Dec 31 absorbs the
# 1900 leap-year bug carried by spreadsheet serial numbers.
SERIAL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)
SERIAL_MIN = 1000

ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")

Row = Sequence[Any]


# ─────────────────────────────────────────────
# HEADERS
# ─────────────────────────────────────────────


def map_headers(headers: Row, skip: Sequence[int] = ()) -> Dict[int, MetricName]:
    """Column index → metric for every header with a known synonym."""
    mapping: Dict[int, MetricName] = {}
    seen: set[MetricName] = set()
    for idx, header in enumerate(headers):
        if idx in skip:
            continue
        metric = metric_for_header(str(header or ""))
        if metric is None:
            if str(header or "").strip():
                logger.info(f"Skipping unrecognised column '{header}'")
            continue
        if metric in seen:
            logger.info(f"Column '{header}' duplicates {metric.value}, keeping the first")
            continue
        seen.add(metric)
        mapping[idx] = metric
    return mapping


def detect_date_column(headers: Row) -> Optional[int]:
    """Index of the first header that looks like a date/period column.

    Headers that name a metric ("Daily Active Users", "Monthly Recurring
    Revenue") are never taken as the date column.
    """
    for idx, header in enumerate(headers):
        text = str(header or "").strip().lower()
        if metric_for_header(text) is not None:
            continue
        if any(keyword in text for keyword in DATE_HEADER_KEYWORDS):
            return idx
    return None


# ─────────────────────────────────────────────
# CELLS
# ─────────────────────────────────────────────


def parse_number(cell: Any) -> Optional[float]:
    """Numeric value of a cell, tolerating currency/percent formatting."""
    if cell is None or isinstance(cell, bool):
        return None
    if isinstance(cell, (int, float)):
        return float(cell)
    text = str(cell).strip()
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    text = text.strip("()").replace("$", "").replace(",", "").replace("%", "").strip()
    try:
        value = float(text)
    except ValueError:
        return None
    return -value if negative else value


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(cell: Any, now: Optional[datetime] = None) -> datetime:
    """Parse a date cell: ISO prefix → M/D/YYYY → serial number → free-form → now."""
    now = now or datetime.now(timezone.utc)
    if cell is None or (isinstance(cell, str) and not cell.strip()):
        return now
    text = str(cell).strip()

    match = ISO_PREFIX.match(text)
    if match:
        try:
            return _aware(datetime.fromisoformat(text))
        except ValueError:
            try:
                year, month, day = (int(g) for g in match.groups())
                return datetime(year, month, day, tzinfo=timezone.utc)
            except ValueError:
                pass

    match = US_DATE.match(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
        if year < 100:
            year += 2000
        try:
            return datetime(month=month, day=day, year=year, tzinfo=timezone.utc)
        except ValueError:
            pass

    try:
        serial = float(text)
    except ValueError:
        serial = None
    if serial is not None and serial > SERIAL_MIN:
        try:
            return SERIAL_EPOCH + timedelta(days=serial)
        except OverflowError:
            pass

    try:
        return _aware(date_parser.parse(text))
    except (ValueError, OverflowError) as e:
        logger.warning(f"Unparseable date '{text}', using current time: {e}")
    return now


# ─────────────────────────────────────────────
# TABLE → RESULT
# ─────────────────────────────────────────────


def parse_table(rows: List[Row], now: Optional[datetime] = None) -> IntegrationResult:
    """Fold a header row + data rows into an IntegrationResult."""
    now = now or datetime.now(timezone.utc)
    if not rows:
        logger.warning("Tabular source returned no rows")
        return IntegrationResult.ok({})

    headers, body = rows[0], rows[1:]
    date_idx = detect_date_column(headers)
    columns = map_headers(headers, skip=() if date_idx is None else (date_idx,))
    if not columns:
        logger.warning(f"No recognised metric columns in headers {list(headers)}")
        return IntegrationResult.ok({})

    if date_idx is None:
        logger.info("No date column found, stamping rows with the current time")

    latest: Dict[MetricName, float] = {}
    history: List[HistoricalDataPoint] = []
    skipped = 0

    for row in body:
        if not any(str(c).strip() for c in row if c is not None):
            continue
        row_date = now
        if date_idx is not None and date_idx < len(row):
            row_date = parse_date(row[date_idx], now=now)
        for idx, metric in columns.items():
            value = parse_number(row[idx]) if idx < len(row) else None
            if value is None:
                skipped += 1
                continue
            history.append(HistoricalDataPoint(metric=metric, value=value, date=row_date))
            latest[metric] = value

    if skipped:
        logger.info(f"Skipped {skipped} empty or non-numeric metric cells")
    return IntegrationResult.ok(latest, history)


def parse_csv(text: str) -> List[List[str]]:
    """Split a raw CSV blob into rows, dropping blank lines."""
    if text is None:
        raise ParseError("CSV data is empty")
    try:
        reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
        return [row for row in reader if any(cell.strip() for cell in row)]
    except csv.Error as e:
        raise ParseError(f"Malformed CSV: {e}") from e


def records_to_rows(records: List[Dict[str, Any]], trailing: Sequence[str] = ()) -> List[List[Any]]:
    """Turn a list of field dicts into a header row + data rows.

    Field order follows first appearance; ``trailing`` columns go last.
    """
    headers: List[str] = []
    for record in records:
        for key in record:
            if key not in headers and key not in trailing:
                headers.append(key)
    headers.extend(k for k in trailing if any(k in r for r in records))
    rows: List[List[Any]] = [list(headers)]
    for record in records:
        rows.append([record.get(h) for h in headers])
    return rows


# ─────────────────────────────────────────────
# ADAPTERS
# ─────────────────────────────────────────────


class TabularAdapter(ProviderAdapter):
    """Generic tabular provider: rows supplied inline in the credential payload.

    Accepts ``{"rows": [[...header...], [...], ...]}`` (``values`` is an
    alias) or ``{"headers": [...], "rows": [[...], ...]}``. Also the fallback
    for spreadsheet and CSV sources whose payload already carries rows.
    """

    provider = ProviderType.MANUAL

    def __init__(self, credentials: str, user_id: str, client=None, provider: Optional[ProviderType] = None):
        if provider is not None:
            self.provider = provider
        super().__init__(credentials, user_id, client=client)

    def validate(self) -> None:
        self.require("rows", "values")

    async def fetch_rows(self) -> List[Row]:
        rows = list(self.credential("rows", "values") or [])
        headers = self.payload.get("headers")
        if headers:
            rows = [headers, *rows]
        return rows

    async def fetch(self) -> IntegrationResult:
        rows = await self.fetch_rows()
        return parse_table(rows)

    async def check_connection(self) -> None:
        return None


class CsvAdapter(TabularAdapter):
    """Flat-file provider: the raw CSV text lives in the credential payload."""

    provider = ProviderType.CSV

    def validate(self) -> None:
        self.require("csvData")

    async def fetch_rows(self) -> List[Row]:
        return parse_csv(self.require("csvData"))

    async def check_connection(self) -> None:
        rows = parse_csv(self.require("csvData"))
        if len(rows) < 2:
            raise ParseError("CSV must have a header row and at least one data row")


def validate_csv_upload(text: str, max_bytes: int) -> List[List[str]]:
    """Upload-time checks: size limit, header row, at least one data row."""
    if not text or not text.strip():
        raise ParseError("No CSV content provided")
    if len(text.encode("utf-8")) > max_bytes:
        raise ParseError(f"CSV file must be smaller than {max_bytes // (1024 * 1024)}MB")
    rows = parse_csv(text)
    if len(rows) < 2:
        raise ParseError("CSV file must have at least a header row and one data row")
    return rows
