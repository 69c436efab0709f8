"""Tabular parsing and CSV adapter tests."""

import json
from datetime import datetime, timezone

import pytest

from metricsync.connectors.tabular import (
    CsvAdapter,
    TabularAdapter,
    detect_date_column,
    map_headers,
    parse_csv,
    parse_date,
    parse_number,
    parse_table,
    validate_csv_upload,
)
from metricsync.core.errors import ParseError, ValidationError
from metricsync.core.metric_registry import MetricName, ProviderType

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def test_three_row_csv_yields_six_points_and_last_row_wins():
    rows = [
        ["Date", "MRR", "Churn Rate"],
        ["2024-01-01", "10000", "2.5"],
        ["2024-02-01", "11000", "2.1"],
        ["2024-03-01", "12500", "1.9"],
    ]
    result = parse_table(rows, now=NOW)

    assert result.success
    assert len(result.historical_data) == 6
    assert result.data[MetricName.MRR] == 12500
    assert result.data[MetricName.CHURN_RATE] == 1.9
    assert result.metrics_synced == 2
    dates = sorted({p.date for p in result.historical_data})
    assert dates[0] == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_unknown_headers_are_skipped_not_fatal():
    rows = [["Date", "MRR", "Favourite Colour"], ["2024-01-01", "100", "blue"]]
    result = parse_table(rows, now=NOW)
    assert result.success
    assert list(result.data) == [MetricName.MRR]
    assert len(result.historical_data) == 1


def test_non_numeric_cells_are_skipped():
    rows = [["Date", "MRR"], ["2024-01-01", "n/a"], ["2024-01-02", "$1,200"]]
    result = parse_table(rows, now=NOW)
    assert len(result.historical_data) == 1
    assert result.data[MetricName.MRR] == 1200


def test_no_date_column_stamps_rows_with_now():
    rows = [["MRR", "Signups"], ["100", "5"]]
    result = parse_table(rows, now=NOW)
    assert {p.date for p in result.historical_data} == {NOW}


def test_no_recognised_columns_returns_empty_success():
    result = parse_table([["Foo", "Bar"], ["1", "2"]], now=NOW)
    assert result.success
    assert result.data == {}
    assert result.metrics_synced == 0


def test_zero_values_do_not_count_as_reported():
    rows = [["Date", "MRR", "Churn"], ["2024-01-01", "5000", "0"]]
    result = parse_table(rows, now=NOW)
    assert result.data[MetricName.CHURN_RATE] == 0
    assert result.metrics_synced == 1


def test_header_synonyms_are_case_and_space_insensitive():
    mapping = map_headers(["  Monthly Recurring Revenue ", "CHURN RATE (%)", "mrr"])
    assert mapping == {0: MetricName.MRR, 1: MetricName.CHURN_RATE}


@pytest.mark.parametrize(
    "headers,expected",
    [
        (["Date", "MRR"], 0),
        (["MRR", "Reporting Period"], 1),
        (["Daily Active Users", "Week"], 1),
        (["MRR", "Churn"], None),
    ],
)
def test_detect_date_column(headers, expected):
    assert detect_date_column(headers) == expected


@pytest.mark.parametrize(
    "cell,expected",
    [
        ("2024-03-05", datetime(2024, 3, 5, tzinfo=timezone.utc)),
        ("2024-03-05T10:30:00Z", datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc)),
        ("3/5/2024", datetime(2024, 3, 5, tzinfo=timezone.utc)),
        ("3/5/24", datetime(2024, 3, 5, tzinfo=timezone.utc)),
        (45356, datetime(2024, 3, 5, tzinfo=timezone.utc)),
        ("March 5, 2024", datetime(2024, 3, 5, tzinfo=timezone.utc)),
    ],
)
def test_parse_date_fallback_chain(cell, expected):
    assert parse_date(cell, now=NOW) == expected


def test_parse_date_falls_back_to_now():
    assert parse_date("not a date at all", now=NOW) == NOW
    assert parse_date("", now=NOW) == NOW


@pytest.mark.parametrize(
    "cell,expected",
    [("1,234.5", 1234.5), ("$99", 99.0), ("12%", 12.0), ("(50)", -50.0), (7, 7.0), ("", None), ("abc", None)],
)
def test_parse_number(cell, expected):
    assert parse_number(cell) == expected


def test_parse_csv_strips_bom_and_blank_lines():
    rows = parse_csv("\ufeffDate,MRR\n\n2024-01-01,100\n")
    assert rows == [["Date", "MRR"], ["2024-01-01", "100"]]


@pytest.mark.asyncio
async def test_csv_adapter_sync():
    payload = {"csvData": "Date,MRR,Churn Rate\n2024-01-01,100,2\n2024-02-01,150,1.5\n"}
    adapter = CsvAdapter(json.dumps(payload), "user-1")
    assert await adapter.test_connection() is True
    result = await adapter.sync()
    assert result.data[MetricName.MRR] == 150
    assert len(result.historical_data) == 4


@pytest.mark.asyncio
async def test_csv_adapter_header_only_fails_connection_test():
    adapter = CsvAdapter(json.dumps({"csvData": "Date,MRR\n"}), "user-1")
    assert await adapter.test_connection() is False


def test_csv_adapter_requires_csv_data():
    with pytest.raises(ValidationError):
        CsvAdapter(json.dumps({"fileName": "x.csv"}), "user-1")


@pytest.mark.asyncio
async def test_tabular_adapter_accepts_split_headers():
    payload = {"headers": ["Month", "Revenue"], "rows": [["2024-01", "900"], ["2024-02", "1000"]]}
    adapter = TabularAdapter(json.dumps(payload), "user-1", provider=ProviderType.GOOGLE_SHEETS)
    assert adapter.provider == ProviderType.GOOGLE_SHEETS
    result = await adapter.sync()
    assert result.data[MetricName.REVENUE] == 1000


def test_validate_csv_upload_limits():
    with pytest.raises(ParseError):
        validate_csv_upload("", max_bytes=100)
    with pytest.raises(ParseError):
        validate_csv_upload("Date,MRR\n", max_bytes=100)
    with pytest.raises(ParseError):
        validate_csv_upload("Date,MRR\n2024-01-01,1\n", max_bytes=5)
    assert len(validate_csv_upload("Date,MRR\n2024-01-01,1\n", max_bytes=100)) == 2
