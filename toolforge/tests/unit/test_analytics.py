from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from toolforge.services.analytics import (
    DateRangeError,
    bucket_by_day,
    normalize_properties,
    parse_date_param,
    parse_timestamp,
    resolve_date_range,
    split_event_names,
)


NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)


def test_normalize_properties_coerces_to_object() -> None:
    assert normalize_properties(None) == {}
    assert normalize_properties({"plan": "pro"}) == {"plan": "pro"}
    assert normalize_properties('{"a": 1}') == {"a": 1}
    assert normalize_properties("[1, 2]") == {"value": [1, 2]}
    assert normalize_properties("plain text") == {"value": "plain text"}
    assert normalize_properties(42) == {"value": 42}


def test_parse_timestamp_accepts_zulu_and_naive_values() -> None:
    assert parse_timestamp(None) is None
    assert parse_timestamp("   ") is None
    assert parse_timestamp("2026-10-14T12:30:00Z") == datetime(2026, 10, 14, 12, 30, tzinfo=timezone.utc)
    assert parse_timestamp("2026-10-14T12:30:00").tzinfo == timezone.utc
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_parse_date_param_raises_range_error() -> None:
    assert parse_date_param("") is None
    with pytest.raises(DateRangeError):
        parse_date_param("14/10/2026")


def test_resolve_date_range_defaults_to_thirty_whole_days() -> None:
    start, end = resolve_date_range(None, None, now=NOW)
    assert end == datetime.combine(NOW.date(), time.max, tzinfo=timezone.utc)
    assert start == datetime(2026, 9, 15, tzinfo=timezone.utc)


def test_resolve_date_range_expands_to_whole_days() -> None:
    start, end = resolve_date_range(
        datetime(2026, 10, 1, 13, 45, tzinfo=timezone.utc),
        datetime(2026, 10, 2, 1, 0, tzinfo=timezone.utc),
    )
    assert start == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert end.date().isoformat() == "2026-10-02"
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


def test_resolve_date_range_rejects_inverted_range() -> None:
    with pytest.raises(DateRangeError):
        resolve_date_range(
            datetime(2026, 10, 5, tzinfo=timezone.utc),
            datetime(2026, 10, 4, tzinfo=timezone.utc),
        )


def test_split_event_names_handles_repeats_and_commas() -> None:
    assert split_event_names(None) == []
    assert split_event_names(["page_view, signup", "signup", " ", "tool_open"]) == [
        "page_view",
        "signup",
        "tool_open",
    ]


def test_bucket_by_day_counts_in_utc() -> None:
    counts = bucket_by_day(
        [
            datetime(2026, 10, 13, 23, 30, tzinfo=timezone.utc),
            datetime(2026, 10, 14, 0, 10),
            datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc),
        ]
    )
    assert counts == {"2026-10-13": 1, "2026-10-14": 2}
