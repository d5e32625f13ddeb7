from __future__ import annotations

import os

from sqlalchemy.exc import OperationalError, ProgrammingError

from toolforge.services.system_health import (
    _memory_snapshot,
    classify_db_error,
    error_rate,
    format_uptime,
    overall_status,
)


def test_overall_status_maps_database_state() -> None:
    assert overall_status("connected") == "healthy"
    assert overall_status("degraded") == "warning"
    assert overall_status("disconnected") == "critical"
    assert overall_status("unknown") == "critical"


def test_format_uptime_uses_hours_and_minutes() -> None:
    assert format_uptime(0) == "0h 0m"
    assert format_uptime(59) == "0h 0m"
    assert format_uptime(3 * 3600 + 25 * 60 + 7) == "3h 25m"
    assert format_uptime(50 * 3600) == "50h 0m"


def test_error_rate_is_percentage_rounded() -> None:
    assert error_rate(0, 0) == 0.0
    assert error_rate(1, 3) == 33.33
    assert error_rate(5, 5) == 100.0


def test_classify_db_error_separates_outages_from_query_failures() -> None:
    outage = OperationalError("SELECT 1", {}, Exception("connection refused"))
    assert classify_db_error(outage) == "disconnected"
    broken_query = ProgrammingError("SELECT nope", {}, Exception("syntax error"))
    assert classify_db_error(broken_query) == "degraded"


def test_memory_snapshot_reads_current_rss_from_statm(tmp_path) -> None:
    statm = tmp_path / "statm"
    statm.write_text("5000 1200 300 10 0 900 0\n", encoding="ascii")
    snapshot = _memory_snapshot(str(statm))
    assert snapshot["rss_bytes"] == 1200 * os.sysconf("SC_PAGE_SIZE")
    assert snapshot["peak_rss_bytes"] > 0


def test_memory_snapshot_without_procfs_keeps_peak_only(tmp_path) -> None:
    snapshot = _memory_snapshot(str(tmp_path / "missing"))
    assert snapshot["rss_bytes"] is None
    assert snapshot["peak_rss_bytes"] > 0
