from __future__ import annotations

import logging
import os
import platform
import resource
import sys
import time
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.timeutil import utc_now
from toolforge.persistence.db import pool_stats
from toolforge.persistence.repos import audit as audit_repo


logger = logging.getLogger(__name__)

_PROCESS_STARTED = time.monotonic()

DB_CONNECTED = "connected"
DB_DEGRADED = "degraded"
DB_DISCONNECTED = "disconnected"

_OVERALL_STATUS = {
    DB_CONNECTED: "healthy",
    DB_DEGRADED: "warning",
    DB_DISCONNECTED: "critical",
}


def overall_status(database_status: str) -> str:
    return _OVERALL_STATUS.get(database_status, "critical")


def classify_db_error(exc: Exception) -> str:
    # Connection-level failures mean the database is unreachable; anything else is degraded.
    if isinstance(exc, (OperationalError, InterfaceError)):
        return DB_DISCONNECTED
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return DB_DISCONNECTED
    return DB_DEGRADED


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600}h {(total % 3600) // 60}m"


def error_rate(errors: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(errors / total * 100, 2)


def _memory_snapshot(statm_path: str = "/proc/self/statm") -> dict[str, int | None]:
    """Current and peak resident memory of this process, in bytes.

    Current RSS comes from ``/proc/self/statm`` (resident pages, second field) and is
    ``None`` where procfs is missing. ``ru_maxrss`` is the peak, in kilobytes on Linux
    and bytes on macOS.
    """
    try:
        with open(statm_path, encoding="ascii") as handle:
            resident_pages = int(handle.read().split()[1])
        rss_bytes = resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        rss_bytes = None
    usage = resource.getrusage(resource.RUSAGE_SELF)
    scale = 1 if sys.platform == "darwin" else 1024
    return {"rss_bytes": rss_bytes, "peak_rss_bytes": int(usage.ru_maxrss) * scale}


async def probe_database(session: AsyncSession) -> tuple[str, float | None]:
    start = time.perf_counter()
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        elapsed = (time.perf_counter() - start) * 1000.0
        logger.warning("system_health_db_probe_failed", exc_info=exc)
        await session.rollback()
        return classify_db_error(exc), (round(elapsed, 2) if elapsed > 0 else None)
    return DB_CONNECTED, round((time.perf_counter() - start) * 1000.0, 2)


async def collect_system_health(session: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    current = now or utc_now()
    database_status, latency_ms = await probe_database(session)

    errors_last_hour = 0
    logs_last_hour = 0
    if database_status == DB_CONNECTED:
        since = current - timedelta(hours=1)
        logs_last_hour = await audit_repo.count_since(session, since)
        errors_last_hour = await audit_repo.count_since(session, since, errors_only=True)

    uptime_seconds = time.monotonic() - _PROCESS_STARTED
    return {
        "status": overall_status(database_status),
        "timestamp": current.isoformat(),
        "database": {"status": database_status, "latency_ms": latency_ms, "pool": pool_stats()},
        "uptime": {"seconds": round(uptime_seconds, 3), "human_readable": format_uptime(uptime_seconds)},
        "memory": _memory_snapshot(),
        "process": {
            "pid": os.getpid(),
            "python_version": platform.python_version(),
            "platform": sys.platform,
        },
        "errors": {
            "last_hour_count": errors_last_hour,
            "last_hour_rate": error_rate(errors_last_hour, logs_last_hour),
        },
    }
