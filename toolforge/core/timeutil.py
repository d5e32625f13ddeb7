from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def isoformat_or_none(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_aware(value).isoformat()
