"""Analytics event helpers: property normalization, date ranges and the summary view."""

from __future__ import annotations

import json
from datetime import datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.timeutil import ensure_aware, isoformat_or_none, utc_now
from toolforge.domain.models import AnalyticsEvent
from toolforge.persistence.repos import analytics as analytics_repo


DEFAULT_LOOKBACK_DAYS = 30
SUMMARY_DAILY_WINDOW_DAYS = 7
SUMMARY_TOP_LIMIT = 10


class DateRangeError(ValueError):
    """Raised when a requested analytics date range is invalid."""


def normalize_properties(value: Any) -> dict[str, Any]:
    """Coerce an arbitrary ``properties`` payload into a JSON object.

    ``None`` becomes ``{}``; strings are parsed as JSON when possible; anything that
    is not an object ends up under a ``value`` key.
    """
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {"value": value}
        if isinstance(parsed, dict):
            return parsed
        return {"value": parsed}
    if isinstance(value, dict):
        return value
    return {"value": value}


def parse_properties(value: str | None) -> Any:
    # Stored properties are JSON text; fall back to the raw string for legacy rows.
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def parse_timestamp(value: str | None) -> datetime | None:
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {value}") from exc
    return ensure_aware(parsed)


def parse_date_param(value: str | None) -> datetime | None:
    """Parse a ``start_date``/``end_date`` query value (date or datetime)."""
    if value is None or not value.strip():
        return None
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise DateRangeError(f"Invalid date value provided: {value}") from exc


def resolve_date_range(
    start: datetime | None,
    end: datetime | None,
    *,
    now: datetime | None = None,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> tuple[datetime, datetime]:
    # Whole days: start at 00:00:00, end at 23:59:59.999999 (UTC).
    end_day = ensure_aware(end).astimezone(timezone.utc).date() if end else (now or utc_now()).date()
    end_dt = datetime.combine(end_day, time.max, tzinfo=timezone.utc)
    if start is not None:
        start_day = ensure_aware(start).astimezone(timezone.utc).date()
    else:
        start_day = end_day - timedelta(days=lookback_days - 1)
    start_dt = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    if start_dt > end_dt:
        raise DateRangeError("Start date must be before end date")
    return start_dt, end_dt


def split_event_names(values: list[str] | None) -> list[str]:
    # Accept repeated params and comma-separated values; keep first-seen order.
    names: list[str] = []
    for raw in values or []:
        for part in raw.split(","):
            name = part.strip()
            if name and name not in names:
                names.append(name)
    return names


def bucket_by_day(timestamps: list[datetime]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for value in timestamps:
        key = ensure_aware(value).astimezone(timezone.utc).date().isoformat()
        counts[key] = counts.get(key, 0) + 1
    return counts


def serialize_event(event: AnalyticsEvent, *, include_client: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": event.id,
        "event_name": event.event_name,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "properties": parse_properties(event.properties),
        "page": event.page,
        "referrer": event.referrer,
        "created_at": isoformat_or_none(event.created_at),
    }
    if include_client:
        payload["user_agent"] = event.user_agent
        payload["ip_address"] = event.ip_address
    return payload


async def build_summary(session: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    """Aggregate totals, top events/pages, daily counts and recent events."""
    current = now or utc_now()
    total_events = await analytics_repo.count_events(session)
    unique_users = await analytics_repo.count_unique_users(session)
    top_events = await analytics_repo.top_event_names(session, limit=SUMMARY_TOP_LIMIT)
    top_pages = await analytics_repo.top_pages(session, limit=SUMMARY_TOP_LIMIT)
    since = current - timedelta(days=SUMMARY_DAILY_WINDOW_DAYS)
    timestamps = await analytics_repo.event_timestamps_since(session, since)
    recent = await analytics_repo.recent_events(session, limit=SUMMARY_TOP_LIMIT)
    return {
        "totals": {
            "events": total_events,
            "unique_users": unique_users,
            "events_per_user": (total_events / unique_users) if unique_users else None,
        },
        "top_events": [{"event_name": name, "count": count} for name, count in top_events],
        "top_pages": [{"page": page, "count": count} for page, count in top_pages],
        "daily_events": bucket_by_day(timestamps),
        # Recent events omit client fingerprints.
        "recent_events": [serialize_event(event, include_client=False) for event in recent],
        "generated_at": current.isoformat(),
    }
