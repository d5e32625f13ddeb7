"""Admin activity feed: bucket audit activity into a readable timeline.

Everything here is pure so the grouping rules can be exercised without a database.
Calendar math (Today, Yesterday, This Week) runs in the feed timezone; naive
datetimes are interpreted as UTC, which is how SQLite hands them back.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from toolforge.core.timeutil import ensure_aware


TODAY = "Today"
YESTERDAY = "Yesterday"
THIS_WEEK = "This Week"
EARLIER = "Earlier"
GROUP_ORDER: tuple[str, ...] = (TODAY, YESTERDAY, THIS_WEEK, EARLIER)

DEFAULT_ACTOR_NAME = "System"
DEFAULT_ACTION_TEXT = "performed an action"

# Largest unit first; the first unit not exceeding the elapsed time wins.
_RELATIVE_UNITS: tuple[tuple[str, int], ...] = (
    ("year", 31_536_000),
    ("month", 2_592_000),
    ("week", 604_800),
    ("day", 86_400),
    ("hour", 3_600),
    ("minute", 60),
    ("second", 1),
)
_ADJACENT_PHRASES: dict[str, tuple[str, str]] = {
    "day": ("yesterday", "tomorrow"),
    "week": ("last week", "next week"),
    "month": ("last month", "next month"),
    "year": ("last year", "next year"),
}
_METADATA_DETAIL_KEYS: tuple[str, ...] = (
    "summary",
    "details",
    "description",
    "resourceName",
    "resource_name",
    "targetName",
    "target_name",
    "message",
    "note",
    "info",
)


@dataclass(frozen=True)
class ActivityActor:
    id: str | None = None
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class ActivityEntry:
    created_at: datetime
    id: str | None = None
    action: str | None = None
    description: str | None = None
    actor: ActivityActor | None = None
    resource_type: str | None = None
    resource_name: str | None = None
    status: str | None = None
    target: str | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ActivityGroup:
    label: str
    items: list[ActivityEntry] = field(default_factory=list)


@dataclass(frozen=True)
class TimelineItem:
    id: str | None
    created_at: datetime
    relative_time: str
    icon: str
    description: str
    detail: str | None
    actor_name: str
    actor_initials: str | None
    avatar_url: str | None
    status: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "relative_time": self.relative_time,
            "icon": self.icon,
            "description": self.description,
            "detail": self.detail,
            "actor_name": self.actor_name,
            "actor_initials": self.actor_initials,
            "avatar_url": self.avatar_url,
            "status": self.status,
        }


def resolve_timezone(name: str | None) -> tzinfo:
    # Fall back to UTC for blank or unknown zone names rather than failing the feed.
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _week_start(day: datetime) -> datetime:
    # Weeks start on Monday.
    return day - timedelta(days=day.weekday())


def _start_of_day(value: datetime, tz: tzinfo) -> datetime:
    local = ensure_aware(value).astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def date_group_label(value: datetime, *, now: datetime, tz: tzinfo = timezone.utc) -> str:
    today = _start_of_day(now, tz)
    target = _start_of_day(value, tz)
    if target.date() == today.date():
        return TODAY
    if target.date() == (today.date() - timedelta(days=1)):
        return YESTERDAY
    if _week_start(today).date() == _week_start(target).date():
        return THIS_WEEK
    return EARLIER


def group_activities(
    entries: Iterable[ActivityEntry],
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> list[ActivityGroup]:
    """Sort newest first and partition into the fixed bucket order.

    Every entry lands in exactly one bucket; empty buckets are omitted.
    """
    ordered = sorted(entries, key=lambda entry: ensure_aware(entry.created_at), reverse=True)
    buckets: dict[str, list[ActivityEntry]] = {label: [] for label in GROUP_ORDER}
    for entry in ordered:
        buckets[date_group_label(entry.created_at, now=now, tz=tz)].append(entry)
    return [ActivityGroup(label=label, items=buckets[label]) for label in GROUP_ORDER if buckets[label]]


def _round_half_up(value: float) -> int:
    # Halves round toward +inf, so -1.5 becomes -1 ("yesterday", not "2 days ago").
    return math.floor(value + 0.5)


def format_relative_time(value: datetime, *, now: datetime) -> str:
    diff_seconds = _round_half_up((ensure_aware(value) - ensure_aware(now)).total_seconds())
    abs_diff = abs(diff_seconds)
    unit, unit_seconds = _RELATIVE_UNITS[-1]
    for candidate, seconds in _RELATIVE_UNITS:
        if abs_diff >= seconds:
            unit, unit_seconds = candidate, seconds
            break
    amount = _round_half_up(diff_seconds / unit_seconds)
    if amount == 0:
        return "just now"
    if abs(amount) == 1 and unit in _ADJACENT_PHRASES:
        past, future = _ADJACENT_PHRASES[unit]
        return past if amount < 0 else future
    count = abs(amount)
    label = unit if count == 1 else f"{unit}s"
    if amount < 0:
        return f"{count} {label} ago"
    return f"in {count} {label}"


def get_initials(name: str | None) -> str:
    parts = (name or "").split()
    if not parts:
        return "??"
    if len(parts) == 1:
        return parts[0][0].upper()
    return f"{parts[0][0]}{parts[-1][0]}".upper()


def activity_icon_key(resource_type: str | None, action: str | None) -> str:
    resource = (resource_type or "").lower()
    action_text = (action or "").lower()
    if "user" in resource or "user" in action_text:
        return "user"
    if "tool" in resource or "tool" in action_text:
        return "tool"
    if "workflow" in resource or "workflow" in action_text:
        return "workflow"
    if "news" in resource or "article" in action_text:
        return "news"
    if any(token in resource for token in ("forum", "thread", "post")) or "forum" in action_text:
        return "forum"
    if "system" in resource or any(
        token in action_text for token in ("system", "health", "login", "error")
    ):
        return "system"
    return "default"


def extract_metadata_detail(metadata: Mapping[str, Any] | None) -> str | None:
    if not metadata:
        return None
    for key in _METADATA_DETAIL_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def build_timeline_item(entry: ActivityEntry, *, now: datetime) -> TimelineItem:
    actor = entry.actor or ActivityActor()
    actor_name = actor.name or DEFAULT_ACTOR_NAME
    description = entry.description or f"{actor_name} {entry.action or DEFAULT_ACTION_TEXT}"
    detail = entry.resource_name or entry.target or extract_metadata_detail(entry.metadata)
    return TimelineItem(
        id=entry.id,
        created_at=ensure_aware(entry.created_at),
        relative_time=format_relative_time(entry.created_at, now=now),
        icon=activity_icon_key(entry.resource_type, entry.action),
        description=description,
        detail=detail,
        actor_name=actor_name,
        # Avatars replace initials when present.
        actor_initials=None if actor.avatar_url else get_initials(actor_name),
        avatar_url=actor.avatar_url,
        status=entry.status,
    )


def build_feed(
    entries: Iterable[ActivityEntry],
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> list[dict[str, Any]]:
    return [
        {
            "label": group.label,
            "items": [build_timeline_item(entry, now=now).to_dict() for entry in group.items],
        }
        for group in group_activities(entries, now=now, tz=tz)
    ]


def parse_details(details: str | None) -> dict[str, Any] | None:
    # Audit details are usually JSON objects; anything else is kept as free text.
    if not details:
        return None
    try:
        parsed = json.loads(details)
    except ValueError:
        return {"details": details}
    if isinstance(parsed, dict):
        return parsed
    return {"details": details}


def entry_from_audit_log(log: Any, actor: Any | None = None) -> ActivityEntry:
    """Adapt an AuditLog row (and its optional User) into an ActivityEntry."""
    activity_actor = None
    if actor is not None:
        activity_actor = ActivityActor(
            id=actor.id,
            name=actor.name or actor.email,
            email=actor.email,
            avatar_url=actor.profile_picture_url,
            role=actor.role,
        )
    metadata = parse_details(log.details)
    return ActivityEntry(
        id=log.id,
        created_at=ensure_aware(log.created_at),
        action=log.action,
        actor=activity_actor,
        resource_type=log.resource,
        metadata=metadata,
    )
