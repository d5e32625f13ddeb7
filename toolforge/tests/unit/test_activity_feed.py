from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from toolforge.services.activity_feed import (
    EARLIER,
    GROUP_ORDER,
    THIS_WEEK,
    TODAY,
    YESTERDAY,
    ActivityActor,
    ActivityEntry,
    activity_icon_key,
    build_feed,
    date_group_label,
    entry_from_audit_log,
    format_relative_time,
    get_initials,
    group_activities,
    resolve_timezone,
)


# Wednesday afternoon, UTC.
NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)


def _entry(entry_id: str, created_at: datetime) -> ActivityEntry:
    return ActivityEntry(id=entry_id, created_at=created_at, action="CREATE_TOOL", resource_type="Tool")


def test_date_group_labels_follow_calendar_days() -> None:
    assert date_group_label(NOW - timedelta(hours=5), now=NOW) == TODAY
    assert date_group_label(datetime(2026, 10, 13, 23, 59, tzinfo=timezone.utc), now=NOW) == YESTERDAY
    # Monday is still this week; Sunday belongs to the previous week.
    assert date_group_label(datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc), now=NOW) == THIS_WEEK
    assert date_group_label(datetime(2026, 10, 11, 8, 0, tzinfo=timezone.utc), now=NOW) == EARLIER


def test_group_activities_partitions_every_entry_once() -> None:
    entries = [
        _entry("earlier", datetime(2026, 9, 1, 12, 0, tzinfo=timezone.utc)),
        _entry("today-morning", datetime(2026, 10, 14, 9, 0, tzinfo=timezone.utc)),
        _entry("week", datetime(2026, 10, 12, 10, 0, tzinfo=timezone.utc)),
        _entry("today-afternoon", datetime(2026, 10, 14, 14, 0, tzinfo=timezone.utc)),
        _entry("yesterday", datetime(2026, 10, 13, 10, 0, tzinfo=timezone.utc)),
    ]
    groups = group_activities(entries, now=NOW)

    assert [group.label for group in groups] == list(GROUP_ORDER)
    ids = [item.id for group in groups for item in group.items]
    assert sorted(ids) == sorted(entry.id for entry in entries)
    assert len(ids) == len(set(ids))
    assert [item.id for item in groups[0].items] == ["today-afternoon", "today-morning"]


def test_group_activities_omits_empty_buckets() -> None:
    entries = [
        _entry("a", datetime(2026, 1, 1, tzinfo=timezone.utc)),
        _entry("b", datetime(2026, 10, 14, 1, 0, tzinfo=timezone.utc)),
    ]
    groups = group_activities(entries, now=NOW)
    assert [group.label for group in groups] == [TODAY, EARLIER]
    assert group_activities([], now=NOW) == []


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive = datetime(2026, 10, 14, 1, 0)
    assert date_group_label(naive, now=NOW) == TODAY


def test_feed_timezone_moves_day_boundaries() -> None:
    late_evening_new_york = datetime(2026, 10, 14, 2, 0, tzinfo=timezone.utc)
    assert date_group_label(late_evening_new_york, now=NOW) == TODAY
    assert date_group_label(late_evening_new_york, now=NOW, tz=ZoneInfo("America/New_York")) == YESTERDAY


def test_resolve_timezone_falls_back_to_utc() -> None:
    assert resolve_timezone(None) is timezone.utc
    assert resolve_timezone("Not/AZone") is timezone.utc
    assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")


def test_initials_use_first_and_last_tokens() -> None:
    assert get_initials("Ada Lovelace") == "AL"
    assert get_initials("Jean Claude Van Damme") == "JD"
    assert get_initials("plato") == "P"
    assert get_initials("   ") == "??"
    assert get_initials(None) == "??"


def test_relative_time_phrases() -> None:
    assert format_relative_time(NOW, now=NOW) == "just now"
    assert format_relative_time(NOW - timedelta(minutes=5), now=NOW) == "5 minutes ago"
    assert format_relative_time(NOW - timedelta(hours=3), now=NOW) == "3 hours ago"
    assert format_relative_time(NOW - timedelta(days=1), now=NOW) == "yesterday"
    assert format_relative_time(NOW + timedelta(days=1), now=NOW) == "tomorrow"
    assert format_relative_time(NOW - timedelta(days=3), now=NOW) == "3 days ago"


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(seconds=-5), "5 seconds ago"),
        (timedelta(seconds=-90), "1 minute ago"),
        (timedelta(minutes=-150), "2 hours ago"),
        (timedelta(hours=-36), "yesterday"),
        (timedelta(hours=3), "in 3 hours"),
        (timedelta(hours=1), "in 1 hour"),
        (timedelta(days=-7), "last week"),
        (timedelta(days=-14), "2 weeks ago"),
        (timedelta(days=14), "in 2 weeks"),
        (timedelta(days=30), "next month"),
        (timedelta(days=-90), "3 months ago"),
        (timedelta(days=-365), "last year"),
        (timedelta(days=-730), "2 years ago"),
    ],
)
def test_relative_time_units(offset: timedelta, expected: str) -> None:
    assert format_relative_time(NOW + offset, now=NOW) == expected


def test_future_timestamps_use_the_same_calendar_rules() -> None:
    # Friday of the current week, then the following Monday.
    assert date_group_label(datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc), now=NOW) == THIS_WEEK
    assert date_group_label(datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc), now=NOW) == EARLIER


def test_group_activities_keeps_input_order_for_equal_timestamps() -> None:
    moment = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
    entries = [_entry("first", moment), _entry("second", moment), _entry("third", moment)]
    groups = group_activities(entries, now=NOW)
    assert [item.id for item in groups[0].items] == ["first", "second", "third"]


def test_icon_keys_by_resource_and_action() -> None:
    assert activity_icon_key("User", "UPDATE_USER") == "user"
    assert activity_icon_key("Tool", "CREATE_TOOL") == "tool"
    assert activity_icon_key("Workflow", "DELETE_WORKFLOW") == "workflow"
    assert activity_icon_key("NewsArticle", "CREATE_NEWS_ARTICLE") == "news"
    assert activity_icon_key("ForumThread", "PIN_FORUM_THREAD") == "forum"
    assert activity_icon_key("System", "BACKUP") == "system"
    assert activity_icon_key("Billing", "CHARGE") == "default"


def test_build_feed_from_audit_rows() -> None:
    log = SimpleNamespace(
        id="log-1",
        created_at=NOW - timedelta(minutes=2),
        action="CREATE_TOOL",
        resource="Tool",
        details='{"tool_id": "t1", "resource_name": "PromptPad"}',
    )
    actor = SimpleNamespace(
        id="u1", name="Ada Lovelace", email="ada@example.com", profile_picture_url=None, role="ADMIN"
    )
    system_log = SimpleNamespace(
        id="log-2",
        created_at=NOW - timedelta(days=20),
        action="AUTH_FAILURE",
        resource="Auth",
        details="not json",
    )

    feed = build_feed(
        [entry_from_audit_log(log, actor), entry_from_audit_log(system_log)], now=NOW
    )

    assert [group["label"] for group in feed] == [TODAY, EARLIER]
    item = feed[0]["items"][0]
    assert item["description"] == "Ada Lovelace CREATE_TOOL"
    assert item["detail"] == "PromptPad"
    assert item["actor_initials"] == "AL"
    assert item["relative_time"] == "2 minutes ago"
    assert item["icon"] == "tool"

    system_item = feed[1]["items"][0]
    assert system_item["actor_name"] == "System"
    assert system_item["detail"] == "not json"


def test_avatar_suppresses_initials() -> None:
    entry = ActivityEntry(
        id="e1",
        created_at=NOW,
        action="UPDATE_USER",
        actor=ActivityActor(name="Grace Hopper", avatar_url="https://cdn.example.com/grace.png"),
    )
    item = build_feed([entry], now=NOW)[0]["items"][0]
    assert item["actor_initials"] is None
    assert item["avatar_url"] == "https://cdn.example.com/grace.png"
    assert item["relative_time"] == "just now"
