from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.config import get_settings
from toolforge.core.timeutil import ensure_aware, utc_now
from toolforge.domain.models import ForumPost, ForumThread, NewsArticle, Tool, UtilityUsage, Workflow
from toolforge.persistence.repos import users as users_repo


GROWTH_WINDOW_DAYS = 30


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def build_growth_trend(
    timestamps: Iterable[datetime],
    *,
    start: date,
    days: int = GROWTH_WINDOW_DAYS,
) -> list[dict[str, Any]]:
    # Every day in the window is present, zero-filled, oldest first.
    counts = {(start + timedelta(days=offset)).isoformat(): 0 for offset in range(days)}
    for value in timestamps:
        key = ensure_aware(value).astimezone(timezone.utc).date().isoformat()
        if key in counts:
            counts[key] += 1
    return [{"date": key, "count": count} for key, count in counts.items()]


def build_revenue_placeholder(paying_customers: int, currency: str) -> dict[str, Any]:
    # Detailed revenue needs invoice data the schema does not hold.
    return {
        "has_stripe_data": paying_customers > 0,
        "paying_customers": paying_customers,
        "mrr": None,
        "total_revenue": None,
        "currency": currency.lower(),
        "note": (
            "Stripe data detected but detailed revenue metrics require invoice integration."
            if paying_customers > 0
            else "No Stripe subscription data available."
        ),
    }


async def _count(session: AsyncSession, model: Any) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return int(result.scalar_one())


async def build_dashboard_stats(session: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    current = now or utc_now()
    today = current.astimezone(timezone.utc).date()
    seven_days_ago = _day_start(today - timedelta(days=7))
    thirty_days_ago = _day_start(today - timedelta(days=GROWTH_WINDOW_DAYS))

    total_users = await users_repo.count_users(session)
    signups = await users_repo.signup_timestamps_since(session, thirty_days_ago)
    usage_sum = await session.execute(select(func.coalesce(func.sum(UtilityUsage.count), 0)))
    total_utility_usage = int(usage_sum.scalar_one())
    paying = await users_repo.count_paying_customers(session)

    return {
        "users": {
            "total": total_users,
            "pro": await users_repo.count_users(session, subscription_tier="PRO"),
            "free": await users_repo.count_users(session, subscription_tier="FREE"),
            "new_in_last_7_days": await users_repo.count_users(session, created_since=seven_days_ago),
            "new_in_last_30_days": await users_repo.count_users(session, created_since=thirty_days_ago),
            # Window ends today so the newest signups always show.
            "growth_trend": build_growth_trend(signups, start=today - timedelta(days=GROWTH_WINDOW_DAYS - 1)),
        },
        "content": {
            "tools": await _count(session, Tool),
            "workflows": await _count(session, Workflow),
            "news_articles": await _count(session, NewsArticle),
            "forum_threads": await _count(session, ForumThread),
            "forum_posts": await _count(session, ForumPost),
        },
        "usage": {
            "total_utility_usage": total_utility_usage,
            "average_utility_usage_per_user": (total_utility_usage / total_users) if total_users else 0,
        },
        "revenue": build_revenue_placeholder(paying, get_settings().stripe_default_currency),
        "generated_at": current.isoformat(),
    }
