from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import AnalyticsEvent


@dataclass
class EventFilters:
    start_date: datetime | None = None
    end_date: datetime | None = None
    event_names: list[str] = field(default_factory=list)
    user_id: str | None = None
    session_id: str | None = None
    page_path: str | None = None
    referrer: str | None = None
    search: str | None = None


def _apply_filters(stmt: Any, filters: EventFilters) -> Any:
    if filters.start_date is not None:
        stmt = stmt.where(AnalyticsEvent.created_at >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(AnalyticsEvent.created_at <= filters.end_date)
    if len(filters.event_names) == 1:
        stmt = stmt.where(AnalyticsEvent.event_name == filters.event_names[0])
    elif filters.event_names:
        stmt = stmt.where(AnalyticsEvent.event_name.in_(filters.event_names))
    if filters.user_id:
        stmt = stmt.where(AnalyticsEvent.user_id == filters.user_id)
    if filters.session_id:
        stmt = stmt.where(AnalyticsEvent.session_id == filters.session_id)
    if filters.page_path:
        stmt = stmt.where(AnalyticsEvent.page.contains(filters.page_path, autoescape=True))
    if filters.referrer:
        stmt = stmt.where(AnalyticsEvent.referrer.contains(filters.referrer, autoescape=True))
    if filters.search:
        term = filters.search
        stmt = stmt.where(
            or_(
                AnalyticsEvent.event_name.contains(term, autoescape=True),
                AnalyticsEvent.page.contains(term, autoescape=True),
                AnalyticsEvent.referrer.contains(term, autoescape=True),
                AnalyticsEvent.user_id.contains(term, autoescape=True),
                AnalyticsEvent.session_id.contains(term, autoescape=True),
                AnalyticsEvent.properties.contains(term, autoescape=True),
            )
        )
    return stmt


async def list_events(
    session: AsyncSession,
    filters: EventFilters,
    *,
    offset: int = 0,
    limit: int = 25,
) -> tuple[list[AnalyticsEvent], int]:
    # Newest first with id as a tie-breaker for stable paging.
    total_stmt = _apply_filters(select(func.count()).select_from(AnalyticsEvent), filters)
    total = int((await session.execute(total_stmt)).scalar_one())
    stmt = _apply_filters(select(AnalyticsEvent), filters)
    stmt = stmt.order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def count_events(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(AnalyticsEvent))
    return int(result.scalar_one())


async def count_unique_users(session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count(func.distinct(AnalyticsEvent.user_id))).where(
            AnalyticsEvent.user_id.is_not(None)
        )
    )
    return int(result.scalar_one())


async def top_event_names(session: AsyncSession, *, limit: int = 10) -> list[tuple[str, int]]:
    count_col = func.count(AnalyticsEvent.id)
    result = await session.execute(
        select(AnalyticsEvent.event_name, count_col)
        .group_by(AnalyticsEvent.event_name)
        .order_by(count_col.desc(), AnalyticsEvent.event_name)
        .limit(limit)
    )
    return [(name, int(count)) for name, count in result.all()]


async def top_pages(session: AsyncSession, *, limit: int = 10) -> list[tuple[str, int]]:
    count_col = func.count(AnalyticsEvent.id)
    result = await session.execute(
        select(AnalyticsEvent.page, count_col)
        .where(AnalyticsEvent.page.is_not(None), AnalyticsEvent.page != "")
        .group_by(AnalyticsEvent.page)
        .order_by(count_col.desc(), AnalyticsEvent.page)
        .limit(limit)
    )
    return [(page, int(count)) for page, count in result.all()]


async def event_timestamps_since(session: AsyncSession, since: datetime) -> list[datetime]:
    # Day bucketing happens in Python so it behaves the same on SQLite and Postgres.
    result = await session.execute(
        select(AnalyticsEvent.created_at)
        .where(AnalyticsEvent.created_at >= since)
        .order_by(AnalyticsEvent.created_at)
    )
    return list(result.scalars().all())


async def recent_events(session: AsyncSession, *, limit: int = 10) -> list[AnalyticsEvent]:
    result = await session.execute(
        select(AnalyticsEvent)
        .order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
