from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import NewsArticle


async def list_articles(
    session: AsyncSession,
    *,
    category: str | None = None,
    featured: bool | None = None,
    offset: int = 0,
    limit: int = 10,
) -> tuple[list[NewsArticle], int]:
    conditions = []
    if category:
        conditions.append(NewsArticle.category == category)
    if featured is not None:
        conditions.append(NewsArticle.is_featured.is_(featured))
    total = int(
        (
            await session.execute(select(func.count()).select_from(NewsArticle).where(*conditions))
        ).scalar_one()
    )
    result = await session.execute(
        select(NewsArticle)
        .where(*conditions)
        .order_by(NewsArticle.published_at.desc(), NewsArticle.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def list_featured(session: AsyncSession, *, limit: int = 5) -> list[NewsArticle]:
    result = await session.execute(
        select(NewsArticle)
        .where(NewsArticle.is_featured.is_(True))
        .order_by(NewsArticle.published_at.desc(), NewsArticle.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def category_counts(session: AsyncSession) -> list[tuple[str, int]]:
    count_col = func.count(NewsArticle.id)
    result = await session.execute(
        select(NewsArticle.category, count_col)
        .group_by(NewsArticle.category)
        .order_by(NewsArticle.category)
    )
    return [(category, int(count)) for category, count in result.all() if category and count > 0]


async def get_article_by_slug(session: AsyncSession, slug: str) -> NewsArticle | None:
    result = await session.execute(select(NewsArticle).where(NewsArticle.slug == slug))
    return result.scalar_one_or_none()


async def get_article(session: AsyncSession, article_id: str) -> NewsArticle | None:
    result = await session.execute(select(NewsArticle).where(NewsArticle.id == article_id))
    return result.scalar_one_or_none()


async def existing_source_urls(session: AsyncSession, urls: Iterable[str]) -> set[str]:
    candidates = [url for url in urls if url]
    if not candidates:
        return set()
    result = await session.execute(
        select(NewsArticle.source_url).where(NewsArticle.source_url.in_(candidates))
    )
    return {url for url in result.scalars().all() if url}
