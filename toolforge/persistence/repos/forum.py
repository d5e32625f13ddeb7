from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from toolforge.domain.models import ForumCategory, ForumPost, ForumThread, User


def parse_thread_sort(value: str | None) -> str:
    lowered = (value or "").lower()
    if lowered in {"views", "most_viewed"}:
        return "views"
    if lowered == "newest":
        return "newest"
    if lowered in {"replies", "most_replies"}:
        return "replies"
    return "latest"


def _thread_ordering(sort: str) -> list[Any]:
    # Pinned threads always lead, whatever the requested sort.
    ordering: list[Any] = [ForumThread.is_pinned.desc()]
    if sort == "views":
        ordering += [ForumThread.view_count.desc(), ForumThread.last_activity_at.desc()]
    elif sort == "newest":
        ordering.append(ForumThread.created_at.desc())
    elif sort == "replies":
        ordering += [ForumThread.reply_count.desc(), ForumThread.last_activity_at.desc()]
    else:
        ordering.append(ForumThread.last_activity_at.desc())
    ordering.append(ForumThread.id)
    return ordering


async def list_categories_with_stats(session: AsyncSession) -> list[tuple[ForumCategory, dict[str, Any]]]:
    categories = (
        await session.execute(
            select(ForumCategory).order_by(ForumCategory.display_order, ForumCategory.name)
        )
    ).scalars().all()
    stats_rows = await session.execute(
        select(
            ForumThread.category_id,
            func.count(ForumThread.id),
            func.coalesce(func.sum(ForumThread.reply_count), 0),
            func.max(ForumThread.last_activity_at),
        ).group_by(ForumThread.category_id)
    )
    stats = {
        category_id: (int(threads), int(replies), last_activity)
        for category_id, threads, replies, last_activity in stats_rows.all()
    }
    output = []
    for category in categories:
        thread_count, reply_sum, last_activity = stats.get(category.id, (0, 0, None))
        output.append(
            (
                category,
                {
                    "thread_count": thread_count,
                    # Each thread's opening message counts as a post.
                    "post_count": thread_count + reply_sum,
                    "last_activity_at": last_activity,
                },
            )
        )
    return output


async def get_category_by_slug(session: AsyncSession, slug: str) -> ForumCategory | None:
    result = await session.execute(select(ForumCategory).where(ForumCategory.slug == slug))
    return result.scalar_one_or_none()


async def get_category(session: AsyncSession, category_id: str) -> ForumCategory | None:
    result = await session.execute(select(ForumCategory).where(ForumCategory.id == category_id))
    return result.scalar_one_or_none()


async def list_threads_for_category(
    session: AsyncSession,
    category_id: str,
    *,
    sort: str = "latest",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[tuple[ForumThread, User]], int]:
    total = int(
        (
            await session.execute(
                select(func.count())
                .select_from(ForumThread)
                .where(ForumThread.category_id == category_id)
            )
        ).scalar_one()
    )
    result = await session.execute(
        select(ForumThread, User)
        .join(User, ForumThread.author_id == User.id)
        .where(ForumThread.category_id == category_id)
        .order_by(*_thread_ordering(sort))
        .offset(offset)
        .limit(limit)
    )
    return [(thread, author) for thread, author in result.all()], total


async def get_thread(session: AsyncSession, thread_id: str) -> ForumThread | None:
    result = await session.execute(select(ForumThread).where(ForumThread.id == thread_id))
    return result.scalar_one_or_none()


async def get_thread_by_slug(session: AsyncSession, slug: str) -> ForumThread | None:
    result = await session.execute(select(ForumThread).where(ForumThread.slug == slug))
    return result.scalar_one_or_none()


async def increment_view_count(session: AsyncSession, thread: ForumThread) -> None:
    # Increment in SQL; the returned count is loaded as committed state so the
    # next flush does not write a stale absolute value back.
    result = await session.execute(
        update(ForumThread)
        .where(ForumThread.id == thread.id)
        .values(view_count=ForumThread.view_count + 1)
        .returning(ForumThread.view_count)
        .execution_options(synchronize_session=False)
    )
    set_committed_value(thread, "view_count", result.scalar_one())


async def list_posts(
    session: AsyncSession,
    thread_id: str,
    *,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[tuple[ForumPost, User]], int]:
    total = int(
        (
            await session.execute(
                select(func.count()).select_from(ForumPost).where(ForumPost.thread_id == thread_id)
            )
        ).scalar_one()
    )
    result = await session.execute(
        select(ForumPost, User)
        .join(User, ForumPost.author_id == User.id)
        .where(ForumPost.thread_id == thread_id)
        .order_by(ForumPost.created_at, ForumPost.id)
        .offset(offset)
        .limit(limit)
    )
    return [(post, author) for post, author in result.all()], total


async def get_post(session: AsyncSession, post_id: str) -> ForumPost | None:
    result = await session.execute(select(ForumPost).where(ForumPost.id == post_id))
    return result.scalar_one_or_none()


async def latest_post_time(session: AsyncSession, thread_id: str) -> datetime | None:
    result = await session.execute(
        select(func.max(ForumPost.created_at)).where(ForumPost.thread_id == thread_id)
    )
    return result.scalar_one_or_none()


async def record_reply(session: AsyncSession, thread_id: str, at: datetime) -> None:
    await session.execute(
        update(ForumThread)
        .where(ForumThread.id == thread_id)
        .values(reply_count=ForumThread.reply_count + 1, last_activity_at=at)
        .execution_options(synchronize_session=False)
    )


async def remove_reply(session: AsyncSession, thread: ForumThread) -> None:
    # Floor at zero; recompute activity from what is left.
    latest = await latest_post_time(session, thread.id)
    await session.execute(
        update(ForumThread)
        .where(ForumThread.id == thread.id)
        .values(
            reply_count=case((ForumThread.reply_count > 0, ForumThread.reply_count - 1), else_=0),
            last_activity_at=latest or thread.created_at,
        )
        .execution_options(synchronize_session=False)
    )


async def list_admin_threads(
    session: AsyncSession,
    *,
    category_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 100,
) -> list[tuple[ForumThread, User, ForumCategory]]:
    stmt = (
        select(ForumThread, User, ForumCategory)
        .join(User, ForumThread.author_id == User.id)
        .join(ForumCategory, ForumThread.category_id == ForumCategory.id)
    )
    if category_id:
        stmt = stmt.where(ForumThread.category_id == category_id)
    if status == "pinned":
        stmt = stmt.where(ForumThread.is_pinned.is_(True))
    elif status == "locked":
        stmt = stmt.where(ForumThread.is_locked.is_(True))
    if search:
        stmt = stmt.where(
            or_(
                ForumThread.title.icontains(search, autoescape=True),
                User.name.icontains(search, autoescape=True),
            )
        )
    stmt = stmt.order_by(ForumThread.last_activity_at.desc(), ForumThread.id).limit(limit)
    result = await session.execute(stmt)
    return [(thread, author, category) for thread, author, category in result.all()]


async def bulk_update_threads(
    session: AsyncSession,
    ids: list[str],
    *,
    is_pinned: bool | None = None,
    is_locked: bool | None = None,
) -> int:
    values: dict[str, Any] = {}
    if is_pinned is not None:
        values["is_pinned"] = is_pinned
    if is_locked is not None:
        values["is_locked"] = is_locked
    if not ids or not values:
        return 0
    result = await session.execute(
        update(ForumThread)
        .where(ForumThread.id.in_(ids))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def list_threads_by_author(session: AsyncSession, author_id: str) -> list[ForumThread]:
    result = await session.execute(
        select(ForumThread)
        .where(ForumThread.author_id == author_id)
        .order_by(ForumThread.created_at.desc())
    )
    return list(result.scalars().all())


async def list_posts_by_author(session: AsyncSession, author_id: str) -> list[ForumPost]:
    result = await session.execute(
        select(ForumPost).where(ForumPost.author_id == author_id).order_by(ForumPost.created_at.desc())
    )
    return list(result.scalars().all())
