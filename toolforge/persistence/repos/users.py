from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import (
    AIPersona,
    AnalyticsEvent,
    ApiKey,
    ChatMessage,
    ChatSession,
    ForumPost,
    ForumThread,
    SavedTool,
    User,
    UtilityUsage,
)


USER_SORT_FIELDS: dict[str, Any] = {
    "created_at": User.created_at,
    "updated_at": User.updated_at,
    "name": User.name,
    "email": User.email,
    "last_login_at": User.last_login_at,
    "subscription_tier": User.subscription_tier,
    "role": User.role,
}


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


def _user_filters(stmt: Any, *, search: str | None, role: str | None, tier: str | None) -> Any:
    if search:
        # autoescape keeps % and _ in the search text literal.
        stmt = stmt.where(
            or_(
                User.email.icontains(search, autoescape=True),
                User.name.icontains(search, autoescape=True),
            )
        )
    if role:
        stmt = stmt.where(User.role == role.upper())
    if tier:
        stmt = stmt.where(User.subscription_tier == tier.upper())
    return stmt


async def list_users(
    session: AsyncSession,
    *,
    search: str | None = None,
    role: str | None = None,
    subscription_tier: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[User], int]:
    # Unknown sort fields fall back to creation time rather than erroring.
    column = USER_SORT_FIELDS.get(sort_by, User.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    total_stmt = _user_filters(
        select(func.count()).select_from(User), search=search, role=role, tier=subscription_tier
    )
    total = int((await session.execute(total_stmt)).scalar_one())
    stmt = _user_filters(select(User), search=search, role=role, tier=subscription_tier)
    result = await session.execute(stmt.order_by(ordering, User.id).offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def _count_by_user(session: AsyncSession, model: Any, user_ids: list[str]) -> dict[str, int]:
    if not user_ids:
        return {}
    result = await session.execute(
        select(model.user_id, func.count(model.id))
        .where(model.user_id.in_(user_ids))
        .group_by(model.user_id)
    )
    return {user_id: int(count) for user_id, count in result.all()}


async def relation_counts(session: AsyncSession, user_ids: list[str]) -> dict[str, dict[str, int]]:
    """Per-user counts of saved tools, usage rows, personas and chat sessions."""
    saved = await _count_by_user(session, SavedTool, user_ids)
    usage = await _count_by_user(session, UtilityUsage, user_ids)
    personas = await _count_by_user(session, AIPersona, user_ids)
    chats = await _count_by_user(session, ChatSession, user_ids)
    return {
        user_id: {
            "saved_tools_count": saved.get(user_id, 0),
            "utility_usage_count": usage.get(user_id, 0),
            "personas_count": personas.get(user_id, 0),
            "chat_sessions_count": chats.get(user_id, 0),
        }
        for user_id in user_ids
    }


async def usage_breakdown(session: AsyncSession, user_ids: list[str]) -> dict[str, dict[str, int]]:
    if not user_ids:
        return {}
    result = await session.execute(
        select(UtilityUsage.user_id, UtilityUsage.utility_slug, UtilityUsage.count)
        .where(UtilityUsage.user_id.in_(user_ids))
        .order_by(UtilityUsage.utility_slug)
    )
    breakdown: dict[str, dict[str, int]] = {user_id: {} for user_id in user_ids}
    for user_id, slug, count in result.all():
        breakdown[user_id][slug] = int(count)
    return breakdown


async def count_users(
    session: AsyncSession,
    *,
    subscription_tier: str | None = None,
    created_since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(User)
    if subscription_tier is not None:
        stmt = stmt.where(User.subscription_tier == subscription_tier)
    if created_since is not None:
        stmt = stmt.where(User.created_at >= created_since)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def count_paying_customers(session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(User)
        .where(
            or_(User.stripe_subscription_id.is_not(None), User.stripe_customer_id.is_not(None))
        )
    )
    return int(result.scalar_one())


async def signup_timestamps_since(session: AsyncSession, since: datetime) -> list[datetime]:
    result = await session.execute(select(User.created_at).where(User.created_at >= since))
    return list(result.scalars().all())


async def delete_user_cascade(session: AsyncSession, user_id: str) -> None:
    """Delete a user and every dependent row; the caller owns the transaction."""
    thread_ids = select(ForumThread.id).where(ForumThread.author_id == user_id)
    session_ids = select(ChatSession.id).where(ChatSession.user_id == user_id)
    # Children first so the delete also works where FK cascades are not enforced.
    await session.execute(delete(ForumPost).where(ForumPost.thread_id.in_(thread_ids)))
    await session.execute(delete(ForumPost).where(ForumPost.author_id == user_id))
    await session.execute(delete(ForumThread).where(ForumThread.author_id == user_id))
    await session.execute(delete(ChatMessage).where(ChatMessage.session_id.in_(session_ids)))
    await session.execute(delete(ChatSession).where(ChatSession.user_id == user_id))
    for model in (SavedTool, UtilityUsage, AIPersona, ApiKey, AnalyticsEvent):
        await session.execute(delete(model).where(model.user_id == user_id))
    await session.execute(delete(User).where(User.id == user_id))
