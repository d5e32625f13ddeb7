from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import (
    AIPersona,
    ApiKey,
    ChatMessage,
    ChatSession,
    SavedTool,
    UtilityUsage,
)


async def list_saved_tools(session: AsyncSession, user_id: str) -> list[SavedTool]:
    result = await session.execute(
        select(SavedTool).where(SavedTool.user_id == user_id).order_by(SavedTool.created_at.desc())
    )
    return list(result.scalars().all())


async def save_tool(session: AsyncSession, user_id: str, tool_id: str) -> SavedTool:
    """Insert a bookmark, returning the existing row when it is already saved."""
    existing = await _get_saved_tool(session, user_id, tool_id)
    if existing is not None:
        return existing
    saved = SavedTool(user_id=user_id, tool_id=tool_id)
    session.add(saved)
    await session.flush()
    return saved


async def _get_saved_tool(session: AsyncSession, user_id: str, tool_id: str) -> SavedTool | None:
    result = await session.execute(
        select(SavedTool).where(SavedTool.user_id == user_id, SavedTool.tool_id == tool_id)
    )
    return result.scalar_one_or_none()


async def unsave_tool(session: AsyncSession, user_id: str, tool_id: str) -> None:
    await session.execute(
        delete(SavedTool).where(SavedTool.user_id == user_id, SavedTool.tool_id == tool_id)
    )


async def list_utility_usage(session: AsyncSession, user_id: str) -> list[UtilityUsage]:
    result = await session.execute(
        select(UtilityUsage)
        .where(UtilityUsage.user_id == user_id)
        .order_by(UtilityUsage.last_used_at.desc())
    )
    return list(result.scalars().all())


async def increment_utility_usage(
    session: AsyncSession, user_id: str, utility_slug: str, *, at: datetime
) -> UtilityUsage:
    # Single UPDATE first; INSERT only when the counter row does not exist yet.
    updated = await session.execute(
        update(UtilityUsage)
        .where(UtilityUsage.user_id == user_id, UtilityUsage.utility_slug == utility_slug)
        .values(count=UtilityUsage.count + 1, last_used_at=at)
        .execution_options(synchronize_session=False)
    )
    if not updated.rowcount:
        session.add(UtilityUsage(user_id=user_id, utility_slug=utility_slug, count=1, last_used_at=at))
        await session.flush()
    result = await session.execute(
        select(UtilityUsage)
        .where(UtilityUsage.user_id == user_id, UtilityUsage.utility_slug == utility_slug)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def list_personas(session: AsyncSession, user_id: str) -> list[AIPersona]:
    result = await session.execute(
        select(AIPersona).where(AIPersona.user_id == user_id).order_by(AIPersona.created_at.desc())
    )
    return list(result.scalars().all())


async def get_persona_for_user(session: AsyncSession, persona_id: str, user_id: str) -> AIPersona | None:
    # Owner-scoped lookup so foreign personas read as missing.
    result = await session.execute(
        select(AIPersona).where(AIPersona.id == persona_id, AIPersona.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_chat_sessions(session: AsyncSession, user_id: str) -> list[ChatSession]:
    result = await session.execute(
        select(ChatSession)
        .where(ChatSession.user_id == user_id)
        .order_by(ChatSession.updated_at.desc(), ChatSession.id)
    )
    return list(result.scalars().all())


async def get_chat_session_for_user(
    session: AsyncSession, session_id: str, user_id: str
) -> ChatSession | None:
    result = await session.execute(
        select(ChatSession).where(ChatSession.id == session_id, ChatSession.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_messages(
    session: AsyncSession, session_id: str, *, limit: int | None = None
) -> list[ChatMessage]:
    # With a limit, keep the latest N but still return them oldest first.
    if limit is None:
        result = await session.execute(
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        )
        return list(result.scalars().all())
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def list_api_keys(session: AsyncSession, user_id: str) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def get_api_key_for_user(session: AsyncSession, key_id: str, user_id: str) -> ApiKey | None:
    result = await session.execute(
        select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user_id)
    )
    return result.scalar_one_or_none()
