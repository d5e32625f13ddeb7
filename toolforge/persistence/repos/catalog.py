from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import Tool, Workflow


def _like(column: Any, term: str) -> Any:
    # Case-insensitive substring match; % and _ in the term match literally.
    return column.icontains(term, autoescape=True)


def _tool_ordering(sort: str) -> list[Any]:
    if sort == "name":
        return [Tool.name.asc(), Tool.id]
    if sort == "newest":
        return [Tool.created_at.desc(), Tool.id]
    return [Tool.rating.desc(), Tool.name.asc(), Tool.id]


async def list_tools(
    session: AsyncSession,
    *,
    q: str | None = None,
    category: str | None = None,
    pricing_model: str | None = None,
    free_tier: bool | None = None,
    sort: str = "rating",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Tool], int]:
    conditions = []
    if q:
        conditions.append(or_(_like(Tool.name, q), _like(Tool.summary, q), _like(Tool.tags, q)))
    if category:
        # Categories are comma-joined text; substring match keeps the query portable.
        conditions.append(_like(Tool.categories, category))
    if pricing_model:
        conditions.append(func.lower(Tool.pricing_model) == pricing_model.lower())
    if free_tier is not None:
        conditions.append(Tool.free_tier.is_(free_tier))
    total = int(
        (await session.execute(select(func.count()).select_from(Tool).where(*conditions))).scalar_one()
    )
    result = await session.execute(
        select(Tool).where(*conditions).order_by(*_tool_ordering(sort)).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def get_tool(session: AsyncSession, tool_id: str) -> Tool | None:
    result = await session.execute(select(Tool).where(Tool.id == tool_id))
    return result.scalar_one_or_none()


async def get_tool_by_slug(session: AsyncSession, slug: str) -> Tool | None:
    result = await session.execute(select(Tool).where(Tool.slug == slug))
    return result.scalar_one_or_none()


async def list_workflows(
    session: AsyncSession,
    *,
    q: str | None = None,
    sort: str = "name",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Workflow], int]:
    conditions = []
    if q:
        conditions.append(
            or_(_like(Workflow.name, q), _like(Workflow.description, q), _like(Workflow.services, q))
        )
    ordering = (
        [Workflow.created_at.desc(), Workflow.id] if sort == "newest" else [Workflow.name.asc(), Workflow.id]
    )
    total = int(
        (
            await session.execute(select(func.count()).select_from(Workflow).where(*conditions))
        ).scalar_one()
    )
    result = await session.execute(
        select(Workflow).where(*conditions).order_by(*ordering).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def get_workflow(session: AsyncSession, workflow_id: str) -> Workflow | None:
    result = await session.execute(select(Workflow).where(Workflow.id == workflow_id))
    return result.scalar_one_or_none()


async def get_workflow_by_slug(session: AsyncSession, slug: str) -> Workflow | None:
    result = await session.execute(select(Workflow).where(Workflow.slug == slug))
    return result.scalar_one_or_none()
