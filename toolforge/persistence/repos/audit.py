from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.domain.models import AuditLog, User


def _apply_filters(
    stmt: Any,
    *,
    action: str | None,
    resource: str | None,
    user_id: str | None,
    search: str | None = None,
) -> Any:
    # Action and resource match case-insensitively so "delete_user" finds DELETE_USER.
    if action:
        stmt = stmt.where(func.lower(AuditLog.action) == action.lower())
    if resource:
        stmt = stmt.where(func.lower(AuditLog.resource) == resource.lower())
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if search:
        stmt = stmt.where(
            or_(
                AuditLog.action.icontains(search, autoescape=True),
                AuditLog.resource.icontains(search, autoescape=True),
                AuditLog.details.icontains(search, autoescape=True),
            )
        )
    return stmt


async def list_audit_logs(
    session: AsyncSession,
    *,
    action: str | None = None,
    resource: str | None = None,
    user_id: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[AuditLog], int]:
    filters = {"action": action, "resource": resource, "user_id": user_id, "search": search}
    total_stmt = _apply_filters(select(func.count()).select_from(AuditLog), **filters)
    total = int((await session.execute(total_stmt)).scalar_one())
    stmt = _apply_filters(select(AuditLog), **filters)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


async def recent_with_actors(
    session: AsyncSession,
    *,
    limit: int = 50,
    action: str | None = None,
    resource: str | None = None,
    user_id: str | None = None,
) -> list[tuple[AuditLog, User | None]]:
    # Outer join so system entries and rows for deleted users still show up.
    stmt = select(AuditLog, User).outerjoin(User, AuditLog.user_id == User.id)
    stmt = _apply_filters(stmt, action=action, resource=resource, user_id=user_id)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return [(log, user) for log, user in result.all()]


async def count_since(session: AsyncSession, since: datetime, *, errors_only: bool = False) -> int:
    stmt = select(func.count()).select_from(AuditLog).where(AuditLog.created_at >= since)
    if errors_only:
        action = func.upper(AuditLog.action)
        stmt = stmt.where(or_(action.contains("ERROR"), action.contains("EXCEPTION")))
    result = await session.execute(stmt)
    return int(result.scalar_one())
