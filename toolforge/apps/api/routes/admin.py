from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, get_db, require_role
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import Paged, SuccessEnvelope, page_info, success_response
from toolforge.apps.api.serializers import (
    ApiKeyResponse,
    AuditLogResponse,
    ChatSessionResponse,
    PersonaResponse,
    SavedToolResponse,
    UserResponse,
    UtilityUsageResponse,
    api_key_response,
    audit_log_response,
    chat_session_response,
    offset_for,
    persona_response,
    saved_tool_response,
    user_response,
    utility_usage_response,
)
from toolforge.core.config import get_settings
from toolforge.core.timeutil import isoformat_or_none, utc_now
from toolforge.persistence.repos import audit as audit_repo
from toolforge.persistence.repos import forum as forum_repo
from toolforge.persistence.repos import members as members_repo
from toolforge.persistence.repos import users as users_repo
from toolforge.services.activity_feed import build_feed, entry_from_audit_log, resolve_timezone
from toolforge.services.analytics import build_summary
from toolforge.services.audit import record_audit_log
from toolforge.services.auth.api_keys import ASSIGNABLE_ROLES, is_admin_role
from toolforge.services.dashboard import build_dashboard_stats
from toolforge.services.system_health import collect_system_health


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)

# Chat transcripts in the user detail view are capped per session.
DETAIL_MESSAGE_LIMIT = 100
SUBSCRIPTION_TIERS = ("FREE", "PRO")


class AdminUserRow(UserResponse):
    saved_tools_count: int
    utility_usage_count: int
    personas_count: int
    chat_sessions_count: int
    total_utility_usage: int
    utility_usage_breakdown: dict[str, int]


class ThreadSummary(BaseModel):
    id: str
    category_id: str
    title: str
    slug: str
    reply_count: int
    view_count: int
    created_at: str | None


class PostSummary(BaseModel):
    id: str
    thread_id: str
    content: str
    is_edited: bool
    created_at: str | None


class AdminUserDetail(BaseModel):
    user: UserResponse
    saved_tools: list[SavedToolResponse]
    utility_usage: list[UtilityUsageResponse]
    personas: list[PersonaResponse]
    chat_sessions: list[ChatSessionResponse]
    api_keys: list[ApiKeyResponse]
    forum_threads: list[ThreadSummary]
    forum_posts: list[PostSummary]


class AdminUserUpdateRequest(BaseModel):
    name: str | None = None
    bio: str | None = None
    role: str | None = None
    subscription_tier: str | None = None

    model_config = {"extra": "forbid"}


class ActivityFeedResponse(BaseModel):
    groups: list[dict[str, Any]]
    total: int
    generated_at: str


def _db_error(message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"code": "DB_ERROR", "message": message})


def _user_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "USER_NOT_FOUND", "message": "User not found"})


@router.get("/users", response_model=SuccessEnvelope[Paged[AdminUserRow]])
async def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    search: str | None = Query(default=None),
    role: str | None = Query(default=None),
    subscription_tier: str | None = Query(default=None),
    sort_by: str = Query(default="created_at"),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if sort_by not in users_repo.USER_SORT_FIELDS:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_SORT", "message": f"Unsupported sort field: {sort_by}"},
        )
    try:
        users, total = await users_repo.list_users(
            db,
            search=search.strip() if search else None,
            role=role,
            subscription_tier=subscription_tier,
            sort_by=sort_by,
            sort_order=sort_order,
            offset=offset_for(page, page_size),
            limit=page_size,
        )
        ids = [user.id for user in users]
        counts = await users_repo.relation_counts(db, ids)
        breakdown = await users_repo.usage_breakdown(db, ids)
    except SQLAlchemyError as exc:
        logger.exception("admin_list_users_failed")
        raise _db_error("Failed to fetch users") from exc

    rows = []
    for user in users:
        usage = breakdown.get(user.id, {})
        rows.append(
            AdminUserRow(
                **user_response(user).model_dump(),
                **counts.get(user.id, {}),
                total_utility_usage=sum(usage.values()),
                utility_usage_breakdown=usage,
            )
        )
    payload = Paged[AdminUserRow](items=rows, page=page_info(page=page, page_size=page_size, total=total))
    return success_response(request=request, data=payload.model_dump())


@router.get("/users/{user_id}", response_model=SuccessEnvelope[AdminUserDetail])
async def get_user(
    user_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise _user_not_found()
    chats = []
    for chat in await members_repo.list_chat_sessions(db, user.id):
        messages = await members_repo.list_messages(db, chat.id, limit=DETAIL_MESSAGE_LIMIT)
        chats.append(chat_session_response(chat, messages))
    threads = await forum_repo.list_threads_by_author(db, user.id)
    posts = await forum_repo.list_posts_by_author(db, user.id)
    payload = AdminUserDetail(
        user=user_response(user),
        saved_tools=[saved_tool_response(s) for s in await members_repo.list_saved_tools(db, user.id)],
        utility_usage=[utility_usage_response(u) for u in await members_repo.list_utility_usage(db, user.id)],
        personas=[persona_response(p) for p in await members_repo.list_personas(db, user.id)],
        chat_sessions=chats,
        api_keys=[api_key_response(k) for k in await members_repo.list_api_keys(db, user.id)],
        forum_threads=[
            ThreadSummary(
                id=thread.id,
                category_id=thread.category_id,
                title=thread.title,
                slug=thread.slug,
                reply_count=int(thread.reply_count or 0),
                view_count=int(thread.view_count or 0),
                created_at=isoformat_or_none(thread.created_at),
            )
            for thread in threads
        ],
        forum_posts=[
            PostSummary(
                id=post.id,
                thread_id=post.thread_id,
                content=post.content,
                is_edited=bool(post.is_edited),
                created_at=isoformat_or_none(post.created_at),
            )
            for post in posts
        ],
    )
    return success_response(request=request, data=payload.model_dump())


@router.patch("/users/{user_id}", response_model=SuccessEnvelope[UserResponse])
async def update_user(
    user_id: str,
    payload: AdminUserUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise _user_not_found()
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})

    if "role" in updates:
        role = updates["role"].strip().upper()
        if role not in ASSIGNABLE_ROLES:
            raise HTTPException(
                status_code=400,
                detail={"code": "INVALID_ROLE", "message": f"Role must be one of {', '.join(ASSIGNABLE_ROLES)}"},
            )
        # Admins cannot lock themselves out.
        if user.id == principal.user_id and not is_admin_role(role):
            raise HTTPException(
                status_code=400,
                detail={"code": "SELF_DEMOTION", "message": "Cannot remove your own admin role"},
            )
        updates["role"] = role
    if "subscription_tier" in updates:
        tier = updates["subscription_tier"].strip().upper()
        if tier not in SUBSCRIPTION_TIERS:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "INVALID_SUBSCRIPTION_TIER",
                    "message": f"Subscription tier must be one of {', '.join(SUBSCRIPTION_TIERS)}",
                },
            )
        updates["subscription_tier"] = tier

    for field_name, value in updates.items():
        setattr(user, field_name, value)
    await record_audit_log(
        session=db,
        user_id=principal.user_id,
        action="UPDATE_USER",
        resource="User",
        details={"target_user_id": user.id, "resource_name": user.name or user.email, "changes": updates},
        request=request,
    )
    await db.commit()
    await db.refresh(user)
    return success_response(request=request, data=user_response(user).model_dump())


@router.delete("/users/{user_id}", status_code=204, response_class=Response)
async def delete_user(
    user_id: str,
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    if user_id == principal.user_id:
        raise HTTPException(
            status_code=400, detail={"code": "SELF_DELETE", "message": "Cannot delete your own account"}
        )
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise _user_not_found()
    label = user.name or user.email
    try:
        await users_repo.delete_user_cascade(db, user_id)
        await record_audit_log(
            session=db,
            user_id=principal.user_id,
            action="DELETE_USER",
            resource="User",
            details={"target_user_id": user_id, "resource_name": label, "email": user.email},
            request=request,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("admin_delete_user_failed user_id=%s", user_id)
        raise _db_error("Failed to delete user") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/stats", response_model=SuccessEnvelope[dict[str, Any]])
async def dashboard_stats(
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        stats = await build_dashboard_stats(db)
    except SQLAlchemyError as exc:
        logger.exception("admin_stats_failed")
        raise _db_error("Failed to fetch dashboard statistics") from exc
    return success_response(request=request, data=stats)


@router.get("/analytics/summary", response_model=SuccessEnvelope[dict[str, Any]])
async def analytics_summary(
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        summary = await build_summary(db)
    except SQLAlchemyError as exc:
        raise _db_error("Failed to build analytics summary") from exc
    return success_response(request=request, data=summary)


@router.get("/audit-logs", response_model=SuccessEnvelope[Paged[AuditLogResponse]])
async def list_audit_logs(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    action: str | None = Query(default=None),
    resource: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        logs, total = await audit_repo.list_audit_logs(
            db,
            action=action,
            resource=resource,
            user_id=user_id,
            search=search.strip() if search else None,
            offset=offset_for(page, page_size),
            limit=page_size,
        )
    except SQLAlchemyError as exc:
        raise _db_error("Failed to fetch audit logs") from exc
    payload = Paged[AuditLogResponse](
        items=[audit_log_response(log) for log in logs],
        page=page_info(page=page, page_size=page_size, total=total),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/system-health", response_model=SuccessEnvelope[dict[str, Any]])
async def system_health(
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    health = await collect_system_health(db)
    return success_response(request=request, data=health)


@router.get("/activity", response_model=SuccessEnvelope[ActivityFeedResponse])
async def activity_feed(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    action: str | None = Query(default=None),
    resource: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        rows = await audit_repo.recent_with_actors(
            db, limit=limit, action=action, resource=resource, user_id=user_id
        )
    except SQLAlchemyError as exc:
        raise _db_error("Failed to fetch activity") from exc
    now = utc_now()
    entries = [entry_from_audit_log(log, actor) for log, actor in rows]
    groups = build_feed(entries, now=now, tz=resolve_timezone(get_settings().activity_feed_timezone))
    payload = ActivityFeedResponse(groups=groups, total=len(entries), generated_at=now.isoformat())
    return success_response(request=request, data=payload.model_dump())
