from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, get_db, get_optional_principal, require_role
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import Paged, SuccessEnvelope, page_info, success_response
from toolforge.apps.api.serializers import offset_for
from toolforge.core.timeutil import utc_now
from toolforge.domain.models import AnalyticsEvent
from toolforge.persistence.repos import analytics as analytics_repo
from toolforge.persistence.repos import users as users_repo
from toolforge.services.analytics import (
    DateRangeError,
    build_summary,
    normalize_properties,
    parse_date_param,
    parse_timestamp,
    resolve_date_range,
    serialize_event,
    split_event_names,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"], responses=DEFAULT_ERROR_RESPONSES)


class TrackEventRequest(BaseModel):
    event_name: str = Field(min_length=1, max_length=200)
    # Objects, JSON strings or scalars; normalized to an object before storage.
    properties: Any = None
    user_id: str | None = None
    session_id: str | None = None
    page: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    timestamp: str | None = None


class TrackedEventResponse(BaseModel):
    id: str
    event_name: str
    user_id: str | None
    session_id: str | None
    properties: dict[str, Any]
    page: str | None
    referrer: str | None
    created_at: str | None


class EventResponse(BaseModel):
    id: str
    event_name: str
    user_id: str | None
    session_id: str | None
    properties: Any
    page: str | None
    referrer: str | None
    user_agent: str | None
    ip_address: str | None
    created_at: str | None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


def _event_ip(request: Request, body_ip: str | None) -> str | None:
    # Proxy hop first, then what the client reported, then the socket peer.
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if body_ip:
        return body_ip
    return request.client.host if request.client else None


@router.post("/track", status_code=201, response_model=SuccessEnvelope[TrackedEventResponse])
async def track_event(
    payload: TrackEventRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        created_at = parse_timestamp(payload.timestamp) or utc_now()
    except ValueError as exc:
        raise _bad_request("INVALID_TIMESTAMP", str(exc)) from exc
    properties = normalize_properties(payload.properties)

    user_id = payload.user_id or (principal.user_id if principal else None)
    # Unknown ids would trip the foreign key; keep the event anonymous instead.
    if user_id and (principal is None or user_id != principal.user_id):
        if await users_repo.get_user(db, user_id) is None:
            user_id = None

    event = AnalyticsEvent(
        event_name=payload.event_name.strip(),
        user_id=user_id,
        session_id=payload.session_id,
        properties=json.dumps(properties, default=str),
        page=payload.page,
        referrer=payload.referrer,
        user_agent=payload.user_agent or request.headers.get("user-agent"),
        ip_address=_event_ip(request, payload.ip_address),
        created_at=created_at,
    )
    db.add(event)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("analytics_track_failed event_name=%s", payload.event_name)
        raise HTTPException(
            status_code=500, detail={"code": "DB_ERROR", "message": "Failed to record event"}
        ) from exc
    data = serialize_event(event, include_client=False)
    data["properties"] = properties
    return success_response(request=request, data=TrackedEventResponse(**data).model_dump())


@router.get("/events", response_model=SuccessEnvelope[Paged[EventResponse]])
async def list_events(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=200),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    event_name: list[str] | None = Query(default=None),
    user_id: str | None = Query(default=None),
    session_id: str | None = Query(default=None),
    page_path: str | None = Query(default=None),
    referrer: str | None = Query(default=None),
    search: str | None = Query(default=None),
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        start, end = resolve_date_range(parse_date_param(start_date), parse_date_param(end_date))
    except DateRangeError as exc:
        raise _bad_request("INVALID_DATE_RANGE", str(exc)) from exc
    filters = analytics_repo.EventFilters(
        start_date=start,
        end_date=end,
        event_names=split_event_names(event_name),
        user_id=user_id,
        session_id=session_id,
        page_path=page_path,
        referrer=referrer,
        search=search.strip() if search and search.strip() else None,
    )
    try:
        events, total = await analytics_repo.list_events(
            db, filters, offset=offset_for(page, page_size), limit=page_size
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=500, detail={"code": "DB_ERROR", "message": "Failed to fetch analytics events"}
        ) from exc
    payload = Paged[EventResponse](
        items=[EventResponse(**serialize_event(event)) for event in events],
        page=page_info(page=page, page_size=page_size, total=total),
    )
    return success_response(request=request, data=payload.model_dump())


@router.get("/summary", response_model=SuccessEnvelope[dict[str, Any]])
async def analytics_summary(
    request: Request,
    principal: Principal = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        summary = await build_summary(db)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=500, detail={"code": "DB_ERROR", "message": "Failed to build analytics summary"}
        ) from exc
    return success_response(request=request, data=summary)
