from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from toolforge.core.timeutil import utc_now
from toolforge.domain.models import AuditLog
from toolforge.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Any details key containing one of these fragments is stored as [REDACTED].
SENSITIVE_KEY_FRAGMENTS = ("api_key", "authorization", "token", "secret", "password")
REDACTED = "[REDACTED]"


def sanitize_metadata(value: Any) -> Any:
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    if not isinstance(value, dict):
        return value
    cleaned: dict[str, Any] = {}
    for raw_key, raw_value in value.items():
        key = str(raw_key)
        lowered = key.lower()
        if any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
            cleaned[key] = REDACTED
        else:
            cleaned[key] = sanitize_metadata(raw_value)
    return cleaned


def client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    # First X-Forwarded-For hop is the original client behind a proxy.
    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",")]
    if hops and hops[0]:
        return hops[0]
    return request.client.host if request.client else None


def get_request_context(request: Request | None) -> dict[str, str | None]:
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent") if request is not None else None,
    }


async def record_audit_log(
    *,
    session: AsyncSession | None = None,
    user_id: str | None,
    action: str,
    resource: str,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
    created_at: datetime | None = None,
    commit: bool | None = None,
    best_effort: bool = True,
) -> AuditLog | None:
    """Append an audit row.

    With ``session`` the row joins the caller's unit of work and is committed only
    when ``commit`` is true. Without one the row is written in its own session.
    Best-effort writes log and swallow database errors so the audited operation
    still completes; strict writes re-raise.
    """
    context = get_request_context(request)
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        details=json.dumps(sanitize_metadata(details), default=str) if details else None,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
        created_at=created_at or utc_now(),
    )
    if session is None:
        async with SessionLocal() as own_session:
            return await _write(own_session, entry, commit=True, best_effort=best_effort)
    return await _write(session, entry, commit=bool(commit), best_effort=best_effort)


async def _write(
    session: AsyncSession, entry: AuditLog, *, commit: bool, best_effort: bool
) -> AuditLog | None:
    try:
        session.add(entry)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        if not best_effort:
            logger.error("audit_log_write_failed action=%s", entry.action, exc_info=exc)
            raise
        logger.warning("audit_log_write_failed action=%s", entry.action, exc_info=exc)
        return None
    return entry
