from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.config import get_settings
from toolforge.core.errors import InvalidRoleError
from toolforge.core.timeutil import ensure_aware, utc_now
from toolforge.domain.models import ApiKey, User
from toolforge.persistence.db import get_session
from toolforge.services.audit import record_audit_log
from toolforge.services.auth.api_keys import hash_api_key, is_admin_role, normalize_role, role_allows


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    """The user behind the bearer key on this request."""

    user_id: str
    email: str
    name: str | None
    role: str
    api_key_id: str

    @property
    def is_admin(self) -> bool:
        return is_admin_role(self.role)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


async def _audit_denial(
    db: AsyncSession,
    request: Request,
    action: str,
    *,
    user_id: str | None = None,
    **details: str,
) -> None:
    await record_audit_log(
        session=db,
        user_id=user_id,
        action=action,
        resource="Auth",
        details={"path": request.url.path, "method": request.method, **details},
        request=request,
        commit=True,
        best_effort=True,
    )


def _bearer_token(header_value: str) -> str | None:
    scheme, _, token = header_value.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve ``Authorization: Bearer tfk_...`` to a principal.

    Missing keys answer 401 without an audit row. Malformed headers, unknown keys
    and expired keys answer 401 and record ``AUTH_FAILURE``. Successful lookups
    stamp ``last_used`` on the key.
    """
    header_value = request.headers.get(get_settings().auth_api_key_header)
    if not header_value:
        raise _unauthorized("Missing API key")
    token = _bearer_token(header_value)
    if token is None:
        await _audit_denial(db, request, "AUTH_FAILURE", reason="malformed_header")
        raise _unauthorized("Missing or invalid bearer token")

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.key == hash_api_key(token))
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc

    row = result.first()
    if row is None:
        await _audit_denial(db, request, "AUTH_FAILURE", reason="unknown_key")
        raise _unauthorized("Invalid API key")
    api_key, user = row
    now = utc_now()
    if api_key.expires_at is not None and ensure_aware(api_key.expires_at) <= now:
        await _audit_denial(db, request, "AUTH_FAILURE", user_id=user.id, reason="expired_key")
        raise _unauthorized("API key expired")

    try:
        role = normalize_role(user.role)
    except InvalidRoleError as exc:
        await _audit_denial(db, request, "AUTH_FAILURE", user_id=user.id, reason="invalid_role")
        raise _forbidden(str(exc)) from exc

    try:
        await db.execute(update(ApiKey).where(ApiKey.id == api_key.id).values(last_used=now))
        await db.commit()
    except SQLAlchemyError:
        # A stale last_used stamp must not block the request.
        await db.rollback()

    return Principal(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=role,
        api_key_id=api_key.id,
    )


async def get_optional_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal | None:
    # Anonymous callers are fine here; a header that is present must still be valid.
    if not request.headers.get(get_settings().auth_api_key_header):
        return None
    return await get_current_principal(request=request, db=db)


def require_role(minimum_role: str):
    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            await _audit_denial(
                db,
                request,
                "ACCESS_DENIED",
                user_id=principal.user_id,
                required_role=minimum_role,
            )
            raise _forbidden("Insufficient role for this operation")
        return principal

    return _dependency


def ensure_owner_or_admin(principal: Principal, owner_id: str, *, message: str) -> None:
    # Authors may edit their own content; admins may edit anything.
    if principal.user_id != owner_id and not principal.is_admin:
        raise _forbidden(message)
