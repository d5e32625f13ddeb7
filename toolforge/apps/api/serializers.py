from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from toolforge.core.timeutil import isoformat_or_none
from toolforge.domain.models import (
    AIPersona,
    ApiKey,
    AuditLog,
    ChatMessage,
    ChatSession,
    SavedTool,
    User,
    UtilityUsage,
)
from toolforge.services.activity_feed import parse_details


class UserResponse(BaseModel):
    # Never carries the password hash, Stripe ids or one-time tokens.
    id: str
    email: str
    name: str | None
    bio: str | None
    profile_picture_url: str | None
    role: str
    subscription_tier: str
    email_verified: bool
    payment_method_last4: str | None
    payment_method_brand: str | None
    created_at: str | None
    updated_at: str | None
    last_login_at: str | None


class AuthorSummary(BaseModel):
    id: str
    name: str | None
    profile_picture_url: str | None
    role: str


class SavedToolResponse(BaseModel):
    id: str
    tool_id: str
    created_at: str | None


class UtilityUsageResponse(BaseModel):
    id: str
    utility_slug: str
    count: int
    last_used_at: str | None
    created_at: str | None


class PersonaResponse(BaseModel):
    id: str
    name: str
    description: str
    created_at: str | None
    updated_at: str | None


class ChatMessageResponse(BaseModel):
    id: str
    session_id: str
    role: str
    content: str
    created_at: str | None


class ChatSessionResponse(BaseModel):
    id: str
    title: str
    created_at: str | None
    updated_at: str | None
    messages: list[ChatMessageResponse] | None = None


class ApiKeyResponse(BaseModel):
    # Metadata only; the hashed key never leaves the server.
    id: str
    name: str
    key_prefix: str
    last_used: str | None
    created_at: str | None
    expires_at: str | None


class AuditLogResponse(BaseModel):
    id: str
    user_id: str | None
    action: str
    resource: str
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    created_at: str | None


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        bio=user.bio,
        profile_picture_url=user.profile_picture_url,
        role=user.role,
        subscription_tier=user.subscription_tier,
        email_verified=bool(user.email_verified),
        payment_method_last4=user.payment_method_last4,
        payment_method_brand=user.payment_method_brand,
        created_at=isoformat_or_none(user.created_at),
        updated_at=isoformat_or_none(user.updated_at),
        last_login_at=isoformat_or_none(user.last_login_at),
    )


def author_summary(user: User) -> AuthorSummary:
    return AuthorSummary(
        id=user.id, name=user.name, profile_picture_url=user.profile_picture_url, role=user.role
    )


def saved_tool_response(saved: SavedTool) -> SavedToolResponse:
    return SavedToolResponse(id=saved.id, tool_id=saved.tool_id, created_at=isoformat_or_none(saved.created_at))


def utility_usage_response(usage: UtilityUsage) -> UtilityUsageResponse:
    return UtilityUsageResponse(
        id=usage.id,
        utility_slug=usage.utility_slug,
        count=int(usage.count),
        last_used_at=isoformat_or_none(usage.last_used_at),
        created_at=isoformat_or_none(usage.created_at),
    )


def persona_response(persona: AIPersona) -> PersonaResponse:
    return PersonaResponse(
        id=persona.id,
        name=persona.name,
        description=persona.description,
        created_at=isoformat_or_none(persona.created_at),
        updated_at=isoformat_or_none(persona.updated_at),
    )


def chat_message_response(message: ChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        session_id=message.session_id,
        role=message.role,
        content=message.content,
        created_at=isoformat_or_none(message.created_at),
    )


def chat_session_response(
    chat: ChatSession, messages: list[ChatMessage] | None = None
) -> ChatSessionResponse:
    return ChatSessionResponse(
        id=chat.id,
        title=chat.title,
        created_at=isoformat_or_none(chat.created_at),
        updated_at=isoformat_or_none(chat.updated_at),
        messages=[chat_message_response(m) for m in messages] if messages is not None else None,
    )


def api_key_response(api_key: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        last_used=isoformat_or_none(api_key.last_used),
        created_at=isoformat_or_none(api_key.created_at),
        expires_at=isoformat_or_none(api_key.expires_at),
    )


def audit_log_response(log: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=log.id,
        user_id=log.user_id,
        action=log.action,
        resource=log.resource,
        details=parse_details(log.details),
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        created_at=isoformat_or_none(log.created_at),
    )


def offset_for(page: int, page_size: int) -> int:
    return (page - 1) * page_size


def parse_positive_int(value: str | None, default: int, *, maximum: int | None = None) -> int:
    # Lenient parsing for forum paging: junk or non-positive values mean the default.
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        parsed = default
    if parsed < 1:
        parsed = default
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed
