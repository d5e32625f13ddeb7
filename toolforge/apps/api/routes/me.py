from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.apps.api.deps import Principal, get_current_principal, get_db
from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import SuccessEnvelope, success_response
from toolforge.apps.api.serializers import (
    ApiKeyResponse,
    ChatMessageResponse,
    ChatSessionResponse,
    PersonaResponse,
    SavedToolResponse,
    UserResponse,
    UtilityUsageResponse,
    api_key_response,
    chat_message_response,
    chat_session_response,
    persona_response,
    saved_tool_response,
    user_response,
    utility_usage_response,
)
from toolforge.core.config import get_settings
from toolforge.core.timeutil import utc_now
from toolforge.domain.models import AIPersona, ChatMessage, ChatSession
from toolforge.persistence.repos import members as members_repo
from toolforge.persistence.repos import users as users_repo
from toolforge.services.auth.api_keys import issue_api_key


router = APIRouter(prefix="/me", tags=["me"], responses=DEFAULT_ERROR_RESPONSES)


class ProfileResponse(BaseModel):
    user: UserResponse
    saved_tools: list[SavedToolResponse]
    utility_usage: list[UtilityUsageResponse]
    personas: list[PersonaResponse]


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    bio: str | None = None
    profile_picture_url: str | None = None

    model_config = {"extra": "forbid"}


class SaveToolRequest(BaseModel):
    tool_id: str = Field(min_length=1)


class SavedStateResponse(BaseModel):
    saved: bool


class UtilityUsageRequest(BaseModel):
    utility_slug: str = Field(min_length=1)


class PersonaCreateRequest(BaseModel):
    name: str = Field(min_length=2)
    description: str = Field(min_length=10)

    model_config = {"extra": "forbid"}


class PersonaUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    description: str | None = Field(default=None, min_length=10)

    model_config = {"extra": "forbid"}


class ChatSessionCreateRequest(BaseModel):
    title: str = Field(default="New chat", min_length=1)


class ChatSessionUpdateRequest(BaseModel):
    title: str = Field(min_length=1)


class ChatMessageCreateRequest(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1)


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ApiKeyCreateResponse(ApiKeyResponse):
    # Raw key is only shown once at creation time.
    api_key: str


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": code, "message": message})


async def _load_persona(db: AsyncSession, persona_id: str, principal: Principal) -> AIPersona:
    persona = await members_repo.get_persona_for_user(db, persona_id, principal.user_id)
    if persona is None:
        raise _not_found("PERSONA_NOT_FOUND", "Persona not found")
    return persona


async def _load_chat(db: AsyncSession, session_id: str, principal: Principal) -> ChatSession:
    chat = await members_repo.get_chat_session_for_user(db, session_id, principal.user_id)
    if chat is None:
        raise _not_found("CHAT_SESSION_NOT_FOUND", "Chat session not found")
    return chat


@router.get("/profile", response_model=SuccessEnvelope[ProfileResponse])
async def get_profile(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, principal.user_id)
    if user is None:
        raise _not_found("USER_NOT_FOUND", "User not found")
    payload = ProfileResponse(
        user=user_response(user),
        saved_tools=[saved_tool_response(s) for s in await members_repo.list_saved_tools(db, user.id)],
        utility_usage=[utility_usage_response(u) for u in await members_repo.list_utility_usage(db, user.id)],
        personas=[persona_response(p) for p in await members_repo.list_personas(db, user.id)],
    )
    return success_response(request=request, data=payload.model_dump())


@router.patch("/profile", response_model=SuccessEnvelope[UserResponse])
async def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, principal.user_id)
    if user is None:
        raise _not_found("USER_NOT_FOUND", "User not found")
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})
    if updates.get("name") is not None:
        name = updates["name"].strip()
        if len(name) < 2:
            raise HTTPException(
                status_code=400, detail={"code": "INVALID_NAME", "message": "Name must be at least 2 characters"}
            )
        updates["name"] = name
    for field_name, value in updates.items():
        setattr(user, field_name, value)
    await db.commit()
    await db.refresh(user)
    return success_response(request=request, data=user_response(user).model_dump())


@router.get("/saved-tools", response_model=SuccessEnvelope[list[SavedToolResponse]])
async def list_saved_tools(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    saved = await members_repo.list_saved_tools(db, principal.user_id)
    return success_response(request=request, data=[saved_tool_response(s).model_dump() for s in saved])


@router.post("/saved-tools", response_model=SuccessEnvelope[SavedStateResponse])
async def save_tool(
    payload: SaveToolRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Saving twice is a no-op rather than a conflict.
    await members_repo.save_tool(db, principal.user_id, payload.tool_id)
    await db.commit()
    return success_response(request=request, data=SavedStateResponse(saved=True).model_dump())


@router.delete("/saved-tools", response_model=SuccessEnvelope[SavedStateResponse])
async def unsave_tool(
    request: Request,
    tool_id: str = Query(min_length=1),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await members_repo.unsave_tool(db, principal.user_id, tool_id)
    await db.commit()
    return success_response(request=request, data=SavedStateResponse(saved=False).model_dump())


@router.get("/utility-usage", response_model=SuccessEnvelope[list[UtilityUsageResponse]])
async def list_utility_usage(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    usage = await members_repo.list_utility_usage(db, principal.user_id)
    return success_response(request=request, data=[utility_usage_response(u).model_dump() for u in usage])


@router.post("/utility-usage", response_model=SuccessEnvelope[UtilityUsageResponse])
async def record_utility_usage(
    payload: UtilityUsageRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    usage = await members_repo.increment_utility_usage(
        db, principal.user_id, payload.utility_slug.strip(), at=utc_now()
    )
    await db.commit()
    return success_response(request=request, data=utility_usage_response(usage).model_dump())


@router.get("/personas", response_model=SuccessEnvelope[list[PersonaResponse]])
async def list_personas(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    personas = await members_repo.list_personas(db, principal.user_id)
    return success_response(request=request, data=[persona_response(p).model_dump() for p in personas])


@router.post("/personas", status_code=201, response_model=SuccessEnvelope[PersonaResponse])
async def create_persona(
    payload: PersonaCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    persona = AIPersona(
        user_id=principal.user_id, name=payload.name.strip(), description=payload.description.strip()
    )
    db.add(persona)
    await db.commit()
    return success_response(request=request, data=persona_response(persona).model_dump())


@router.patch("/personas/{persona_id}", response_model=SuccessEnvelope[PersonaResponse])
async def update_persona(
    persona_id: str,
    payload: PersonaUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    persona = await _load_persona(db, persona_id, principal)
    if payload.name is None and payload.description is None:
        raise HTTPException(status_code=400, detail={"code": "NO_FIELDS", "message": "No fields to update"})
    if payload.name is not None:
        persona.name = payload.name.strip()
    if payload.description is not None:
        persona.description = payload.description.strip()
    await db.commit()
    await db.refresh(persona)
    return success_response(request=request, data=persona_response(persona).model_dump())


@router.delete("/personas/{persona_id}", status_code=204, response_class=Response)
async def delete_persona(
    persona_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    persona = await _load_persona(db, persona_id, principal)
    await db.delete(persona)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/chat/sessions", response_model=SuccessEnvelope[list[ChatSessionResponse]])
async def list_chat_sessions(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    chats = await members_repo.list_chat_sessions(db, principal.user_id)
    return success_response(request=request, data=[chat_session_response(c).model_dump() for c in chats])


@router.post("/chat/sessions", status_code=201, response_model=SuccessEnvelope[ChatSessionResponse])
async def create_chat_session(
    payload: ChatSessionCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    chat = ChatSession(user_id=principal.user_id, title=payload.title.strip() or "New chat")
    db.add(chat)
    await db.commit()
    return success_response(request=request, data=chat_session_response(chat, []).model_dump())


@router.get("/chat/sessions/{session_id}", response_model=SuccessEnvelope[ChatSessionResponse])
async def get_chat_session(
    session_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    chat = await _load_chat(db, session_id, principal)
    messages = await members_repo.list_messages(db, chat.id)
    return success_response(request=request, data=chat_session_response(chat, messages).model_dump())


@router.patch("/chat/sessions/{session_id}", response_model=SuccessEnvelope[ChatSessionResponse])
async def rename_chat_session(
    session_id: str,
    payload: ChatSessionUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    chat = await _load_chat(db, session_id, principal)
    chat.title = payload.title.strip()
    await db.commit()
    await db.refresh(chat)
    return success_response(request=request, data=chat_session_response(chat).model_dump())


@router.delete("/chat/sessions/{session_id}", status_code=204, response_class=Response)
async def delete_chat_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    chat = await _load_chat(db, session_id, principal)
    await db.delete(chat)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/chat/sessions/{session_id}/messages",
    status_code=201,
    response_model=SuccessEnvelope[ChatMessageResponse],
)
async def add_chat_message(
    session_id: str,
    payload: ChatMessageCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    chat = await _load_chat(db, session_id, principal)
    now = utc_now()
    message = ChatMessage(session_id=chat.id, role=payload.role, content=payload.content, created_at=now)
    db.add(message)
    # Bump the session so the most recently active chats list first.
    chat.updated_at = now
    await db.commit()
    return success_response(request=request, data=chat_message_response(message).model_dump())


@router.get("/api-keys", response_model=SuccessEnvelope[list[ApiKeyResponse]])
async def list_api_keys(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    keys = await members_repo.list_api_keys(db, principal.user_id)
    return success_response(request=request, data=[api_key_response(k).model_dump() for k in keys])


@router.post("/api-keys", status_code=201, response_model=SuccessEnvelope[ApiKeyCreateResponse])
async def create_api_key(
    payload: ApiKeyCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    api_key, raw_key = issue_api_key(
        user_id=principal.user_id,
        name=payload.name.strip(),
        ttl_days=get_settings().api_key_default_ttl_days,
    )
    db.add(api_key)
    await db.commit()
    data = ApiKeyCreateResponse(**api_key_response(api_key).model_dump(), api_key=raw_key)
    return success_response(request=request, data=data.model_dump())


@router.delete("/api-keys/{key_id}", status_code=204, response_class=Response)
async def revoke_api_key(
    key_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    api_key = await members_repo.get_api_key_for_user(db, key_id, principal.user_id)
    if api_key is None:
        raise _not_found("API_KEY_NOT_FOUND", "API key not found")
    await db.delete(api_key)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
