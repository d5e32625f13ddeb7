from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from toolforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from toolforge.apps.api.response import SuccessEnvelope, success_response
from toolforge.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    service: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    # Liveness only; the admin system-health view covers the database.
    payload = HealthResponse(status="ok", service=get_settings().app_name)
    return success_response(request=request, data=payload.model_dump())
