from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolforge.apps.api.response import error_response


logger = logging.getLogger(__name__)

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error_json(
    request: Request,
    status_code: int,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render route errors and router misses (404/405) as error envelopes.

    Routes raise ``HTTPException(detail={"code": ..., "message": ...})``; any extra
    keys in the detail dict travel as ``error.details``. A plain string detail keeps
    its text and takes the code for its status.
    """
    fallback = _STATUS_CODES.get(exc.status_code, "UNKNOWN_ERROR")
    detail = exc.detail
    if isinstance(detail, dict):
        extra = {key: value for key, value in detail.items() if key not in ("code", "message")}
        return _error_json(
            request,
            exc.status_code,
            code=str(detail.get("code") or fallback),
            message=str(detail.get("message") or "Request failed"),
            details=extra or None,
            headers=exc.headers,
        )
    message = detail if isinstance(detail, str) and detail else "Request failed"
    return _error_json(request, exc.status_code, code=fallback, message=message, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_json(
        request,
        422,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    # Slug/email races that got past the explicit existence checks.
    logger.info("integrity_conflict path=%s error=%s", request.url.path, exc.orig)
    return _error_json(request, 409, code="CONFLICT", message="Request conflicts with existing data")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return _error_json(request, 500, code="INTERNAL_ERROR", message="Internal server error")
