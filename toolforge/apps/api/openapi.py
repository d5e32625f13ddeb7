from __future__ import annotations

from typing import Any

from toolforge.apps.api.response import API_VERSION, ErrorEnvelope


# (status, description, example code, example message)
_ERROR_EXAMPLES: tuple[tuple[int, str, str, str], ...] = (
    (400, "Bad request", "INVALID_DATE_RANGE", "Start date must be before end date"),
    (401, "Unauthorized", "AUTH_UNAUTHORIZED", "Missing API key"),
    (403, "Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    (404, "Not found", "TOOL_NOT_FOUND", "Tool not found"),
    (409, "Conflict", "SLUG_CONFLICT", "Slug is already in use"),
    (422, "Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    (500, "Internal server error", "INTERNAL_ERROR", "Internal server error"),
    (503, "Service unavailable", "AUTH_UNAVAILABLE", "Authentication unavailable"),
)


def _documented_error(description: str, code: str, message: str) -> dict[str, Any]:
    example = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
    }
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: _documented_error(description, code, message)
    for status, description, code, message in _ERROR_EXAMPLES
}
