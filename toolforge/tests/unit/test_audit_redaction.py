from __future__ import annotations

from starlette.requests import Request

from toolforge.services.audit import client_ip, get_request_context, sanitize_metadata


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/v1/health",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_audit_redacts_tokens_and_secrets() -> None:
    # Redact token and secret fields in audit metadata.
    payload = {
        "api_key": "tfk_abc",
        "reset_password_token": "secret-token",
        "nested": {"authorization": "Bearer abc", "items": [{"client_secret": "x"}]},
        "resource_name": "PromptPad",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["reset_password_token"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0]["client_secret"] == "[REDACTED]"
    assert sanitized["resource_name"] == "PromptPad"


def test_client_ip_prefers_first_forwarded_hop() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "pytest"})
    assert client_ip(request) == "203.0.113.7"
    assert get_request_context(request) == {"ip_address": "203.0.113.7", "user_agent": "pytest"}


def test_client_ip_falls_back_to_socket_peer() -> None:
    assert client_ip(_request({})) == "10.0.0.9"
    assert client_ip(_request({}, client=None)) is None
    assert client_ip(None) is None
