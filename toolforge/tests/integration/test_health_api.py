from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health_returns_envelope_with_request_id(client) -> None:
    response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok", "service": "toolforge"}
    assert body["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client) -> None:
    response = await client.get("/v1/does-not-exist")
    assert response.status_code == 404
    body = response.json()
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["meta"]["request_id"]


@pytest.mark.asyncio
async def test_openapi_marks_admin_routes_with_bearer_auth(client) -> None:
    response = await client.get("/v1/openapi.json")
    assert response.status_code == 200
    schema = response.json()
    assert schema["components"]["securitySchemes"]["BearerAuth"]["scheme"] == "bearer"
    assert "security" not in schema["paths"]["/v1/tools"]["get"]
    assert schema["paths"]["/v1/tools"]["post"]["security"] == [{"BearerAuth": []}]
    assert schema["paths"]["/v1/admin/users"]["get"]["security"] == [{"BearerAuth": []}]


@pytest.mark.asyncio
async def test_docs_redirect_to_versioned_docs(client) -> None:
    response = await client.get("/docs")
    assert response.status_code == 307
    assert response.headers["location"] == "/v1/docs"
