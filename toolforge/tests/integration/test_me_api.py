from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from toolforge.tests.utils.auth import create_test_api_key


@pytest.mark.asyncio
async def test_profile_requires_api_key(client) -> None:
    response = await client.get("/v1/me/profile")
    assert response.status_code == 401
    malformed = await client.get("/v1/me/profile", headers={"Authorization": "Token abc"})
    assert malformed.status_code == 401


@pytest.mark.asyncio
async def test_expired_keys_are_rejected(client) -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(
        key_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )
    response = await client.get("/v1/me/profile", headers=headers)
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "API key expired"


@pytest.mark.asyncio
async def test_profile_read_and_update(client) -> None:
    _raw, headers, user_id, _key_id = await create_test_api_key(name="Ada", email="ada@example.com")

    profile = await client.get("/v1/me/profile", headers=headers)
    assert profile.status_code == 200
    data = profile.json()["data"]
    assert data["user"]["id"] == user_id
    assert data["user"]["email"] == "ada@example.com"
    assert "password" not in data["user"]
    assert data["saved_tools"] == [] and data["personas"] == []

    updated = await client.patch("/v1/me/profile", json={"name": "  Ada L.  ", "bio": "Math"}, headers=headers)
    assert updated.json()["data"]["name"] == "Ada L."
    assert updated.json()["data"]["bio"] == "Math"

    blank = await client.patch("/v1/me/profile", json={"name": "  a  "}, headers=headers)
    assert blank.status_code == 400
    assert blank.json()["error"]["code"] == "INVALID_NAME"

    nothing = await client.patch("/v1/me/profile", json={}, headers=headers)
    assert nothing.json()["error"]["code"] == "NO_FIELDS"


@pytest.mark.asyncio
async def test_saved_tools_are_idempotent(client) -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key()

    for _ in range(2):
        saved = await client.post("/v1/me/saved-tools", json={"tool_id": "prompt-pad"}, headers=headers)
        assert saved.json()["data"] == {"saved": True}
    listed = await client.get("/v1/me/saved-tools", headers=headers)
    assert [row["tool_id"] for row in listed.json()["data"]] == ["prompt-pad"]

    removed = await client.delete("/v1/me/saved-tools", params={"tool_id": "prompt-pad"}, headers=headers)
    assert removed.json()["data"] == {"saved": False}
    again = await client.delete("/v1/me/saved-tools", params={"tool_id": "prompt-pad"}, headers=headers)
    assert again.status_code == 200
    assert (await client.get("/v1/me/saved-tools", headers=headers)).json()["data"] == []


@pytest.mark.asyncio
async def test_utility_usage_counts_per_slug(client) -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key()

    first = await client.post("/v1/me/utility-usage", json={"utility_slug": "json-formatter"}, headers=headers)
    assert first.json()["data"]["count"] == 1
    second = await client.post("/v1/me/utility-usage", json={"utility_slug": "json-formatter"}, headers=headers)
    assert second.json()["data"]["count"] == 2
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    await client.post("/v1/me/utility-usage", json={"utility_slug": "regex-tester"}, headers=headers)

    listed = await client.get("/v1/me/utility-usage", headers=headers)
    counts = {row["utility_slug"]: row["count"] for row in listed.json()["data"]}
    assert counts == {"json-formatter": 2, "regex-tester": 1}


@pytest.mark.asyncio
async def test_personas_are_owner_scoped(client) -> None:
    _raw, owner, _owner_id, _key_id = await create_test_api_key()
    _raw, other, _other_id, _key_id = await create_test_api_key()

    created = await client.post(
        "/v1/me/personas",
        json={"name": "Editor", "description": "A strict copy editor persona"},
        headers=owner,
    )
    assert created.status_code == 201
    persona_id = created.json()["data"]["id"]

    too_short = await client.post("/v1/me/personas", json={"name": "X", "description": "short"}, headers=owner)
    assert too_short.status_code == 422

    foreign = await client.patch(f"/v1/me/personas/{persona_id}", json={"name": "Stolen"}, headers=other)
    assert foreign.status_code == 404
    assert foreign.json()["error"]["code"] == "PERSONA_NOT_FOUND"

    renamed = await client.patch(f"/v1/me/personas/{persona_id}", json={"name": "Copy Editor"}, headers=owner)
    assert renamed.json()["data"]["name"] == "Copy Editor"

    assert (await client.delete(f"/v1/me/personas/{persona_id}", headers=other)).status_code == 404
    assert (await client.delete(f"/v1/me/personas/{persona_id}", headers=owner)).status_code == 204
    assert (await client.get("/v1/me/personas", headers=owner)).json()["data"] == []


@pytest.mark.asyncio
async def test_chat_sessions_and_messages(client) -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key()
    _raw, other, _other_id, _key_id = await create_test_api_key()

    created = await client.post("/v1/me/chat/sessions", json={}, headers=headers)
    assert created.status_code == 201
    chat = created.json()["data"]
    assert chat["title"] == "New chat"
    assert chat["messages"] == []

    for role, content in (("user", "Hello"), ("assistant", "Hi there")):
        message = await client.post(
            f"/v1/me/chat/sessions/{chat['id']}/messages", json={"role": role, "content": content}, headers=headers
        )
        assert message.status_code == 201

    bad_role = await client.post(
        f"/v1/me/chat/sessions/{chat['id']}/messages", json={"role": "robot", "content": "x"}, headers=headers
    )
    assert bad_role.status_code == 422

    detail = await client.get(f"/v1/me/chat/sessions/{chat['id']}", headers=headers)
    assert [m["content"] for m in detail.json()["data"]["messages"]] == ["Hello", "Hi there"]

    hidden = await client.get(f"/v1/me/chat/sessions/{chat['id']}", headers=other)
    assert hidden.status_code == 404
    assert hidden.json()["error"]["code"] == "CHAT_SESSION_NOT_FOUND"

    renamed = await client.patch(f"/v1/me/chat/sessions/{chat['id']}", json={"title": "Greetings"}, headers=headers)
    assert renamed.json()["data"]["title"] == "Greetings"

    listed = await client.get("/v1/me/chat/sessions", headers=headers)
    assert [row["id"] for row in listed.json()["data"]] == [chat["id"]]

    assert (await client.delete(f"/v1/me/chat/sessions/{chat['id']}", headers=headers)).status_code == 204
    assert (await client.get(f"/v1/me/chat/sessions/{chat['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_api_key_issue_use_and_revoke(client) -> None:
    _raw, headers, _user_id, original_key_id = await create_test_api_key()

    issued = await client.post("/v1/me/api-keys", json={"name": "CI"}, headers=headers)
    assert issued.status_code == 201
    data = issued.json()["data"]
    assert data["api_key"].startswith(f"tfk_{data['id']}_")
    assert data["key_prefix"] == data["api_key"][:12]
    assert data["expires_at"] is not None

    new_headers = {"Authorization": f"Bearer {data['api_key']}"}
    assert (await client.get("/v1/me/profile", headers=new_headers)).status_code == 200

    listed = await client.get("/v1/me/api-keys", headers=headers)
    rows = listed.json()["data"]
    assert {row["id"] for row in rows} == {original_key_id, data["id"]}
    assert all("api_key" not in row and "key" not in row for row in rows)

    revoked = await client.delete(f"/v1/me/api-keys/{data['id']}", headers=headers)
    assert revoked.status_code == 204
    assert (await client.get("/v1/me/profile", headers=new_headers)).status_code == 401

    missing = await client.delete(f"/v1/me/api-keys/{data['id']}", headers=headers)
    assert missing.json()["error"]["code"] == "API_KEY_NOT_FOUND"
