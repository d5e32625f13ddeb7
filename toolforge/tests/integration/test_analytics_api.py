from __future__ import annotations

import pytest

from toolforge.tests.utils.auth import create_test_api_key


@pytest.mark.asyncio
async def test_track_normalizes_properties_and_attribution(client) -> None:
    _raw, headers, user_id, _key_id = await create_test_api_key()

    anonymous = await client.post(
        "/v1/analytics/track",
        json={"event_name": "page_view", "properties": '{"plan": "free"}', "page": "/tools"},
        headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"},
    )
    assert anonymous.status_code == 201
    data = anonymous.json()["data"]
    assert data["properties"] == {"plan": "free"}
    assert data["user_id"] is None
    assert "ip_address" not in data

    authenticated = await client.post(
        "/v1/analytics/track", json={"event_name": "tool_open", "properties": 7}, headers=headers
    )
    assert authenticated.json()["data"]["user_id"] == user_id
    assert authenticated.json()["data"]["properties"] == {"value": 7}

    ghost = await client.post("/v1/analytics/track", json={"event_name": "signup", "user_id": "missing-user"})
    assert ghost.status_code == 201
    assert ghost.json()["data"]["user_id"] is None

    stamped = await client.post(
        "/v1/analytics/track", json={"event_name": "signup", "timestamp": "2026-01-02T03:04:05Z"}
    )
    assert stamped.json()["data"]["created_at"].startswith("2026-01-02T03:04:05")

    invalid = await client.post("/v1/analytics/track", json={"event_name": "signup", "timestamp": "soon"})
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_TIMESTAMP"


@pytest.mark.asyncio
async def test_events_listing_filters_and_date_range(client) -> None:
    _raw, admin, _admin_id, _key_id = await create_test_api_key(role="ADMIN")
    events = [
        {"event_name": "page_view", "page": "/tools", "session_id": "s1", "timestamp": "2026-03-01T10:00:00Z"},
        {"event_name": "page_view", "page": "/news", "session_id": "s2", "timestamp": "2026-03-02T10:00:00Z"},
        {"event_name": "signup", "session_id": "s1", "timestamp": "2026-03-02T23:30:00Z"},
        {"event_name": "tool_open", "timestamp": "2026-02-01T10:00:00Z"},
    ]
    for event in events:
        response = await client.post("/v1/analytics/track", json=event, headers={"X-Forwarded-For": "198.51.100.1"})
        assert response.status_code == 201

    march = await client.get(
        "/v1/analytics/events",
        params={"start_date": "2026-03-01", "end_date": "2026-03-02"},
        headers=admin,
    )
    assert march.status_code == 200
    data = march.json()["data"]
    assert data["page"]["total"] == 3
    assert [item["event_name"] for item in data["items"]] == ["signup", "page_view", "page_view"]
    assert data["items"][0]["ip_address"] == "198.51.100.1"

    names = await client.get(
        "/v1/analytics/events",
        params=[("start_date", "2026-02-01"), ("end_date", "2026-03-31"), ("event_name", "signup,tool_open")],
        headers=admin,
    )
    assert {item["event_name"] for item in names.json()["data"]["items"]} == {"signup", "tool_open"}

    by_session = await client.get(
        "/v1/analytics/events",
        params={"start_date": "2026-03-01", "end_date": "2026-03-02", "session_id": "s1", "page_path": "/tools"},
        headers=admin,
    )
    assert by_session.json()["data"]["page"]["total"] == 1

    inverted = await client.get(
        "/v1/analytics/events", params={"start_date": "2026-03-05", "end_date": "2026-03-01"}, headers=admin
    )
    assert inverted.status_code == 400
    assert inverted.json()["error"]["code"] == "INVALID_DATE_RANGE"

    garbage = await client.get("/v1/analytics/events", params={"start_date": "March"}, headers=admin)
    assert garbage.json()["error"]["code"] == "INVALID_DATE_RANGE"


@pytest.mark.asyncio
async def test_summary_is_admin_only(client) -> None:
    _raw, admin, _admin_id, _key_id = await create_test_api_key(role="ADMIN")
    _raw, member, _member_id, _key_id = await create_test_api_key()
    await client.post("/v1/analytics/track", json={"event_name": "page_view", "page": "/tools"}, headers=admin)
    await client.post("/v1/analytics/track", json={"event_name": "page_view", "page": "/tools"})
    await client.post("/v1/analytics/track", json={"event_name": "signup", "page": "/join"})

    assert (await client.get("/v1/analytics/summary", headers=member)).status_code == 403

    summary = await client.get("/v1/analytics/summary", headers=admin)
    data = summary.json()["data"]
    assert data["totals"]["events"] == 3
    assert data["totals"]["unique_users"] == 1
    assert data["totals"]["events_per_user"] == 3.0
    assert data["top_events"][0] == {"event_name": "page_view", "count": 2}
    assert data["top_pages"][0] == {"page": "/tools", "count": 2}
    assert sum(data["daily_events"].values()) == 3
    assert len(data["recent_events"]) == 3
    assert all("ip_address" not in event for event in data["recent_events"])

    admin_view = await client.get("/v1/admin/analytics/summary", headers=admin)
    assert admin_view.json()["data"]["totals"]["unique_users"] == 1
