from __future__ import annotations

import pytest

from toolforge.tests.utils.auth import create_test_api_key


async def _create_category(client, headers, name: str = "General Chat", **extra) -> dict:
    response = await client.post("/v1/forum/admin/categories", json={"name": name, **extra}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


async def _create_thread(client, headers, category_slug: str, title: str) -> dict:
    response = await client.post(
        "/v1/forum/threads",
        json={"category_slug": category_slug, "title": title, "content": "Long enough opening post"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.asyncio
async def test_thread_and_post_counters(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    _raw, member, member_id, _key = await create_test_api_key(role="USER", name="Ada Lovelace")
    category = await _create_category(client, admin)
    assert category["slug"] == "general-chat"
    assert category["display_order"] == 999

    thread = await _create_thread(client, member, "general-chat", "Best prompt tools?")
    assert thread["slug"] == "best-prompt-tools"
    assert thread["author"]["id"] == member_id
    assert thread["reply_count"] == 0

    reply = await client.post(f"/v1/forum/threads/{thread['id']}/posts", json={"content": "PromptPad"}, headers=admin)
    assert reply.status_code == 201
    post = reply.json()["data"]

    detail = await client.get("/v1/forum/threads/best-prompt-tools")
    assert detail.status_code == 200
    data = detail.json()["data"]
    assert data["thread"]["reply_count"] == 1
    assert data["thread"]["view_count"] == 1
    assert data["category"]["slug"] == "general-chat"
    assert [item["id"] for item in data["posts"]["items"]] == [post["id"]]

    again = await client.get("/v1/forum/threads/best-prompt-tools")
    assert again.json()["data"]["thread"]["view_count"] == 2

    categories = await client.get("/v1/forum/categories")
    stats = categories.json()["data"][0]
    assert stats["thread_count"] == 1
    assert stats["post_count"] == 2
    assert stats["last_activity_at"] is not None

    deleted = await client.delete(f"/v1/forum/posts/{post['id']}", headers=admin)
    assert deleted.status_code == 204
    after = await client.get("/v1/forum/threads/best-prompt-tools")
    assert after.json()["data"]["thread"]["reply_count"] == 0
    assert after.json()["data"]["posts"]["items"] == []


@pytest.mark.asyncio
async def test_thread_validation_and_ownership(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    _raw, author, _author_id, _key = await create_test_api_key(role="USER")
    _raw, stranger, _stranger_id, _key = await create_test_api_key(role="USER")
    await _create_category(client, admin, "Help")

    short_title = await client.post(
        "/v1/forum/threads", json={"category_slug": "help", "title": "Hi", "content": "Long enough body"}, headers=author
    )
    assert short_title.status_code == 400
    assert short_title.json()["error"]["code"] == "INVALID_TITLE"

    short_body = await client.post(
        "/v1/forum/threads", json={"category_slug": "help", "title": "Hello", "content": "short"}, headers=author
    )
    assert short_body.json()["error"]["code"] == "INVALID_CONTENT"

    missing_category = await client.post(
        "/v1/forum/threads",
        json={"category_slug": "nope", "title": "Hello", "content": "Long enough body"},
        headers=author,
    )
    assert missing_category.status_code == 404
    assert missing_category.json()["error"]["code"] == "CATEGORY_NOT_FOUND"

    thread = await _create_thread(client, author, "help", "Setup question")

    hijack = await client.patch(f"/v1/forum/threads/{thread['id']}", json={"title": "Mine now"}, headers=stranger)
    assert hijack.status_code == 403

    renamed = await client.patch(f"/v1/forum/threads/{thread['id']}", json={"title": "Setup answered"}, headers=author)
    assert renamed.status_code == 200
    assert renamed.json()["data"]["slug"] == "setup-answered"

    reply = await client.post(f"/v1/forum/threads/{thread['id']}/posts", json={"content": "Thanks"}, headers=stranger)
    post_id = reply.json()["data"]["id"]
    edited = await client.patch(f"/v1/forum/posts/{post_id}", json={"content": "Thanks a lot"}, headers=stranger)
    assert edited.json()["data"]["is_edited"] is True
    blocked = await client.patch(f"/v1/forum/posts/{post_id}", json={"content": "Edited by author"}, headers=author)
    assert blocked.status_code == 403

    removed = await client.delete(f"/v1/forum/threads/{thread['id']}", headers=author)
    assert removed.status_code == 204
    assert (await client.get("/v1/forum/threads/setup-answered")).status_code == 404


@pytest.mark.asyncio
async def test_locked_threads_reject_replies_and_pinned_threads_lead(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    _raw, member, _member_id, _key = await create_test_api_key(role="USER")
    await _create_category(client, admin, "Showcase")
    older = await _create_thread(client, member, "showcase", "Older thread")
    newer = await _create_thread(client, member, "showcase", "Newer thread")

    listed = await client.get("/v1/forum/categories/showcase/threads")
    assert [item["id"] for item in listed.json()["data"]["threads"]["items"]] == [newer["id"], older["id"]]

    pinned = await client.patch(f"/v1/forum/threads/{older['id']}/pin", headers=admin)
    assert pinned.json()["data"]["is_pinned"] is True
    listed = await client.get("/v1/forum/categories/showcase/threads", params={"limit": "junk", "sort": "newest"})
    data = listed.json()["data"]
    assert [item["id"] for item in data["threads"]["items"]] == [older["id"], newer["id"]]
    assert data["threads"]["page"]["page_size"] == 20

    locked = await client.patch(f"/v1/forum/threads/{newer['id']}/lock", headers=admin)
    assert locked.json()["data"]["is_locked"] is True
    reply = await client.post(f"/v1/forum/threads/{newer['id']}/posts", json={"content": "Hello"}, headers=member)
    assert reply.status_code == 403
    assert reply.json()["error"]["code"] == "THREAD_LOCKED"

    member_pin = await client.patch(f"/v1/forum/threads/{newer['id']}/pin", headers=member)
    assert member_pin.status_code == 403


@pytest.mark.asyncio
async def test_admin_thread_listing_and_bulk_update(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    _raw, member, _member_id, _key = await create_test_api_key(role="USER", name="Grace Hopper")
    await _create_category(client, admin, "Ideas")
    first = await _create_thread(client, member, "ideas", "Dark mode please")
    second = await _create_thread(client, member, "ideas", "Export to CSV")

    by_author = await client.get("/v1/forum/admin/threads", params={"search": "grace"}, headers=admin)
    rows = by_author.json()["data"]
    assert {row["id"] for row in rows} == {first["id"], second["id"]}
    assert rows[0]["category_slug"] == "ideas"

    bulk = await client.patch(
        "/v1/forum/admin/threads/bulk",
        json={"ids": [first["id"], second["id"]], "is_locked": True},
        headers=admin,
    )
    assert bulk.json()["data"] == {"updated": 2}

    locked = await client.get("/v1/forum/admin/threads", params={"status": "locked"}, headers=admin)
    assert len(locked.json()["data"]) == 2
    pinned = await client.get("/v1/forum/admin/threads", params={"status": "pinned"}, headers=admin)
    assert pinned.json()["data"] == []
    unknown = await client.get("/v1/forum/admin/threads", params={"category_slug": "missing"}, headers=admin)
    assert unknown.json()["data"] == []

    empty = await client.patch("/v1/forum/admin/threads/bulk", json={"ids": [first["id"]]}, headers=admin)
    assert empty.json()["error"]["code"] == "NO_FIELDS"


@pytest.mark.asyncio
async def test_admin_category_management(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    general = await _create_category(client, admin, "General", display_order=1)
    await _create_category(client, admin, "Announcements", display_order=0)

    conflict = await client.post(
        "/v1/forum/admin/categories", json={"name": "Other", "slug": "general"}, headers=admin
    )
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "SLUG_CONFLICT"

    ordered = await client.get("/v1/forum/categories")
    assert [row["slug"] for row in ordered.json()["data"]] == ["announcements", "general"]

    updated = await client.patch(
        f"/v1/forum/admin/categories/{general['id']}",
        json={"description": "Anything goes", "slug": "lounge"},
        headers=admin,
    )
    assert updated.json()["data"]["slug"] == "lounge"
    assert updated.json()["data"]["description"] == "Anything goes"

    deleted = await client.delete(f"/v1/forum/admin/categories/{general['id']}", headers=admin)
    assert deleted.status_code == 204
    missing = await client.get("/v1/forum/categories/lounge/threads")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_thread_search_treats_wildcards_literally(client) -> None:
    _raw, admin, _admin_id, _key = await create_test_api_key(role="ADMIN")
    _raw, member, _member_id, _key = await create_test_api_key(role="USER", name="Ada Lovelace")
    await _create_category(client, admin, "Ideas")
    literal = await _create_thread(client, member, "ideas", "Rename snake_case fields")
    await _create_thread(client, member, "ideas", "Rename snakeXcase fields")
    await _create_thread(client, member, "ideas", "Reach 100% uptime")

    underscore = await client.get("/v1/forum/admin/threads", params={"search": "snake_case"}, headers=admin)
    assert [row["id"] for row in underscore.json()["data"]] == [literal["id"]]

    percent = await client.get("/v1/forum/admin/threads", params={"search": "%"}, headers=admin)
    assert [row["title"] for row in percent.json()["data"]] == ["Reach 100% uptime"]
