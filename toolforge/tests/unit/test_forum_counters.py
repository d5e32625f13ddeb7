from __future__ import annotations

from toolforge.domain.models import ForumCategory, ForumThread, User
from toolforge.persistence.db import SessionLocal
from toolforge.persistence.repos import forum as forum_repo


async def _seed_thread(view_count: int) -> str:
    async with SessionLocal() as session:
        author = User(email="reader@example.com", password="!")
        category = ForumCategory(name="General", slug="general")
        session.add_all([author, category])
        await session.flush()
        thread = ForumThread(
            category_id=category.id,
            author_id=author.id,
            title="Counting views",
            slug="counting-views",
            content="A thread that gets read a lot.",
            view_count=view_count,
        )
        session.add(thread)
        await session.commit()
        return thread.id


async def test_view_count_keeps_increments_from_overlapping_readers() -> None:
    thread_id = await _seed_thread(view_count=5)

    async with SessionLocal() as first, SessionLocal() as second:
        first_thread = await first.get(ForumThread, thread_id)
        second_thread = await second.get(ForumThread, thread_id)

        await forum_repo.increment_view_count(second, second_thread)
        await second.commit()
        assert second_thread.view_count == 6

        await forum_repo.increment_view_count(first, first_thread)
        await first.commit()
        # The loaded copy reflects the database value, not its own stale 5 + 1.
        assert first_thread.view_count == 7

    async with SessionLocal() as session:
        stored = await session.get(ForumThread, thread_id)
        assert stored.view_count == 7
