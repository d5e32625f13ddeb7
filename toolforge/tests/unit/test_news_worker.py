from __future__ import annotations

import pytest

from toolforge.workers import news_worker


@pytest.mark.asyncio
async def test_sync_job_is_a_no_op_when_disabled() -> None:
    # The test environment sets NEWS_SYNC_ENABLED=false.
    assert await news_worker.sync_news_job({"job_id": "test"}) == 0


def test_worker_schedules_sync_every_six_hours() -> None:
    assert news_worker.WorkerSettings.functions == [news_worker.sync_news_job]
    assert len(news_worker.WorkerSettings.cron_jobs) == 1
    assert news_worker.SYNC_HOURS == {0, 6, 12, 18}
