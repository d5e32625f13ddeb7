from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from toolforge.core.config import get_settings
from toolforge.core.logging import configure_logging
from toolforge.persistence.db import SessionLocal
from toolforge.services.news_feed import sync_news


logger = logging.getLogger(__name__)

# Every six hours on the hour.
SYNC_HOURS = {0, 6, 12, 18}


async def sync_news_job(ctx) -> int:
    settings = get_settings()
    if not settings.news_sync_enabled:
        logger.info("news_sync_disabled")
        return 0
    async with SessionLocal() as session:
        created = await sync_news(session)
    logger.info("news_sync_job_done job_id=%s created=%s", ctx.get("job_id"), created)
    return created


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("news_worker_started")


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [sync_news_job]
    cron_jobs = [cron(sync_news_job, hour=SYNC_HOURS, minute=0, run_at_startup=False)]
    on_startup = _startup
