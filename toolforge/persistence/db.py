from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from toolforge.core.config import Settings, get_settings


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_url.startswith("sqlite"):
        return options
    # Bounded Postgres pool; bursts wait up to pool_timeout for a connection.
    options.update(
        pool_size=max(1, settings.api_db_pool_size),
        max_overflow=max(0, settings.api_db_max_overflow),
        pool_timeout=30,
        pool_recycle=1800,
    )
    if settings.api_db_statement_timeout_ms > 0:
        timeout = str(settings.api_db_statement_timeout_ms)
        options["connect_args"] = {"server_settings": {"statement_timeout": timeout}}
    return options


settings = get_settings()
engine = create_async_engine(settings.database_url, **_engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


if settings.database_url.startswith("sqlite"):

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_foreign_keys(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
        # Cascades on user delete depend on this; sqlite leaves it off per connection.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, int | None]:
    """Connection pool counters for the admin health view.

    Pools without a given counter (sqlite uses a static or null pool) report ``None``.
    """
    pool = engine.sync_engine.pool
    stats: dict[str, int | None] = {}
    for name, attr in (
        ("size", "size"),
        ("checked_out", "checkedout"),
        ("checked_in", "checkedin"),
        ("overflow", "overflow"),
    ):
        counter = getattr(pool, attr, None)
        stats[name] = int(counter()) if callable(counter) else None
    return stats
