from __future__ import annotations

import argparse
import asyncio
import sys

from toolforge.core.logging import configure_logging
from toolforge.persistence.db import SessionLocal, engine
from toolforge.services.news_feed import resolve_feed_urls, sync_news


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a one-off RSS/Atom news sync")
    parser.add_argument(
        "--feed",
        action="append",
        default=None,
        help="Feed URL to sync instead of NEWS_RSS_FEEDS (repeatable)",
    )
    return parser


async def _sync(args: argparse.Namespace) -> int:
    feed_urls = resolve_feed_urls("\n".join(args.feed)) if args.feed else None
    try:
        async with SessionLocal() as session:
            created = await sync_news(session, feed_urls=feed_urls)
    finally:
        await engine.dispose()
    print(f"News sync stored {created} new articles.")
    return 0


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_sync(args))
    except Exception as exc:  # noqa: BLE001
        print(f"sync_news failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
