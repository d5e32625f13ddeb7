from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from toolforge.core.errors import NewsFeedError
from toolforge.domain.models import NewsArticle
from toolforge.persistence.db import SessionLocal
from toolforge.services.news_feed import (
    FeedItem,
    determine_category,
    fetch_articles,
    parse_feed,
    parse_item,
    parse_published,
    resolve_feed_urls,
    resolve_source_name,
    sync_news,
    truncate_text,
)


NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Model Weekly</title>
    <item>
      <title>New research paper on agents</title>
      <link>https://www.modelweekly.com/agents</link>
      <description>&lt;p&gt;A short &lt;b&gt;summary&lt;/b&gt;&lt;/p&gt;</description>
      <content:encoded>&lt;p&gt;Full body&lt;/p&gt;&lt;img src="https://img.example.com/a.png"&gt;</content:encoded>
      <category>Agents</category>
      <category>LLM</category>
      <pubDate>Tue, 13 Oct 2026 09:30:00 GMT</pubDate>
    </item>
    <item>
      <title>Launch day</title>
      <link>https://www.modelweekly.com/launch</link>
      <description>Shipping it</description>
      <enclosure url="https://img.example.com/launch.jpg" type="image/jpeg" />
    </item>
    <item>
      <title></title>
      <link>https://www.modelweekly.com/untitled</link>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Lab Notes</title>
  <entry>
    <title>How to fine-tune small models</title>
    <link rel="self" href="https://labnotes.dev/self/1" />
    <link rel="alternate" href="https://labnotes.dev/posts/1" />
    <summary>Step by step.</summary>
    <category term="Training" />
    <updated>2026-10-12T08:00:00Z</updated>
  </entry>
</feed>
"""


def test_resolve_feed_urls_splits_commas_and_newlines() -> None:
    assert resolve_feed_urls(None) == []
    assert resolve_feed_urls("https://a.test/rss, https://b.test/rss\n\nhttps://c.test/atom") == [
        "https://a.test/rss",
        "https://b.test/rss",
        "https://c.test/atom",
    ]


def test_parse_rss_feed_reads_channel_items() -> None:
    feed = parse_feed(RSS_FEED)
    assert feed.title == "Model Weekly"
    assert len(feed.items) == 3
    first = feed.items[0]
    assert first.link == "https://www.modelweekly.com/agents"
    assert first.categories == ("Agents", "LLM")
    assert first.content is not None and "Full body" in first.content
    assert feed.items[1].enclosure_url == "https://img.example.com/launch.jpg"


def test_parse_atom_feed_prefers_alternate_link() -> None:
    feed = parse_feed(ATOM_FEED)
    assert feed.title == "Lab Notes"
    entry = feed.items[0]
    assert entry.link == "https://labnotes.dev/posts/1"
    assert entry.categories == ("Training",)
    assert entry.published == "2026-10-12T08:00:00Z"


def test_parse_feed_rejects_bad_documents() -> None:
    with pytest.raises(NewsFeedError):
        parse_feed("<rss><channel>")
    with pytest.raises(NewsFeedError):
        parse_feed("<html><body/></html>")


def test_parse_item_maps_rss_entry() -> None:
    feed = parse_feed(RSS_FEED)
    article = parse_item(feed.items[0], feed_title=feed.title, now=NOW)
    assert article is not None
    assert article.slug == "new-research-paper-on-agents"
    assert article.summary == "A short summary"
    assert article.image_url == "https://img.example.com/a.png"
    assert article.source == "Model Weekly"
    assert article.category == "Research"
    assert article.tags == "Agents, LLM"
    assert article.published_at == datetime(2026, 10, 13, 9, 30, tzinfo=timezone.utc)


def test_parse_item_drops_entries_without_title_or_link() -> None:
    assert parse_item(FeedItem(title="", link="https://x.test"), feed_title=None) is None
    assert parse_item(FeedItem(title="Title", link=None), feed_title=None) is None


def test_parse_item_falls_back_to_now_and_summary() -> None:
    article = parse_item(
        FeedItem(title="Markets rally", link="https://www.example.org/m", description="Stocks rose"),
        feed_title=None,
        now=NOW,
    )
    assert article is not None
    assert article.published_at == NOW
    assert article.content == "Stocks rose"
    assert article.source == "example.org"
    assert article.category == "Industry News"
    assert article.image_url is None


def test_truncate_text_caps_summary_length() -> None:
    text = "a" * 400
    truncated = truncate_text(text, 280)
    assert len(truncated) == 280
    assert truncated.endswith("…")
    assert truncate_text("short", 280) == "short"


def test_determine_category_checks_keyword_families_in_order() -> None:
    assert determine_category(None, [], "A step by step guide to new release") == "Tutorials"
    assert determine_category(None, ["launch"], "") == "Product Updates"
    assert determine_category("Tool Review", [], "") == "AI Tools"
    assert determine_category(None, [], "nothing matches here") == "Industry News"


def test_resolve_source_name_without_feed_title() -> None:
    assert resolve_source_name("https://www.blog.example.com/post", None) == "blog.example.com"
    assert resolve_source_name("not a url", None) == "Unknown Source"


def test_parse_published_handles_both_formats() -> None:
    assert parse_published("Tue, 13 Oct 2026 09:30:00 GMT", now=NOW).day == 13
    assert parse_published("2026-10-12T08:00:00Z", now=NOW) == datetime(2026, 10, 12, 8, tzinfo=timezone.utc)
    assert parse_published("sometime", now=NOW) == NOW
    assert parse_published(None, now=NOW) == NOW


def _feed_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "rss.test":
            return httpx.Response(200, text=RSS_FEED)
        if request.url.host == "atom.test":
            return httpx.Response(200, text=ATOM_FEED)
        return httpx.Response(503)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_articles_skips_failing_feeds() -> None:
    async with _feed_client() as client:
        articles = await fetch_articles(
            ["https://rss.test/feed", "https://down.test/feed", "https://atom.test/feed"],
            client=client,
            delay_s=0,
        )
    urls = [article.source_url for article in articles]
    assert set(urls) == {
        "https://www.modelweekly.com/agents",
        "https://www.modelweekly.com/launch",
        "https://labnotes.dev/posts/1",
    }


@pytest.mark.asyncio
async def test_sync_news_stores_only_new_source_urls() -> None:
    async with SessionLocal() as session:
        session.add(
            NewsArticle(
                title="Launch day",
                slug="launch-day",
                summary="Already stored",
                content="Already stored",
                source="Model Weekly",
                source_url="https://www.modelweekly.com/launch",
                category="Product Updates",
            )
        )
        await session.commit()

        async with _feed_client() as client:
            created = await sync_news(session, feed_urls=["https://rss.test/feed"], client=client, delay_s=0)
        assert created == 1

        result = await session.execute(select(NewsArticle).order_by(NewsArticle.slug))
        slugs = [article.slug for article in result.scalars().all()]
        assert slugs == ["launch-day", "new-research-paper-on-agents"]


@pytest.mark.asyncio
async def test_sync_news_without_feeds_is_a_no_op() -> None:
    async with SessionLocal() as session:
        assert await sync_news(session, feed_urls=[]) == 0
