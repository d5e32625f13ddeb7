"""RSS/Atom ingestion into NewsArticle rows.

Feeds are fetched with httpx and parsed with ElementTree; both RSS 2.0 and Atom
documents are understood. ``sync_news`` stores only articles whose source URL is
not already present.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Iterable
from urllib.parse import urlparse

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from toolforge.core.config import get_settings
from toolforge.core.errors import NewsFeedError
from toolforge.core.timeutil import ensure_aware, utc_now
from toolforge.domain.models import NewsArticle
from toolforge.persistence.repos import news as news_repo
from toolforge.services.slugs import join_list, slugify, unique_slug


logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 280
UNKNOWN_SOURCE = "Unknown Source"

_NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "media": "http://search.yahoo.com/mrss/",
}
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_IMG_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)

# Keyword families checked in order; the first hit wins.
_CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Tutorials", ("tutorial", "how to", "guide", "walkthrough")),
    ("Product Updates", ("release", "update", "feature", "launch")),
    ("Research", ("research", "study", "paper", "science")),
    ("AI Tools", ("tool", "platform", "app", "software")),
)
DEFAULT_CATEGORY = "Industry News"


@dataclass(frozen=True)
class FeedItem:
    title: str | None
    link: str | None
    description: str | None = None
    content: str | None = None
    categories: tuple[str, ...] = ()
    published: str | None = None
    enclosure_url: str | None = None
    media_content_url: str | None = None
    media_thumbnail_url: str | None = None


@dataclass(frozen=True)
class ParsedFeed:
    title: str | None
    items: list[FeedItem] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedArticle:
    title: str
    slug: str
    summary: str
    content: str
    image_url: str | None
    source: str
    source_url: str
    category: str
    tags: str
    published_at: datetime


def resolve_feed_urls(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in re.split(r"[\n,]", raw) if part.strip()]


def strip_html(value: str) -> str:
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", value)).strip()


def truncate_text(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[: max_length - 1].strip()}…"


def determine_category(feed_title: str | None, tags: Iterable[str], text: str) -> str:
    haystack = f"{feed_title or ''} {' '.join(tags)} {text}".lower()
    for category, keywords in _CATEGORY_RULES:
        if any(keyword in haystack for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def resolve_source_name(link: str, feed_title: str | None) -> str:
    if feed_title:
        return feed_title
    hostname = urlparse(link).hostname
    if not hostname:
        return UNKNOWN_SOURCE
    return re.sub(r"^www\.", "", hostname)


def parse_published(value: str | None, *, now: datetime | None = None) -> datetime:
    # RSS uses RFC 822 dates, Atom uses ISO 8601; unparseable dates mean "now".
    fallback = now or utc_now()
    if not value or not value.strip():
        return fallback
    text = value.strip()
    try:
        return ensure_aware(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return ensure_aware(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return fallback


def extract_image_url(item: FeedItem, content: str) -> str | None:
    for candidate in (item.enclosure_url, item.media_content_url, item.media_thumbnail_url):
        if candidate:
            return candidate
    match = _IMG_RE.search(content)
    return match.group(1) if match else None


def parse_item(item: FeedItem, *, feed_title: str | None, now: datetime | None = None) -> ParsedArticle | None:
    """Map one feed entry to an article; entries without title or link are dropped."""
    title = (item.title or "").strip()
    link = (item.link or "").strip()
    if not title or not link:
        return None
    raw_content = item.content or item.description or ""
    summary = truncate_text(strip_html(item.description or raw_content), SUMMARY_MAX_LENGTH)
    content = raw_content or summary
    tags = [tag.strip() for tag in item.categories if tag and tag.strip()]
    return ParsedArticle(
        title=title,
        slug=slugify(title),
        summary=summary,
        content=content,
        image_url=extract_image_url(item, content),
        source=resolve_source_name(link, feed_title),
        source_url=link,
        category=determine_category(feed_title, tags, f"{title} {summary} {content}"),
        tags=join_list(tags),
        published_at=parse_published(item.published, now=now),
    )


def _text(element: ET.Element | None) -> str | None:
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


def _rss_item(element: ET.Element) -> FeedItem:
    enclosure = element.find("enclosure")
    media_content = element.find("media:content", _NS)
    media_thumbnail = element.find("media:thumbnail", _NS)
    return FeedItem(
        title=_text(element.find("title")),
        link=_text(element.find("link")),
        description=_text(element.find("description")),
        content=_text(element.find("content:encoded", _NS)),
        categories=tuple(text for text in (_text(cat) for cat in element.findall("category")) if text),
        published=_text(element.find("pubDate")),
        enclosure_url=enclosure.get("url") if enclosure is not None else None,
        media_content_url=media_content.get("url") if media_content is not None else None,
        media_thumbnail_url=media_thumbnail.get("url") if media_thumbnail is not None else None,
    )


def _atom_link(element: ET.Element) -> str | None:
    # Prefer the alternate link; Atom entries may carry several.
    fallback = None
    for link in element.findall("atom:link", _NS):
        href = link.get("href")
        if not href:
            continue
        if link.get("rel", "alternate") == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _atom_item(element: ET.Element) -> FeedItem:
    media_content = element.find("media:content", _NS)
    media_thumbnail = element.find("media:thumbnail", _NS)
    return FeedItem(
        title=_text(element.find("atom:title", _NS)),
        link=_atom_link(element),
        description=_text(element.find("atom:summary", _NS)),
        content=_text(element.find("atom:content", _NS)),
        categories=tuple(
            term for term in (cat.get("term") for cat in element.findall("atom:category", _NS)) if term
        ),
        published=_text(element.find("atom:published", _NS)) or _text(element.find("atom:updated", _NS)),
        media_content_url=media_content.get("url") if media_content is not None else None,
        media_thumbnail_url=media_thumbnail.get("url") if media_thumbnail is not None else None,
    )


def parse_feed(document: str | bytes) -> ParsedFeed:
    """Parse an RSS 2.0 or Atom document."""
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise NewsFeedError(f"Invalid feed XML: {exc}") from exc
    if root.tag == f"{{{_NS['atom']}}}feed":
        return ParsedFeed(
            title=_text(root.find("atom:title", _NS)),
            items=[_atom_item(entry) for entry in root.findall("atom:entry", _NS)],
        )
    channel = root.find("channel")
    if channel is None:
        raise NewsFeedError(f"Unsupported feed root element: {root.tag}")
    return ParsedFeed(
        title=_text(channel.find("title")),
        items=[_rss_item(item) for item in channel.findall("item")],
    )


def deduplicate(articles: Iterable[ParsedArticle]) -> list[ParsedArticle]:
    # First occurrence wins, then newest first.
    seen: dict[str, ParsedArticle] = {}
    for article in articles:
        key = article.source_url or article.slug
        seen.setdefault(key, article)
    return sorted(seen.values(), key=lambda article: article.published_at, reverse=True)


async def fetch_articles(
    feed_urls: list[str],
    *,
    client: httpx.AsyncClient | None = None,
    delay_s: float | None = None,
) -> list[ParsedArticle]:
    settings = get_settings()
    delay = settings.news_rss_request_delay_ms / 1000.0 if delay_s is None else delay_s
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=settings.news_rss_timeout_s, follow_redirects=True)
    collected: list[ParsedArticle] = []
    try:
        for index, url in enumerate(feed_urls):
            if index > 0 and delay > 0:
                await asyncio.sleep(delay)
            try:
                response = await http.get(url)
                response.raise_for_status()
                feed = parse_feed(response.content)
            except (httpx.HTTPError, NewsFeedError) as exc:
                # One broken feed must not stop the others.
                logger.warning("news_feed_fetch_failed url=%s error=%s", url, exc)
                continue
            parsed = [parse_item(item, feed_title=feed.title) for item in feed.items]
            collected.extend(article for article in parsed if article is not None)
    finally:
        if owns_client:
            await http.aclose()
    articles = deduplicate(collected)
    logger.info("news_feed_fetched feeds=%s fetched=%s unique=%s", len(feed_urls), len(collected), len(articles))
    return articles


async def store_articles(session: AsyncSession, articles: list[ParsedArticle]) -> int:
    """Insert articles whose source URL is new; returns how many were stored."""
    existing = await news_repo.existing_source_urls(session, (a.source_url for a in articles))
    reserved: set[str] = set()
    created = 0
    for article in articles:
        if article.source_url in existing:
            continue
        base = article.slug or f"article-{int(time.time() * 1000)}"
        try:
            slug = await unique_slug(session, NewsArticle, base, reserved=reserved)
            session.add(
                NewsArticle(
                    title=article.title,
                    slug=slug,
                    summary=article.summary,
                    content=article.content,
                    image_url=article.image_url,
                    source=article.source,
                    source_url=article.source_url,
                    category=article.category,
                    tags=article.tags,
                    published_at=article.published_at,
                    is_featured=False,
                )
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("news_article_store_failed title=%s", article.title, exc_info=exc)
            continue
        reserved.add(slug)
        existing.add(article.source_url)
        created += 1
    return created


async def sync_news(
    session: AsyncSession,
    *,
    feed_urls: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
    delay_s: float | None = None,
) -> int:
    urls = feed_urls if feed_urls is not None else resolve_feed_urls(get_settings().news_rss_feeds)
    if not urls:
        logger.warning("news_sync_skipped reason=no_feeds_configured")
        return 0
    articles = await fetch_articles(urls, client=client, delay_s=delay_s)
    if not articles:
        logger.info("news_sync_completed fetched=0 stored=0")
        return 0
    created = await store_articles(session, articles)
    logger.info("news_sync_completed fetched=%s stored=%s", len(articles), created)
    return created
