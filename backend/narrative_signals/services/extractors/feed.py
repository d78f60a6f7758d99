from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

import feedparser
import httpx
from bs4 import BeautifulSoup
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseExtractor, ExtractionError, ExtractionResult
from ..platforms import Platform, is_feed_url
from ...core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_FEED_ITEMS = 20

_BARE_AMPERSAND_RE = re.compile(r"&(?!(?:amp|lt|gt|quot|apos|#\d+|#x[a-f\d]+);)", re.IGNORECASE)
_STRAY_LT_RE = re.compile(r"<(?![/?a-zA-Z!])")


def sanitize_feed_xml(raw_xml: str) -> str:
    """Escape bare ampersands and stray '<' that break strict XML parsing."""
    cleaned = _BARE_AMPERSAND_RE.sub("&amp;", raw_xml)
    return _STRAY_LT_RE.sub("&lt;", cleaned)


def is_html_response(content_type: str | None, body: str) -> bool:
    if content_type and "text/html" in content_type.lower():
        return True
    head = body.strip()[:500].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


def _strip_html(value: str | None) -> str:
    if not value:
        return ""
    if "<" not in value:
        return value.strip()
    return BeautifulSoup(value, "lxml").get_text(" ", strip=True)


def _entry_body(entry: Any) -> str:
    body = entry.get("summary") or entry.get("description") or ""
    if not body and entry.get("content"):
        body = entry["content"][0].get("value", "")
    return _strip_html(body)


def combine_feed_entries(entries: List[Dict[str, Any]]) -> str:
    blocks = []
    for index, article in enumerate(entries, start=1):
        blocks.append(
            f"Article {index}: {article['title']}\n"
            f"Published: {article['published']}\n"
            f"Link: {article['link']}\n"
            f"Content: {article['content']}\n"
            "\n---\n"
        )
    return "\n".join(blocks).strip()


class FeedExtractor(BaseExtractor):
    """Fetches an RSS/Atom feed directly and flattens its newest entries."""

    name = "feed"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self.timeout = settings.SCRAPER_FEED_TIMEOUT_SECONDS

    def applies_to(self, url: str, platform: str) -> bool:
        return platform == Platform.SYNDICATION or is_feed_url(url)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            return await client.get(
                url,
                headers={
                    "User-Agent": settings.SCRAPER_USER_AGENT,
                    "Accept": "application/rss+xml, application/xml, text/xml, */*",
                },
            )

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        resp = await self._fetch(url)
        if resp.status_code >= 400:
            raise ExtractionError(
                f"Feed fetch failed with status {resp.status_code}", tier=self.name
            )

        raw_xml = resp.text
        if is_html_response(resp.headers.get("content-type"), raw_xml):
            raise ExtractionError("Feed returned HTML content", tier=self.name)

        parsed = feedparser.parse(sanitize_feed_xml(raw_xml))
        if not parsed.entries:
            detail = getattr(parsed, "bozo_exception", None)
            raise ExtractionError(
                f"Feed contained no entries{f': {detail}' if detail else ''}",
                tier=self.name,
            )

        articles: List[Dict[str, Any]] = []
        for entry in parsed.entries[:MAX_FEED_ITEMS]:
            articles.append(
                {
                    "title": (entry.get("title") or "Untitled").strip(),
                    "link": entry.get("link") or "",
                    "published": entry.get("published") or entry.get("updated") or "",
                    "content": _entry_body(entry),
                }
            )

        logger.info(
            "Parsed feed with %d entries",
            len(articles),
            extra={"step": "extract:feed"},
        )

        return ExtractionResult(
            text=combine_feed_entries(articles),
            method=self.name,
            title=parsed.feed.get("title"),
            metadata={
                "article_count": len(articles),
                "articles": [
                    {k: a[k] for k in ("title", "link", "published")} for a in articles
                ],
            },
        )
