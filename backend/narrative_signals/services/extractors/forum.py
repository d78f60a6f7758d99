from __future__ import annotations

from typing import Any, List
from urllib.parse import urlparse, urlunparse

import httpx
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseExtractor, ExtractionError, ExtractionResult
from ..platforms import Platform
from ...core.config import get_settings

settings = get_settings()

MAX_COMMENTS = 10
MAX_LISTING_POSTS = 20
LISTING_EXCERPT_CHARS = 200


def forum_json_url(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(path=parsed.path.rstrip("/") + ".json"))


def _children(node: Any) -> List[dict]:
    if not isinstance(node, dict):
        return []
    return (node.get("data") or {}).get("children") or []


def render_forum_payload(data: Any) -> str:
    """
    Flatten a forum JSON payload.

    A post page is a two-element list (post, comment tree); a listing is a
    single object with children posts.
    """
    lines: List[str] = []

    if isinstance(data, list) and data and _children(data[0]):
        post = _children(data[0])[0].get("data") or {}
        lines.append(f"Title: {post.get('title', '')}")
        lines.append("")
        if post.get("selftext"):
            lines.append(post["selftext"])
            lines.append("")
        comments = _children(data[1]) if len(data) > 1 else []
        if comments:
            lines.append("Top Comments:")
            for comment in comments[:MAX_COMMENTS]:
                body = (comment.get("data") or {}).get("body")
                if body:
                    lines.append(f"- {body}")
    elif isinstance(data, dict):
        for child in _children(data)[:MAX_LISTING_POSTS]:
            post = child.get("data")
            if not post:
                continue
            lines.append(post.get("title", ""))
            if post.get("selftext"):
                lines.append(f"{post['selftext'][:LISTING_EXCERPT_CHARS]}...")
            lines.append("")

    return "\n".join(lines).strip()


class ForumJsonExtractor(BaseExtractor):
    """Reads forum threads and listings from their public JSON endpoint."""

    name = "forum_json"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self.timeout = settings.SCRAPER_REQUEST_TIMEOUT_SECONDS

    def applies_to(self, url: str, platform: str) -> bool:
        return platform == Platform.FORUM

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
                url, headers={"User-Agent": settings.SCRAPER_FORUM_USER_AGENT}
            )

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        resp = await self._fetch(forum_json_url(url))
        if resp.status_code >= 400:
            raise ExtractionError(f"HTTP {resp.status_code}", tier=self.name)

        try:
            data = resp.json()
        except ValueError as e:
            raise ExtractionError(f"Invalid JSON payload: {e}", tier=self.name) from e

        text = render_forum_payload(data)
        if not text:
            raise ExtractionError("Forum payload had no posts", tier=self.name)

        return ExtractionResult(text=text, method=self.name, title="Forum Content")
