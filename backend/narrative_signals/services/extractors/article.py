from __future__ import annotations

from typing import Dict, Tuple

import httpx
from bs4 import BeautifulSoup, Comment
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseExtractor, ExtractionError, ExtractionResult
from ..content import clean_text
from ..platforms import Platform
from ...core.config import get_settings

settings = get_settings()

_BOILERPLATE_TAGS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "svg",
    "nav",
    "header",
    "footer",
    "aside",
    "form",
]
MIN_PARAGRAPH_CHARS = 25


def extract_readable_text(html: str) -> Tuple[str, str]:
    """
    Readability-style main-content extraction.

    Paragraphs vote for their parent (full score) and grandparent (half
    score); the highest-scoring container is taken as the article body.
    Returns (title, text).
    """
    soup = BeautifulSoup(html, "lxml")

    for element in soup.find_all(_BOILERPLATE_TAGS):
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    title = soup.title.get_text(strip=True) if soup.title else ""

    nodes: Dict[int, object] = {}
    scores: Dict[int, float] = {}
    for paragraph in soup.find_all("p"):
        text = paragraph.get_text(" ", strip=True)
        if len(text) < MIN_PARAGRAPH_CHARS:
            continue
        score = 1 + text.count(",") + min(len(text) // 100, 3)
        parent = paragraph.parent
        if parent is None:
            continue
        nodes[id(parent)] = parent
        scores[id(parent)] = scores.get(id(parent), 0) + score
        grandparent = parent.parent
        if grandparent is not None:
            nodes[id(grandparent)] = grandparent
            scores[id(grandparent)] = scores.get(id(grandparent), 0) + score / 2

    if scores:
        best = nodes[max(scores, key=scores.get)]
        paragraphs = [
            p.get_text(" ", strip=True)
            for p in best.find_all(["h1", "h2", "h3", "p", "li"])
        ]
        text = "\n".join(p for p in paragraphs if p)
        if text:
            return title, clean_text(text)

    for selector in ("article", "main", "body"):
        node = soup.select_one(selector)
        if node is not None:
            return title, clean_text(node.get_text("\n", strip=True))
    return title, ""


class ReadabilityExtractor(BaseExtractor):
    """Fetches raw HTML and keeps only the main article body."""

    name = "readability"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self.timeout = settings.SCRAPER_REQUEST_TIMEOUT_SECONDS

    def applies_to(self, url: str, platform: str) -> bool:
        return platform in (Platform.NEWS, Platform.GENERIC)

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
            return await client.get(url, headers={"User-Agent": settings.SCRAPER_USER_AGENT})

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        resp = await self._fetch(url)
        if resp.status_code >= 400:
            raise ExtractionError(f"HTTP {resp.status_code}", tier=self.name)

        title, text = extract_readable_text(resp.text)
        if not text:
            raise ExtractionError("Readability could not extract content", tier=self.name)

        return ExtractionResult(text=text, method=self.name, title=title or None)
