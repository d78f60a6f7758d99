"""
URL classification and per-platform browser extraction settings.

The classifier is a pure function of the URL; unparsable input falls back to
the generic platform.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple
from urllib.parse import urlparse


class Platform:
    SOCIAL = "social"
    FORUM = "forum"
    SYNDICATION = "syndication"
    NEWS = "news"
    GENERIC = "generic"

    ALL = (SOCIAL, FORUM, SYNDICATION, NEWS, GENERIC)


@dataclass(frozen=True)
class PlatformConfig:
    name: str
    # Selectors awaited (in priority order) before extraction starts
    selectors: Tuple[str, ...]
    # Selectors whose text is extracted (first non-empty match wins)
    content_selectors: Tuple[str, ...]
    scroll_count: int = 0
    scroll_delay_ms: int = 1000
    wait_timeout_ms: int = 5000


PLATFORM_CONFIGS: Dict[str, PlatformConfig] = {
    Platform.SOCIAL: PlatformConfig(
        name=Platform.SOCIAL,
        selectors=(
            'article[data-testid="tweet"]',
            'div[data-testid="tweetText"]',
            '[data-testid="primaryColumn"]',
        ),
        content_selectors=(
            'div[data-testid="tweetText"]',
            'article[data-testid="tweet"]',
        ),
        scroll_count=1,
        scroll_delay_ms=1000,
        wait_timeout_ms=10000,
    ),
    Platform.FORUM: PlatformConfig(
        name=Platform.FORUM,
        selectors=(
            "shreddit-post",
            '[data-test-id="post-content"]',
            ".Post",
            'div[data-click-id="body"]',
        ),
        content_selectors=(
            '[slot="title"]',
            '[slot="text-body"]',
            ".Post h1",
            ".Post .RichTextJSON-root",
            '[data-click-id="body"]',
        ),
        scroll_count=1,
        scroll_delay_ms=1000,
        wait_timeout_ms=10000,
    ),
    Platform.NEWS: PlatformConfig(
        name=Platform.NEWS,
        selectors=("article", "main", ".article-body", ".post-content"),
        content_selectors=("article", "main", ".article-body", ".post-content"),
        scroll_count=0,
        wait_timeout_ms=5000,
    ),
    Platform.SYNDICATION: PlatformConfig(
        name=Platform.SYNDICATION,
        selectors=("body",),
        content_selectors=("body",),
        scroll_count=0,
        wait_timeout_ms=5000,
    ),
    Platform.GENERIC: PlatformConfig(
        name=Platform.GENERIC,
        selectors=("body",),
        content_selectors=("article", "main", "body"),
        scroll_count=0,
        wait_timeout_ms=5000,
    ),
}

SOCIAL_DOMAINS = ("x.com", "twitter.com")
FORUM_DOMAINS = ("reddit.com",)
NEWS_DOMAINS = (
    "bbc.com",
    "bbc.co.uk",
    "cnn.com",
    "nytimes.com",
    "theguardian.com",
    "washingtonpost.com",
    "reuters.com",
    "bloomberg.com",
    "apnews.com",
    "forbes.com",
    "wsj.com",
    "ft.com",
)
FEED_PATH_MARKERS = ("/feed", "/rss", "/atom", "feed.xml", "rss.xml")

# Platforms whose extracted text must reach the minimum word count
MIN_WORD_COUNT_PLATFORMS = frozenset(
    {Platform.NEWS, Platform.SYNDICATION, Platform.GENERIC}
)


def _matches_domain(domain: str, candidates: Tuple[str, ...]) -> bool:
    return any(domain == c or domain.endswith("." + c) for c in candidates)


def is_feed_url(url: str) -> bool:
    """Heuristic check for RSS/Atom feed URLs based on the path."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    path = (parsed.path or "").lower()
    if path.endswith(".xml") or path.endswith(".rss"):
        return True
    lowered = url.lower()
    return any(marker in lowered for marker in FEED_PATH_MARKERS)


def detect_platform(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return Platform.GENERIC

    hostname = (parsed.hostname or "").lower()
    if not parsed.scheme or not hostname:
        return Platform.GENERIC

    domain = hostname[4:] if hostname.startswith("www.") else hostname

    if domain in SOCIAL_DOMAINS:
        return Platform.SOCIAL
    if _matches_domain(domain, FORUM_DOMAINS):
        return Platform.FORUM
    if is_feed_url(url):
        return Platform.SYNDICATION
    if _matches_domain(domain, NEWS_DOMAINS):
        return Platform.NEWS
    return Platform.GENERIC


def get_platform_config(platform: str) -> PlatformConfig:
    return PLATFORM_CONFIGS.get(platform, PLATFORM_CONFIGS[Platform.GENERIC])


def enforces_min_word_count(platform: str) -> bool:
    return platform in MIN_WORD_COUNT_PLATFORMS
