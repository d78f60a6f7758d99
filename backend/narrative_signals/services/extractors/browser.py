"""
Headless-browser extraction tier.

Launches Chromium through Playwright, waits for platform selectors, scrolls
for lazy-loaded content and extracts text with the platform's content
selectors, falling back to article -> main -> body. The browser is closed on
every exit path.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List

from playwright.async_api import Page, async_playwright, TimeoutError as PlaywrightTimeout

from .base import BaseExtractor, ExtractionError, ExtractionResult
from ..content import clean_text
from ..platforms import PlatformConfig, get_platform_config
from ...core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

HOSTED_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--single-process",
    "--disable-gpu",
]
LOCAL_LAUNCH_ARGS = ["--no-sandbox"]

VIEWPORT = {"width": 1920, "height": 1080}

_SELECTOR_TEXT_JS = """
(sel) => {
  const elements = document.querySelectorAll(sel);
  if (elements.length === 0) return null;
  const texts = Array.from(elements)
    .map((el) => (el.textContent || '').trim())
    .filter((t) => t.length > 0);
  return texts.join('\\n\\n');
}
"""

_FALLBACK_TEXT_JS = """
() => {
  for (const sel of ['article', 'main', 'body']) {
    const el = document.querySelector(sel);
    if (el) return el.innerText || '';
  }
  return '';
}
"""


def launch_args(env: str) -> List[str]:
    if env.lower() == "prod":
        return list(HOSTED_LAUNCH_ARGS)
    return list(LOCAL_LAUNCH_ARGS)


async def wait_for_dynamic_content(page: Page, config: PlatformConfig) -> bool:
    for selector in config.selectors:
        try:
            await page.wait_for_selector(selector, timeout=config.wait_timeout_ms)
            return True
        except PlaywrightTimeout:
            continue
    logger.warning(
        "No wait selectors matched",
        extra={"platform": config.name, "step": "extract:browser"},
    )
    return False


async def scroll_page(page: Page, config: PlatformConfig) -> bool:
    if config.scroll_count <= 0:
        return False
    for _ in range(config.scroll_count):
        await page.evaluate("() => window.scrollBy(0, window.innerHeight)")
        await asyncio.sleep(config.scroll_delay_ms / 1000)
    return True


async def extract_platform_content(page: Page, config: PlatformConfig) -> str:
    for selector in config.content_selectors:
        text = await page.evaluate(_SELECTOR_TEXT_JS, selector)
        if text:
            return clean_text(text)
    return ""


async def found_selectors(page: Page, config: PlatformConfig) -> List[str]:
    found: List[str] = []
    for selector in config.selectors:
        if await page.query_selector(selector) is not None:
            found.append(selector)
    return found


class BrowserExtractor(BaseExtractor):
    name = "browser"

    def __init__(self, headless: bool | None = None) -> None:
        self.headless = settings.BROWSER_HEADLESS if headless is None else headless
        self.navigation_timeout_ms = settings.SCRAPER_NAVIGATION_TIMEOUT_MS

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        config = get_platform_config(platform)

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=launch_args(settings.ENV),
            )
            try:
                context = await browser.new_context(
                    viewport=VIEWPORT,
                    user_agent=settings.SCRAPER_USER_AGENT,
                )
                page = await context.new_page()
                page.set_default_navigation_timeout(self.navigation_timeout_ms)

                try:
                    await page.goto(
                        url,
                        timeout=self.navigation_timeout_ms,
                        wait_until="domcontentloaded",
                    )
                except PlaywrightTimeout as e:
                    raise ExtractionError(
                        f"Navigation timeout after {self.navigation_timeout_ms}ms",
                        tier=self.name,
                    ) from e

                await wait_for_dynamic_content(page, config)
                scrolled = await scroll_page(page, config)
                title = await page.title()

                text = await extract_platform_content(page, config)
                dom_strategy = "platform-specific"
                if not text:
                    dom_strategy = "fallback"
                    text = clean_text(await page.evaluate(_FALLBACK_TEXT_JS))

                selectors = await found_selectors(page, config)
            finally:
                await browser.close()

        if not text:
            raise ExtractionError("Page yielded no text", tier=self.name)

        return ExtractionResult(
            text=text,
            method=self.name,
            title=title or None,
            metadata={
                "selectors_found": selectors,
                "scrolled": scrolled,
                "dom_strategy": dom_strategy,
            },
        )
