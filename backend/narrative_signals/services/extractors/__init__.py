from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .base import BaseExtractor, ExtractionError, ExtractionResult, ScrapeResult
from .feed import FeedExtractor
from .forum import ForumJsonExtractor
from .article import ReadabilityExtractor
from .browser import BrowserExtractor
from .hosted import HostedExtractor
from ..content import extract_domain
from ..platforms import detect_platform, enforces_min_word_count
from ...core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class ExtractionPipeline:
    """
    Ordered fallback chain of extraction tiers.

    - Tiers are tried in order; tiers that do not apply to the platform are skipped.
    - The first tier whose text passes the minimum-content policy wins.
    - A tier failure (or too-short content) falls through to the next tier.
    - If every tier fails, the result is a failure carrying each tier's error.
    """

    def __init__(self, tiers: Sequence[BaseExtractor]) -> None:
        self.tiers: List[BaseExtractor] = list(tiers)

    async def run(
        self,
        url: str,
        platform: Optional[str] = None,
        min_word_count: Optional[int] = None,
    ) -> ScrapeResult:
        started = time.monotonic()
        platform = platform or detect_platform(url)
        min_words = (
            settings.SCRAPER_MIN_WORD_COUNT if min_word_count is None else min_word_count
        )
        enforce_min = enforces_min_word_count(platform)
        attempts: List[Dict[str, Any]] = []

        def _metadata(result: Optional[ExtractionResult] = None) -> Dict[str, Any]:
            meta: Dict[str, Any] = {
                "domain": extract_domain(url),
                "duration_ms": int((time.monotonic() - started) * 1000),
                "platform": platform,
                "extraction_method": result.method if result else None,
                "selectors_found": [],
                "scrolled": False,
                "attempts": attempts,
            }
            if result:
                meta.update(result.metadata)
            return meta

        for tier in self.tiers:
            if not tier.applies_to(url, platform):
                continue

            try:
                result = await tier.extract(url, platform)
            except ExtractionError as e:
                attempts.append({"tier": tier.name, "error": str(e)})
                logger.info(
                    "Extraction tier '%s' failed for %s: %s",
                    tier.name,
                    url,
                    e,
                    extra={"platform": platform, "step": f"extract:{tier.name}"},
                )
                continue
            except Exception as e:
                attempts.append({"tier": tier.name, "error": f"{type(e).__name__}: {e}"})
                logger.warning(
                    "Extraction tier '%s' raised for %s",
                    tier.name,
                    url,
                    exc_info=True,
                    extra={"platform": platform, "step": f"extract:{tier.name}"},
                )
                continue

            word_count = result.word_count
            if enforce_min and word_count < min_words:
                attempts.append(
                    {"tier": tier.name, "error": f"Content too short ({word_count} words)"}
                )
                continue

            return ScrapeResult(
                success=True,
                url=url,
                timestamp=datetime.utcnow(),
                content=result,
                metadata=_metadata(result),
            )

        if attempts:
            error = "; ".join(f"{a['tier']}: {a['error']}" for a in attempts)
        else:
            error = "No extraction tier applies to this URL"

        return ScrapeResult(
            success=False,
            url=url,
            timestamp=datetime.utcnow(),
            error=error,
            metadata=_metadata(),
        )


def build_default_pipeline() -> ExtractionPipeline:
    return ExtractionPipeline(
        [
            FeedExtractor(),
            ForumJsonExtractor(),
            ReadabilityExtractor(),
            BrowserExtractor(),
            HostedExtractor(),
        ]
    )
