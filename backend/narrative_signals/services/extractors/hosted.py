from __future__ import annotations

from typing import Any, Dict

import httpx
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseExtractor, ExtractionError, ExtractionResult
from ..platforms import Platform
from ...core.config import get_settings

settings = get_settings()


class HostedExtractor(BaseExtractor):
    """
    Last-resort extraction through the Tavily extract API.

    Only used for news/generic URLs, and only when TAVILY_API_KEY is set.
    """

    name = "hosted"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.TAVILY_API_KEY
        self.extract_url = f"{settings.TAVILY_BASE_URL.rstrip('/')}/extract"
        self._transport = transport

    def applies_to(self, url: str, platform: str) -> bool:
        return bool(self.api_key) and platform in (Platform.NEWS, Platform.GENERIC)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=45, transport=self._transport) as client:
            return await client.post(self.extract_url, headers=self._headers(), json=payload)

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        resp = await self._post(
            {
                "urls": [url],
                "extract_depth": "advanced",
                "format": "markdown",
                "include_images": False,
            }
        )
        if resp.status_code >= 400:
            raise ExtractionError(f"Extract API returned {resp.status_code}", tier=self.name)

        body = resp.json()
        for failed in body.get("failed_results") or []:
            if failed.get("url") == url:
                raise ExtractionError(failed.get("error") or "Extraction failed", tier=self.name)

        results = body.get("results") or []
        content = (results[0].get("raw_content") or "").strip() if results else ""
        if not content:
            raise ExtractionError("Extract API returned no content", tier=self.name)

        return ExtractionResult(
            text=content,
            method=self.name,
            metadata={"request_id": body.get("request_id")},
        )
