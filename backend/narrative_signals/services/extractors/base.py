from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..content import count_words


class ExtractionError(Exception):
    """A tier could not produce content for a URL."""

    def __init__(self, message: str, tier: str | None = None):
        super().__init__(message)
        self.tier = tier


@dataclass
class ExtractionResult:
    text: str
    method: str
    title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return count_words(self.text)


@dataclass
class ScrapeResult:
    """Outcome of running the whole tier chain for one URL."""
    success: bool
    url: str
    timestamp: datetime
    content: Optional[ExtractionResult] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseExtractor(ABC):
    name: str

    def applies_to(self, url: str, platform: str) -> bool:
        return True

    @abstractmethod
    async def extract(self, url: str, platform: str) -> ExtractionResult:
        """Return extracted content or raise ExtractionError."""
        ...
