from __future__ import annotations

import hashlib
import re
from urllib.parse import urlparse

_MULTI_SPACE_RE = re.compile(r"[ \t]+")
_MULTI_NEWLINE_RE = re.compile(r"\n\s*\n+")


def compute_content_hash(text: str) -> str:
    """
    Compute a SHA256 hash of normalized text for deduplication.

    Normalization: lowercase, collapse whitespace.
    """
    normalized = " ".join(text.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def count_words(text: str | None) -> int:
    return len((text or "").split())


def clean_text(text: str | None) -> str:
    """Collapse runs of spaces and blank lines left behind by DOM text extraction."""
    cleaned = _MULTI_SPACE_RE.sub(" ", text or "")
    cleaned = _MULTI_NEWLINE_RE.sub("\n", cleaned)
    return cleaned.strip()


def extract_domain(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
