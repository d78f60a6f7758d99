"""
Per-model token prices used to estimate the cost of each analysis call.

The built-in table can be extended or overridden with LLM_PRICEBOOK_JSON, e.g.
``{"my-model": {"input_per_mtok": 0.5, "output_per_mtok": 1.5}}``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

from ..core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRate:
    """USD per one million tokens."""

    input_per_mtok: float
    output_per_mtok: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            max(0, input_tokens) * self.input_per_mtok
            + max(0, output_tokens) * self.output_per_mtok
        ) / 1_000_000


DEFAULT_RATES: Dict[str, ModelRate] = {
    "gpt-5.1": ModelRate(1.25, 10.0),
    "gpt-5-mini": ModelRate(0.25, 2.0),
    "gpt-4o-mini": ModelRate(0.15, 0.60),
    "gemini-2.0-flash": ModelRate(0.10, 0.40),
}


def _parse_override(raw: str) -> Dict[str, ModelRate]:
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("LLM_PRICEBOOK_JSON is not valid JSON; using built-in prices")
        return {}
    if not isinstance(data, dict):
        return {}

    rates: Dict[str, ModelRate] = {}
    for name, entry in data.items():
        try:
            rates[normalize_model_name(name)] = ModelRate(
                float(entry["input_per_mtok"]), float(entry["output_per_mtok"])
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed price entry for %s", name)
    return rates


@lru_cache(maxsize=1)
def get_pricebook() -> Dict[str, ModelRate]:
    pricebook = dict(DEFAULT_RATES)
    override = get_settings().LLM_PRICEBOOK_JSON
    if override:
        pricebook.update(_parse_override(override))
    return pricebook


def normalize_model_name(model: Optional[str]) -> str:
    """'openai/GPT-5-mini:free' -> 'gpt-5-mini'"""
    name = (model or "").strip().lower()
    name = name.rsplit("/", 1)[-1]
    return name.split(":", 1)[0]


def get_model_rate(model: Optional[str]) -> Optional[ModelRate]:
    pricebook = get_pricebook()
    name = normalize_model_name(model)
    if name in pricebook:
        return pricebook[name]
    # Dated snapshots (gpt-5-mini-2025-08-07) price like their base model
    for base in sorted(pricebook, key=len, reverse=True):
        if name.startswith(base + "-"):
            return pricebook[base]
    return None


def cost_for_tokens(model: Optional[str], input_tokens: int, output_tokens: int) -> float:
    rate = get_model_rate(model)
    if rate is None:
        return 0.0
    return rate.cost(int(input_tokens or 0), int(output_tokens or 0))
