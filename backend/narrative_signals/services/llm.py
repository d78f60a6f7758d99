from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from threading import BoundedSemaphore
from typing import Any, Dict, Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..core.config import get_settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class ModelResponseError(Exception):
    """The model reply was missing, not JSON, or did not match the expected schema."""


@dataclass
class LLMResponse:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@lru_cache(maxsize=1)
def _llm_semaphore() -> BoundedSemaphore:
    return BoundedSemaphore(get_settings().LLM_MAX_CONCURRENCY)


@contextmanager
def limit_llm_concurrency():
    """
    Bound concurrent calls to the LLM provider within this process. The
    semaphore is shared by worker threads and API threads alike.
    """
    with _llm_semaphore():
        yield


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Shared OpenAI-compatible client.

    OPENROUTER_API_KEY takes precedence and routes through OpenRouter;
    otherwise OPENAI_API_KEY talks to OpenAI directly.
    """
    settings = get_settings()
    kwargs: Dict[str, Any]

    if settings.OPENROUTER_API_KEY:
        kwargs = {
            "base_url": OPENROUTER_BASE_URL,
            "api_key": settings.OPENROUTER_API_KEY.strip(),
            "default_headers": {
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Narrative Signals",
            },
        }
    elif settings.OPENAI_API_KEY:
        kwargs = {"api_key": settings.OPENAI_API_KEY.strip()}
    else:
        raise RuntimeError(
            "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
        )
    return OpenAI(**kwargs)


def complete_json(
    system_prompt: str,
    user_prompt: str,
    *,
    client: Any = None,
    model: str | None = None,
) -> LLMResponse:
    """Run one chat completion that must answer with a JSON object."""
    settings = get_settings()
    client = client or get_llm_client()
    model = model or settings.LLM_MODEL

    with limit_llm_concurrency():
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            max_completion_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
        )

    usage = getattr(resp, "usage", None)
    text = resp.choices[0].message.content if resp.choices else None
    return LLMResponse(
        text=text or "",
        model=getattr(resp, "model", None) or model,
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
    )


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_model_response(text: str, schema: Type[ModelT]) -> ModelT:
    """
    Parse a model reply into ``schema``.

    Markdown code fences around the JSON are tolerated; anything else that is
    not valid JSON for the schema raises ModelResponseError.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        raise ModelResponseError("Model returned an empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse model response as JSON: %s", e)
        raise ModelResponseError(f"Response is not valid JSON: {e}") from e

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.error("Model response failed schema validation: %s", e)
        raise ModelResponseError(f"Response does not match schema: {e}") from e
