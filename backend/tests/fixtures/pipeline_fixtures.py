"""
Test fixtures for the ingestion and analysis pipeline.

Contains canned payloads (feed XML, forum JSON, article HTML), fakes for the
external collaborators, and small factories for database rows.
"""
import json
import re
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Callable, List, Optional, Sequence, Union

from narrative_signals.models.ingestion import Ingestion, IngestionStatus
from narrative_signals.models.project import Project
from narrative_signals.models.signal import Momentum, RiskLevel, Signal, SignalStatus
from narrative_signals.models.source import Source
from narrative_signals.services.content import compute_content_hash, count_words
from narrative_signals.services.extractors.base import BaseExtractor, ExtractionResult


# ============================================================================
# Canned payloads
# ============================================================================

def _paragraph(sentence: str, repeat: int) -> str:
    return " ".join([sentence] * repeat)


# Each body is 80 words; three of them plus titles total well over 250 words
BATTERY_BODY = _paragraph(
    "Regulators widened the lithium battery recall after new overheating reports.", 8
)
PORT_BODY = _paragraph(
    "Dock workers at the northern port extended their strike over automation plans.", 8
)
RATES_BODY = _paragraph(
    "Analysts expect the central bank to hold interest rates steady this quarter.", 8
)

RSS_FEED_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Industry Wire</title>
    <link>https://wire.example.com</link>
    <description>Latest industry news</description>
    <item>
      <title>Battery recall expands</title>
      <link>https://wire.example.com/battery-recall</link>
      <pubDate>Mon, 05 Oct 2026 09:00:00 GMT</pubDate>
      <description>&lt;p&gt;{BATTERY_BODY}&lt;/p&gt;</description>
    </item>
    <item>
      <title>Port strike enters second week</title>
      <link>https://wire.example.com/port-strike</link>
      <pubDate>Mon, 05 Oct 2026 10:00:00 GMT</pubDate>
      <description>{PORT_BODY}</description>
    </item>
    <item>
      <title>Rates outlook</title>
      <link>https://wire.example.com/rates</link>
      <pubDate>Mon, 05 Oct 2026 11:00:00 GMT</pubDate>
      <description>{RATES_BODY}</description>
    </item>
  </channel>
</rss>
"""

# Bare ampersand makes this invalid XML until sanitized
DIRTY_FEED_XML = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Q&A Weekly</title>
<item><title>Supply & demand</title><link>https://qa.example.com/1</link>
<description>Prices rose & fell.</description></item>
</channel></rss>
"""

FORUM_POST_JSON = [
    {
        "data": {
            "children": [
                {
                    "data": {
                        "title": "Anyone else seeing battery swelling?",
                        "selftext": "My laptop battery started swelling after the last update.",
                    }
                }
            ]
        }
    },
    {
        "data": {
            "children": [
                {"data": {"body": f"Same here, comment {i}"}} for i in range(12)
            ]
        }
    },
]

FORUM_LISTING_JSON = {
    "data": {
        "children": [
            {"data": {"title": f"Thread {i}", "selftext": "x" * 300}} for i in range(25)
        ]
    }
}

ARTICLE_HTML = """
<html>
  <head><title>Battery recall widens</title><script>var tracking = 1;</script></head>
  <body>
    <nav><p>Home, World, Business, Technology, Sport, Weather and more sections</p></nav>
    <div id="content">
      <article>
        <h1>Battery recall widens</h1>
        <p>Regulators on Monday widened the recall of lithium battery packs, citing new reports of overheating, smoke and, in two cases, small fires.</p>
        <p>The manufacturer said it was cooperating fully, and that replacement units would ship within weeks, although retailers reported shortages.</p>
        <p>Consumer groups, meanwhile, called for a broader investigation into the supplier, its testing regime, and the timeline of the first complaints.</p>
      </article>
    </div>
    <footer><p>Copyright 2026, all rights reserved, terms and privacy policy apply</p></footer>
  </body>
</html>
"""

HTML_ERROR_PAGE = "<!DOCTYPE html><html><body><h1>Not a feed</h1></body></html>"


def long_text(words: int = 120, topic: str = "narrative") -> str:
    return " ".join(f"{topic}{i % 7}" for i in range(words))


# ============================================================================
# Fakes
# ============================================================================

class StubExtractor(BaseExtractor):
    """Extraction tier with a canned outcome."""

    def __init__(
        self,
        name: str,
        text: Optional[str] = None,
        error: Optional[Exception] = None,
        platforms: Optional[Sequence[str]] = None,
        on_extract: Optional[Callable[[str], Any]] = None,
    ):
        self.name = name
        self.text = text
        self.error = error
        self.platforms = platforms
        self.on_extract = on_extract
        self.calls: List[str] = []

    def applies_to(self, url: str, platform: str) -> bool:
        return self.platforms is None or platform in self.platforms

    async def extract(self, url: str, platform: str) -> ExtractionResult:
        self.calls.append(url)
        if self.on_extract is not None:
            await self.on_extract(url)
        if self.error is not None:
            raise self.error
        return ExtractionResult(text=self.text or "", method=self.name, title="Stub title")


class FakeLLMClient:
    """
    Minimal stand-in for the OpenAI client's chat.completions.create.

    ``reply`` is either a string or a callable receiving the user prompt.
    """

    def __init__(
        self,
        reply: Union[str, Callable[[str], str]],
        prompt_tokens: int = 1200,
        completion_tokens: int = 300,
        model: str = "gpt-5-mini",
        error: Optional[Exception] = None,
    ):
        self.reply = reply
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.model = model
        self.error = error
        self.calls: List[dict] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        user_prompt = kwargs["messages"][-1]["content"]
        content = self.reply(user_prompt) if callable(self.reply) else self.reply
        return SimpleNamespace(
            model=self.model,
            usage=SimpleNamespace(
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens,
            ),
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        )


INGESTION_ID_RE = re.compile(r"\[INGESTION id=([0-9a-fA-F-]+)\]")


def ingestion_ids_in_prompt(prompt: str) -> List[str]:
    return INGESTION_ID_RE.findall(prompt)


def detection_reply(headline: str = "Battery recall spreads", cite_all: bool = True) -> Callable[[str], str]:
    """Build a reply callable that cites the ingestions shown in the prompt."""

    def _reply(prompt: str) -> str:
        ids = ingestion_ids_in_prompt(prompt)
        return json.dumps(
            {
                "signals": [
                    {
                        "headline": headline,
                        "summary": "Recall reports are multiplying across outlets.",
                        "key_points": ["Recall widened", "Overheating reports"],
                        "sources": ["https://wire.example.com/battery-recall"],
                        "raw_ingestion_ids": ids if cite_all else ids[:1],
                        "suggested_status": "New",
                        "suggested_momentum": "high",
                        "suggested_risk_level": "watch_closely",
                        "tags": ["recall", "batteries"],
                    }
                ],
                "analysis_notes": "One emerging narrative",
            }
        )

    return _reply


# ============================================================================
# Row factories
# ============================================================================

def make_project(db, **overrides) -> Project:
    values = dict(
        name="Consumer Safety",
        signal_instructions="Track product recalls and battery safety issues.",
        risk_criteria="Injuries or regulatory action",
        refresh_interval_hours=4,
        is_active=True,
    )
    values.update(overrides)
    project = Project(**values)
    db.add(project)
    db.commit()
    return project


def make_source(db, project: Project, **overrides) -> Source:
    values = dict(
        project_id=project.id,
        url="https://blog.example.com/post",
        display_name="Example Blog",
        platform="generic",
        is_active=True,
    )
    values.update(overrides)
    source = Source(**values)
    db.add(source)
    db.commit()
    return source


def make_ingestion(db, source: Source, content: Optional[str] = None, **overrides) -> Ingestion:
    content = content or long_text(100)
    values = dict(
        source_id=source.id,
        content=content,
        content_hash=compute_content_hash(content),
        word_count=count_words(content),
        url=source.url,
        title="Stub title",
        extraction_method="readability",
        meta={},
        ingested_at=datetime.utcnow(),
        status=IngestionStatus.PENDING_ANALYSIS,
        processed=False,
    )
    values.update(overrides)
    ingestion = Ingestion(**values)
    db.add(ingestion)
    db.commit()
    return ingestion


def make_signal(db, project: Project, age_hours: float = 30, **overrides) -> Signal:
    detected_at = datetime.utcnow() - timedelta(hours=age_hours)
    values = dict(
        project_id=project.id,
        headline="Battery recall spreads",
        summary="Recall reports are multiplying.",
        key_points=[],
        tags=["recall"],
        status=SignalStatus.NEW,
        momentum=Momentum.MEDIUM,
        risk_level=RiskLevel.MONITOR,
        detected_at=detected_at,
        updated_at=detected_at,
        total_momentum_checks=0,
        meta={},
    )
    values.update(overrides)
    signal = Signal(**values)
    db.add(signal)
    db.commit()
    return signal
