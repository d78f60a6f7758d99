"""
Tests for scheduler.py and pipeline.py - due projects, locked scrapes and
the combined analysis run.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from narrative_signals.models.ingestion import Ingestion
from narrative_signals.models.project import Project
from narrative_signals.models.scrape_lock import ScrapeLock
from narrative_signals.models.scrape_log import ScrapeLog, ScrapeStatus
from narrative_signals.models.signal import Signal
from narrative_signals.services.extractors import ExtractionPipeline
from narrative_signals.services.locks import acquire_scrape_lock
from narrative_signals.services.pipeline import run_full_analysis
from narrative_signals.services.scheduler import (
    get_due_projects,
    get_project_sources,
    get_scheduler_health,
    is_project_due,
    normalize_interval,
    run_project_scrape,
    run_scheduled_scrape,
    scrape_project_on_demand,
    scrape_sources,
)

from tests.fixtures.pipeline_fixtures import (
    FakeLLMClient,
    StubExtractor,
    detection_reply,
    long_text,
    make_ingestion,
    make_project,
    make_signal,
    make_source,
)


def _generic_pipeline(**kwargs):
    """Succeeds for generic sources only; other platforms find no tier."""
    return ExtractionPipeline(
        [StubExtractor("readability", text=long_text(120), platforms=["generic"], **kwargs)]
    )


def _add_sources(db, project, count, platform="generic"):
    return [
        make_source(
            db,
            project,
            url=f"https://{platform}{i}.example.com/",
            display_name=f"{platform.title()} {i}",
            platform=platform,
        )
        for i in range(count)
    ]


class TestDueProjects:
    """Tests for refresh interval handling and due-project selection."""

    @pytest.mark.parametrize("hours,expected", [(2, 2), (4, 4), (8, 8), (12, 12), (3, 4), (None, 4), (0, 4)])
    def test_normalize_interval(self, hours, expected):
        """Allowed intervals pass through; anything else becomes four hours."""
        assert normalize_interval(hours) == expected

    def test_never_refreshed_is_due(self):
        """A project that was never refreshed is always due."""
        assert is_project_due(Project(name="x", refresh_interval_hours=4, last_refresh_at=None))

    def test_due_after_interval(self):
        """A project becomes due once its interval has passed."""
        now = datetime(2026, 10, 1, 12, 0)
        project = Project(name="x", refresh_interval_hours=4, last_refresh_at=now - timedelta(hours=4))
        assert is_project_due(project, now)
        project.last_refresh_at = now - timedelta(hours=3, minutes=59)
        assert not is_project_due(project, now)

    def test_invalid_interval_uses_default(self):
        """An unsupported interval should be treated as the default."""
        now = datetime(2026, 10, 1, 12, 0)
        project = Project(name="x", refresh_interval_hours=5, last_refresh_at=now - timedelta(hours=4))
        assert is_project_due(project, now)

    def test_ordering_and_cap(self, db_session):
        """Never-refreshed projects come first, then the stalest."""
        now = datetime.utcnow()
        stale = make_project(db_session, name="Stale", last_refresh_at=now - timedelta(hours=20))
        staler = make_project(db_session, name="Staler", last_refresh_at=now - timedelta(hours=30))
        never = make_project(db_session, name="Never")
        make_project(db_session, name="Fresh", last_refresh_at=now - timedelta(hours=1))
        make_project(db_session, name="Inactive", is_active=False)

        due = get_due_projects(db_session, now)
        assert [p.name for p in due] == [never.name, staler.name, stale.name]

        capped = get_due_projects(db_session, now, limit=2)
        assert [p.name for p in capped] == [never.name, staler.name]

    def test_project_sources_active_and_capped(self, db_session):
        """Only active sources are returned, up to the limit."""
        project = make_project(db_session)
        sources = _add_sources(db_session, project, 3)
        make_source(db_session, project, url="https://off.example.com/", is_active=False)

        assert [s.id for s in get_project_sources(db_session, project.id)] == [s.id for s in sources]
        assert len(get_project_sources(db_session, project.id, limit=2)) == 2


class TestScrapeSources:
    """Tests for the bounded, paced source fan-out."""

    def test_concurrency_cap(self, db_session, session_factory):
        """No more than the configured number of sources should scrape at once."""
        project = make_project(db_session)
        sources = _add_sources(db_session, project, 5)
        state = {"in_flight": 0, "peak": 0}

        async def track(url):
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
            await asyncio.sleep(0.05)
            state["in_flight"] -= 1

        results = asyncio.run(
            scrape_sources(
                [s.id for s in sources],
                session_factory=session_factory,
                pipeline=_generic_pipeline(on_extract=track),
                concurrency=2,
                delay_seconds=0,
            )
        )

        assert state["peak"] == 2
        assert all(r["success"] for r in results)
        assert len({r["ingestion_id"] for r in results}) == 5

    def test_delay_between_starts(self, db_session, session_factory):
        """Scrape starts should be spaced by the configured delay."""
        project = make_project(db_session)
        sources = _add_sources(db_session, project, 3)
        starts = []

        async def record(url):
            starts.append(asyncio.get_running_loop().time())

        asyncio.run(
            scrape_sources(
                [s.id for s in sources],
                session_factory=session_factory,
                pipeline=_generic_pipeline(on_extract=record),
                concurrency=3,
                delay_seconds=0.1,
            )
        )

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.08 for gap in gaps)


class TestRunProjectScrape:
    """Tests for one locked project scrape."""

    def test_counts_release_and_refresh(self, db_session, session_factory):
        """A project scrape should count outcomes, release the lock and stamp the refresh."""
        project = make_project(db_session)
        _add_sources(db_session, project, 2)
        _add_sources(db_session, project, 1, platform="news")

        summary = asyncio.run(
            run_project_scrape(
                project.id, "cron-test", session_factory=session_factory, pipeline=_generic_pipeline()
            )
        )

        assert summary["lock_acquired"] is True
        assert summary["project_name"] == "Consumer Safety"
        assert summary["sources_scraped"] == 3
        assert summary["successful"] == 2
        assert summary["failed"] == 1
        assert len(summary["ingestion_ids"]) == 2
        assert "News 0" in summary["errors"][0]

        db_session.expire_all()
        assert db_session.query(ScrapeLock).count() == 0
        assert db_session.get(Project, project.id).last_refresh_at is not None
        statuses = sorted(log.status for log in db_session.query(ScrapeLog).all())
        assert statuses == sorted([ScrapeStatus.COMPLETED] * 2 + [ScrapeStatus.FAILED])

    def test_second_scrape_counts_duplicates(self, db_session, session_factory):
        """Unchanged content on a rescrape should count as duplicates."""
        project = make_project(db_session)
        _add_sources(db_session, project, 2)

        for run in ("first", "second"):
            summary = asyncio.run(
                run_project_scrape(
                    project.id, run, session_factory=session_factory, pipeline=_generic_pipeline()
                )
            )

        assert summary["duplicates"] == 2
        assert summary["ingestion_ids"] == []
        db_session.expire_all()
        assert db_session.query(Ingestion).count() == 2

    def test_locked_project_is_skipped(self, db_session, session_factory):
        """A project held by another run is not scraped and keeps its lock."""
        project = make_project(db_session)
        _add_sources(db_session, project, 2)
        acquire_scrape_lock(db_session, project.id, "other-run")
        pipeline = _generic_pipeline()

        summary = asyncio.run(
            run_project_scrape(project.id, "cron-test", session_factory=session_factory, pipeline=pipeline)
        )

        assert summary["lock_acquired"] is False
        assert summary["sources_scraped"] == 0
        assert "locked by another run" in summary["errors"][0]
        assert pipeline.tiers[0].calls == []
        db_session.expire_all()
        assert db_session.query(ScrapeLock).one().locked_by == "other-run"
        assert db_session.get(Project, project.id).last_refresh_at is None

    def test_project_settings_override_min_word_count(self, db_session, session_factory):
        """A project's min_word_count setting applies to its sources."""
        project = make_project(db_session, settings={"min_word_count": 200})
        _add_sources(db_session, project, 1)

        summary = asyncio.run(
            run_project_scrape(
                project.id, "cron-test", session_factory=session_factory, pipeline=_generic_pipeline()
            )
        )

        assert summary["failed"] == 1
        assert "too short" in summary["errors"][0]


class TestRunScheduledScrape:
    def test_refreshes_only_due_projects(self, db_session, session_factory):
        """The cron run should refresh due projects, never-refreshed first."""
        now = datetime.utcnow()
        due = make_project(db_session, name="Due", last_refresh_at=now - timedelta(hours=5))
        never = make_project(db_session, name="Never")
        fresh = make_project(db_session, name="Fresh", last_refresh_at=now - timedelta(hours=1))
        for project in (due, never, fresh):
            make_source(db_session, project, url=f"https://{project.name.lower()}.example.com/")

        summary = asyncio.run(
            run_scheduled_scrape(session_factory=session_factory, pipeline=_generic_pipeline())
        )

        assert summary["success"] is True
        assert summary["execution_id"].startswith("cron-")
        assert summary["projects_checked"] == 3
        assert summary["projects_due"] == 2
        assert summary["projects_refreshed"] == 2
        assert summary["sources_scraped"] == 2
        assert [r["project_name"] for r in summary["results"]] == ["Never", "Due"]
        db_session.expire_all()
        assert db_session.get(Project, fresh.id).last_refresh_at < now
        assert db_session.get(Project, never.id).last_refresh_at is not None

    def test_locked_project_is_reported(self, db_session, session_factory):
        """A project locked by another run should be reported as busy."""
        project = make_project(db_session, name="Busy")
        make_source(db_session, project)
        acquire_scrape_lock(db_session, project.id, "other-run")

        summary = asyncio.run(
            run_scheduled_scrape(session_factory=session_factory, pipeline=_generic_pipeline())
        )

        assert summary["success"] is True
        assert summary["projects_due"] == 1
        assert summary["projects_refreshed"] == 0
        assert summary["errors"][0].startswith("Busy: ")


class TestScrapeProjectOnDemand:
    def test_scrape_then_detect(self, db_session, session_factory):
        """On-demand ignores the interval and runs detection on the new content."""
        project = make_project(db_session, last_refresh_at=datetime.utcnow())
        _add_sources(db_session, project, 2)
        client = FakeLLMClient(detection_reply())

        result = scrape_project_on_demand(
            project.id, session_factory=session_factory, pipeline=_generic_pipeline(), client=client
        )

        assert result["success"] is True
        assert result["execution_id"].startswith("manual-")
        assert result["sources_scraped"] == 2
        assert result["successful"] == 2
        assert result["signals_detected"] == 1
        assert len(client.calls) == 1
        db_session.expire_all()
        assert db_session.query(Signal).count() == 1
        assert db_session.query(Ingestion).filter_by(processed=False).count() == 0

    def test_only_new_ingestions_are_analyzed(self, db_session, session_factory):
        """On-demand analysis should only see content from this scrape."""
        project = make_project(db_session)
        older_source = make_source(db_session, project, url="https://older.example.com/", is_active=False)
        make_ingestion(db_session, older_source, content=long_text(100, "older"))
        _add_sources(db_session, project, 1)
        client = FakeLLMClient(detection_reply())

        scrape_project_on_demand(
            project.id, session_factory=session_factory, pipeline=_generic_pipeline(), client=client
        )

        prompt = client.calls[0]["messages"][-1]["content"]
        assert prompt.count("[INGESTION id=") == 1

    def test_no_analysis_when_nothing_new(self, db_session, session_factory):
        """The model is not called when the scrape saved nothing."""
        project = make_project(db_session)
        _add_sources(db_session, project, 1, platform="news")
        client = FakeLLMClient(detection_reply())

        result = scrape_project_on_demand(
            project.id, session_factory=session_factory, pipeline=_generic_pipeline(), client=client
        )

        assert result["failed"] == 1
        assert result["signals_detected"] == 0
        assert client.calls == []

    def test_locked_project(self, db_session, session_factory):
        """An on-demand scrape of a locked project should fail."""
        project = make_project(db_session)
        acquire_scrape_lock(db_session, project.id, "cron-123")

        result = scrape_project_on_demand(
            project.id, session_factory=session_factory, pipeline=_generic_pipeline(), analyze=False
        )

        assert result["success"] is False
        assert "locked" in result["errors"][0]


class TestSchedulerHealth:
    """Tests for the health report thresholds."""

    def _logs(self, db, statuses):
        project = make_project(db, name="Health")
        source = make_source(db, project)
        for status in statuses:
            db.add(ScrapeLog(source_id=source.id, status=status, started_at=datetime.utcnow()))
        db.commit()
        return project

    def test_healthy(self, db_session):
        """Recent scrapes with no failures are healthy."""
        self._logs(db_session, [ScrapeStatus.COMPLETED] * 4)
        health = get_scheduler_health(db_session)
        assert health["status"] == "healthy"
        assert health["scrapes_last_24h"] == 4
        assert health["failure_rate"] == 0.0
        assert health["projects_by_interval"] == {"2": 0, "4": 1, "8": 0, "12": 0}
        assert health["last_scrape_at"] is not None

    def test_degraded(self, db_session):
        """A quarter of scrapes failing is degraded."""
        self._logs(db_session, [ScrapeStatus.COMPLETED] * 3 + [ScrapeStatus.FAILED])
        health = get_scheduler_health(db_session)
        assert health["status"] == "degraded"
        assert health["failure_rate"] == 0.25

    def test_unhealthy(self, db_session):
        """Half of scrapes failing is unhealthy."""
        self._logs(db_session, [ScrapeStatus.COMPLETED, ScrapeStatus.FAILED])
        assert get_scheduler_health(db_session)["status"] == "unhealthy"

    def test_active_projects_without_scrapes_are_degraded(self, db_session):
        """Active projects with no recent scrapes should be degraded."""
        make_project(db_session)
        health = get_scheduler_health(db_session)
        assert health["status"] == "degraded"
        assert health["scrapes_last_24h"] == 0
        assert health["projects_due"] == 1

    def test_empty_system_is_healthy(self, db_session):
        assert get_scheduler_health(db_session)["status"] == "healthy"

    def test_counts_live_locks(self, db_session):
        project = self._logs(db_session, [ScrapeStatus.COMPLETED])
        acquire_scrape_lock(db_session, project.id, "cron-1")
        assert get_scheduler_health(db_session)["active_locks"] == 1


class TestRunFullAnalysis:
    """Tests for detection followed by momentum."""

    def test_both_stages_and_usage_totals(self, db_session):
        """The combined run should report both stages and total their usage."""
        project = make_project(db_session)
        source = make_source(db_session, project)
        make_ingestion(db_session, source)
        make_signal(db_session, project, headline="Older narrative")

        def reply(prompt):
            if "EXISTING SIGNALS" in prompt:
                return '{"signal_updates": [], "unchanged_signals": [], "analysis_notes": ""}'
            return detection_reply()(prompt)

        result = run_full_analysis(db_session, project.id, client=FakeLLMClient(reply))

        assert result["success"] is True
        assert result["error"] is None
        assert result["detection"]["signals_detected"] == 1
        # The signal detected in this run is too young for momentum
        assert result["momentum"]["signals_analyzed"] == 2
        assert result["momentum"]["signals_unchanged"] == 2
        assert result["token_usage"]["total"]["total_tokens"] == 3000

    def test_errors_from_both_stages_are_joined(self, db_session):
        """Momentum still runs after detection fails, and both errors are kept."""
        project = make_project(db_session)
        source = make_source(db_session, project)
        make_ingestion(db_session, source)
        make_signal(db_session, project)
        client = FakeLLMClient("", error=RuntimeError("boom"))

        result = run_full_analysis(db_session, project.id, client=client)

        assert result["success"] is False
        assert result["error"] == (
            "Detection: Model call failed: boom; Momentum: Model call failed: boom"
        )
        assert result["token_usage"]["total"]["total_tokens"] == 0
