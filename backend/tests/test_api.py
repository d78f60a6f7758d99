"""
Tests for the HTTP routes.
"""
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from narrative_signals.api import deps, routes_cron
from narrative_signals.core.db import get_db
from narrative_signals.main import app
from narrative_signals.services.evidence import link_evidence
from narrative_signals.services.usage import log_usage

from tests.fixtures.pipeline_fixtures import (
    make_ingestion,
    make_project,
    make_signal,
    make_source,
)


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestCronRoutes:
    """Tests for the cron trigger and scheduler status."""

    def test_scrape_without_configured_secret(self, client, monkeypatch):
        """The cron endpoint refuses every caller when no secret is set."""
        monkeypatch.setattr(deps.settings, "CRON_SECRET", None)
        resp = client.post("/api/cron/scrape", headers={"Authorization": "Bearer anything"})
        assert resp.status_code == 401

    def test_scrape_with_wrong_secret(self, client, monkeypatch):
        """A missing or wrong bearer secret should get 401."""
        monkeypatch.setattr(deps.settings, "CRON_SECRET", "s3cret")
        assert client.post("/api/cron/scrape").status_code == 401
        resp = client.post("/api/cron/scrape", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_scrape_with_secret_runs_scheduler(self, client, monkeypatch):
        """The right secret should run the scheduler and return its summary."""
        monkeypatch.setattr(deps.settings, "CRON_SECRET", "s3cret")

        async def fake_run(**kwargs):
            return {"success": True, "projects_due": 0}

        monkeypatch.setattr(routes_cron, "run_scheduled_scrape", fake_run)

        resp = client.post("/api/cron/scrape", headers={"Authorization": "Bearer s3cret"})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "projects_due": 0}

    def test_status(self, client, db_session):
        """Status should report health without authentication."""
        make_project(db_session)
        resp = client.get("/api/cron/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["active_projects"] == 1


class TestAuth:
    def test_api_key_required_when_configured(self, client, db_session, monkeypatch):
        """With API_AUTH_KEY set, project routes need the X-API-Key header."""
        monkeypatch.setattr(deps.settings, "API_AUTH_KEY", "k3y")
        project = make_project(db_session)

        assert client.get(f"/api/projects/{project.id}/usage").status_code == 401
        resp = client.get(f"/api/projects/{project.id}/usage", headers={"X-API-Key": "k3y"})
        assert resp.status_code == 200


class TestProjectRoutes:
    def test_usage_summary(self, client, db_session):
        """Usage should summarize the project's model calls over the window."""
        project = make_project(db_session)
        log_usage(db_session, project.id, "signal_detection", "gpt-5-mini", 1000, 500)

        resp = client.get(f"/api/projects/{project.id}/usage?days=7")

        assert resp.status_code == 200
        body = resp.json()
        assert body["days"] == 7
        assert body["total_calls"] == 1
        assert body["total_tokens"] == 1500

    def test_usage_unknown_project(self, client):
        """Usage for a missing project should be 404."""
        assert client.get(f"/api/projects/{uuid4()}/usage").status_code == 404

    def test_scrape_unknown_project(self, client):
        """Scraping a missing project should be 404."""
        assert client.post(f"/api/projects/{uuid4()}/scrape").status_code == 404


class TestAnalysisRoutes:
    """Tests for the analysis endpoints."""

    def test_detect_with_nothing_new(self, client, db_session):
        """Detection with no new content succeeds with zero usage."""
        project = make_project(db_session)

        resp = client.post("/api/analysis/detect-signals", json={"project_id": str(project.id)})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["ingestions_analyzed"] == 0
        assert body["token_usage"]["total_tokens"] == 0

    def test_momentum_with_no_signals(self, client, db_session):
        """Momentum with no open signals analyzes nothing."""
        project = make_project(db_session)
        resp = client.post(
            "/api/analysis/analyze-momentum",
            json={"project_id": str(project.id), "hours_back": 72},
        )
        assert resp.status_code == 200
        assert resp.json()["signals_analyzed"] == 0

    def test_full_run_with_nothing_to_do(self, client, db_session):
        """The combined run succeeds on an empty project."""
        project = make_project(db_session)
        resp = client.post("/api/analysis/run", json={"project_id": str(project.id)})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["token_usage"]["total"]["total_tokens"] == 0

    @pytest.mark.parametrize("hours_back", [0, 500])
    def test_hours_back_out_of_range(self, client, db_session, hours_back):
        """hours_back outside the allowed range should be 422."""
        project = make_project(db_session)
        resp = client.post(
            "/api/analysis/detect-signals",
            json={"project_id": str(project.id), "hours_back": hours_back},
        )
        assert resp.status_code == 422

    def test_unknown_project(self, client):
        """Analysis of a missing project should be 404."""
        resp = client.post("/api/analysis/run", json={"project_id": str(uuid4())})
        assert resp.status_code == 404

    def test_signal_evidence(self, client, db_session):
        """Evidence should list each linked ingestion with its source."""
        project = make_project(db_session)
        source = make_source(db_session, project)
        ingestion = make_ingestion(db_session, source)
        signal = make_signal(db_session, project)
        link_evidence(db_session, signal.id, [ingestion.id])

        resp = client.get(f"/api/signals/{signal.id}/evidence")

        assert resp.status_code == 200
        body = resp.json()
        assert [e["ingestion_id"] for e in body] == [str(ingestion.id)]
        assert body[0]["reference_type"] == "detected"
        assert body[0]["source_name"] == "Example Blog"

    def test_signal_evidence_unknown_signal(self, client):
        """Evidence for a missing signal should be 404."""
        assert client.get(f"/api/signals/{uuid4()}/evidence").status_code == 404


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
