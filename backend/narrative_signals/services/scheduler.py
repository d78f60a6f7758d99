"""
Scrape scheduler.

Per run: pick the due projects (oldest refresh first, capped), and for each one
take the project lock, scrape its active sources under a bounded concurrency
limit with a politeness delay between starts, then release the lock and stamp
last_refresh_at. Projects are processed sequentially.

Sessions are never held across an ``await`` that runs other scrapes: each
source scrape opens its own session from the session factory.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.project import (
    ALLOWED_REFRESH_INTERVALS,
    DEFAULT_REFRESH_INTERVAL_HOURS,
    Project,
)
from ..models.scrape_lock import ScrapeLock
from ..models.scrape_log import ScrapeLog, ScrapeStatus
from ..models.source import Source
from .detection import detect_signals
from .extractors import ExtractionPipeline
from .locks import (
    acquire_scrape_lock,
    new_execution_id,
    purge_expired_locks,
    release_scrape_lock,
)
from .persistence import scrape_and_save, sweep_stale_scrape_logs

logger = logging.getLogger(__name__)
settings = get_settings()

SessionFactory = Callable[[], Session]


def normalize_interval(hours: Optional[int]) -> int:
    if hours in ALLOWED_REFRESH_INTERVALS:
        return int(hours)
    return DEFAULT_REFRESH_INTERVAL_HOURS


def is_project_due(project: Project, now: Optional[datetime] = None) -> bool:
    if project.last_refresh_at is None:
        return True
    now = now or datetime.utcnow()
    interval = timedelta(hours=normalize_interval(project.refresh_interval_hours))
    return now - project.last_refresh_at >= interval


def get_due_projects(
    db: Session, now: Optional[datetime] = None, limit: Optional[int] = None
) -> List[Project]:
    """Active projects whose interval has elapsed, never-refreshed first, then oldest."""
    limit = limit or settings.SCRAPE_MAX_PROJECTS_PER_RUN
    projects = db.query(Project).filter(Project.is_active.is_(True)).all()
    due = [p for p in projects if is_project_due(p, now)]
    due.sort(key=lambda p: (p.last_refresh_at is not None, p.last_refresh_at or datetime.min))
    return due[:limit]


def get_project_sources(
    db: Session, project_id: UUID, limit: Optional[int] = None
) -> List[Source]:
    limit = limit or settings.SCRAPE_MAX_SOURCES_PER_PROJECT
    return (
        db.query(Source)
        .filter(Source.project_id == project_id, Source.is_active.is_(True))
        .order_by(Source.created_at.asc())
        .limit(limit)
        .all()
    )


async def scrape_sources(
    source_ids: Sequence[UUID],
    *,
    session_factory: SessionFactory = SessionLocal,
    pipeline: Optional[ExtractionPipeline] = None,
    min_word_count: Optional[int] = None,
    concurrency: Optional[int] = None,
    delay_seconds: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    Scrape sources with at most ``concurrency`` in flight and at least
    ``delay_seconds`` between consecutive scrape starts.
    """
    concurrency = concurrency or settings.SCRAPE_CONCURRENCY
    delay = settings.SCRAPE_DELAY_BETWEEN_SOURCES_SECONDS if delay_seconds is None else delay_seconds

    semaphore = asyncio.Semaphore(concurrency)
    start_gate = asyncio.Lock()
    loop = asyncio.get_running_loop()
    last_start: Optional[float] = None

    async def _scrape_one(source_id: UUID) -> Dict[str, Any]:
        nonlocal last_start
        async with semaphore:
            async with start_gate:
                if last_start is not None:
                    wait = delay - (loop.time() - last_start)
                    if wait > 0:
                        await asyncio.sleep(wait)
                last_start = loop.time()
            return await scrape_and_save(
                source_id,
                session_factory=session_factory,
                pipeline=pipeline,
                min_word_count=min_word_count,
            )

    outcomes = await asyncio.gather(
        *(_scrape_one(source_id) for source_id in source_ids),
        return_exceptions=True,
    )

    results: List[Dict[str, Any]] = []
    for source_id, outcome in zip(source_ids, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(
                "Source scrape raised: %s",
                outcome,
                extra={"source_id": str(source_id), "step": "scrape"},
            )
            outcome = {
                "success": False,
                "source_id": str(source_id),
                "source_name": None,
                "ingestion_id": None,
                "duplicate": False,
                "error": str(outcome) or type(outcome).__name__,
            }
        results.append(outcome)
    return results


def _empty_project_summary(project_id: UUID) -> Dict[str, Any]:
    return {
        "project_id": str(project_id),
        "project_name": None,
        "lock_acquired": False,
        "sources_scraped": 0,
        "successful": 0,
        "failed": 0,
        "duplicates": 0,
        "ingestion_ids": [],
        "errors": [],
        "execution_time_ms": 0,
    }


async def run_project_scrape(
    project_id: UUID,
    execution_id: str,
    *,
    session_factory: SessionFactory = SessionLocal,
    pipeline: Optional[ExtractionPipeline] = None,
) -> Dict[str, Any]:
    """
    Scrape every active source of one project while holding its lock.

    Not getting the lock is a soft error: the project is skipped and left for
    the next run. The lock is released and last_refresh_at stamped on every
    exit once the lock was taken.
    """
    started = time.monotonic()
    summary = _empty_project_summary(project_id)
    log_extra = {"project_id": str(project_id), "execution_id": execution_id, "step": "scrape:project"}
    db = session_factory()
    lock_acquired = False
    try:
        project = db.get(Project, project_id)
        if project is None:
            summary["errors"].append("Project not found")
            return summary

        summary["project_name"] = project.name
        min_word_count = project.setting("min_word_count")
        lock_minutes = project.setting("lock_minutes")

        lock_acquired = acquire_scrape_lock(db, project_id, execution_id, lock_minutes)
        if not lock_acquired:
            summary["errors"].append(
                f"Project '{project.name}' is locked by another run; skipped"
            )
            return summary
        summary["lock_acquired"] = True

        source_ids = [s.id for s in get_project_sources(db, project_id)]
        db.commit()
        logger.info("Scraping %d sources", len(source_ids), extra=log_extra)

        outcomes = await scrape_sources(
            source_ids,
            session_factory=session_factory,
            pipeline=pipeline,
            min_word_count=min_word_count,
        )
        for outcome in outcomes:
            summary["sources_scraped"] += 1
            if not outcome.get("success"):
                summary["failed"] += 1
                label = outcome.get("source_name") or outcome.get("source_id")
                summary["errors"].append(f"{label}: {outcome.get('error')}")
            elif outcome.get("duplicate"):
                summary["successful"] += 1
                summary["duplicates"] += 1
            else:
                summary["successful"] += 1
                summary["ingestion_ids"].append(outcome["ingestion_id"])
        return summary
    except Exception as e:
        db.rollback()
        summary["errors"].append(f"Unexpected error: {e}")
        logger.exception("Project scrape failed", extra=log_extra)
        return summary
    finally:
        if lock_acquired:
            try:
                release_scrape_lock(db, project_id, execution_id)
                project = db.get(Project, project_id)
                if project is not None:
                    project.last_refresh_at = datetime.utcnow()
                    db.commit()
            except Exception:
                db.rollback()
                logger.exception("Failed to release scrape lock", extra=log_extra)
        summary["execution_time_ms"] = int((time.monotonic() - started) * 1000)
        db.close()


async def run_scheduled_scrape(
    *,
    session_factory: SessionFactory = SessionLocal,
    pipeline: Optional[ExtractionPipeline] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One scheduler run over every due project; returns the run summary."""
    started = time.monotonic()
    execution_id = new_execution_id("cron")
    summary: Dict[str, Any] = {
        "success": False,
        "execution_id": execution_id,
        "projects_checked": 0,
        "projects_due": 0,
        "projects_refreshed": 0,
        "sources_scraped": 0,
        "duplicates_skipped": 0,
        "errors": [],
        "results": [],
        "execution_time_ms": 0,
        "timestamp": datetime.utcnow().isoformat(),
    }
    log_extra = {"execution_id": execution_id, "step": "scrape:cron"}

    try:
        db = session_factory()
        try:
            summary["projects_checked"] = (
                db.query(func.count(Project.id)).filter(Project.is_active.is_(True)).scalar()
                or 0
            )
            project_ids = [p.id for p in get_due_projects(db, now)]
            db.commit()
        finally:
            db.close()

        summary["projects_due"] = len(project_ids)
        logger.info(
            "Scheduled scrape: %d of %d projects due",
            len(project_ids),
            summary["projects_checked"],
            extra=log_extra,
        )

        for index, project_id in enumerate(project_ids):
            if index:
                await asyncio.sleep(settings.SCRAPE_DELAY_BETWEEN_PROJECTS_SECONDS)
            result = await run_project_scrape(
                project_id,
                execution_id,
                session_factory=session_factory,
                pipeline=pipeline,
            )
            summary["results"].append(result)
            if result["lock_acquired"]:
                summary["projects_refreshed"] += 1
            summary["sources_scraped"] += result["sources_scraped"]
            summary["duplicates_skipped"] += result["duplicates"]
            name = result["project_name"] or result["project_id"]
            summary["errors"].extend(f"{name}: {err}" for err in result["errors"])

        summary["success"] = True
    except Exception as e:
        summary["errors"].append(f"Fatal: {e}")
        logger.exception("Scheduled scrape failed", extra=log_extra)
    finally:
        summary["execution_time_ms"] = int((time.monotonic() - started) * 1000)

    logger.info(
        "Scheduled scrape finished: %d projects refreshed, %d sources scraped",
        summary["projects_refreshed"],
        summary["sources_scraped"],
        extra=log_extra,
    )
    return summary


def scrape_project_on_demand(
    project_id: UUID,
    *,
    session_factory: SessionFactory = SessionLocal,
    pipeline: Optional[ExtractionPipeline] = None,
    analyze: bool = True,
    client: Any = None,
) -> Dict[str, Any]:
    """
    Scrape one project now, ignoring its refresh interval but not its lock,
    then run detection over the newly saved ingestions.
    """
    execution_id = new_execution_id("manual")
    scrape = asyncio.run(
        run_project_scrape(
            project_id,
            execution_id,
            session_factory=session_factory,
            pipeline=pipeline,
        )
    )
    result: Dict[str, Any] = {
        "success": scrape["lock_acquired"],
        "project_id": str(project_id),
        "execution_id": execution_id,
        "sources_scraped": scrape["sources_scraped"],
        "successful": scrape["successful"],
        "failed": scrape["failed"],
        "duplicates": scrape["duplicates"],
        "signals_detected": 0,
        "errors": list(scrape["errors"]),
        "execution_time_ms": scrape["execution_time_ms"],
    }

    if analyze and scrape["ingestion_ids"]:
        started = time.monotonic()
        db = session_factory()
        try:
            detection = detect_signals(
                db,
                project_id,
                ingestion_ids=[UUID(i) for i in scrape["ingestion_ids"]],
                client=client,
            )
        finally:
            db.close()
        result["signals_detected"] = detection["signals_detected"]
        if detection.get("error"):
            result["errors"].append(f"Detection: {detection['error']}")
        result["execution_time_ms"] += int((time.monotonic() - started) * 1000)

    return result


def get_scheduler_health(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Health report from the last 24h of scrape logs and the active project mix."""
    now = now or datetime.utcnow()
    since = now - timedelta(hours=24)

    status_counts = dict(
        db.query(ScrapeLog.status, func.count(ScrapeLog.id))
        .filter(ScrapeLog.started_at >= since)
        .group_by(ScrapeLog.status)
        .all()
    )
    total = sum(status_counts.values())
    failed = status_counts.get(ScrapeStatus.FAILED, 0)
    failure_rate = (failed / total) if total else 0.0
    last_scrape_at = db.query(func.max(ScrapeLog.started_at)).scalar()

    projects_by_interval = {str(hours): 0 for hours in ALLOWED_REFRESH_INTERVALS}
    for hours, count in (
        db.query(Project.refresh_interval_hours, func.count(Project.id))
        .filter(Project.is_active.is_(True))
        .group_by(Project.refresh_interval_hours)
        .all()
    ):
        key = str(normalize_interval(hours))
        projects_by_interval[key] += count
    active_projects = sum(projects_by_interval.values())

    active_locks = (
        db.query(func.count(ScrapeLock.project_id))
        .filter(ScrapeLock.expires_at > now)
        .scalar()
        or 0
    )

    if total and failure_rate >= 0.5:
        status = "unhealthy"
    elif (total and failure_rate >= 0.25) or (active_projects and not total):
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "checked_at": now.isoformat(),
        "active_projects": active_projects,
        "projects_by_interval": projects_by_interval,
        "projects_due": len(get_due_projects(db, now, limit=active_projects or None)),
        "active_locks": active_locks,
        "scrapes_last_24h": total,
        "scrapes_by_status": status_counts,
        "failure_rate": round(failure_rate, 4),
        "last_scrape_at": last_scrape_at.isoformat() if last_scrape_at else None,
    }


@celery_app.task(name="narrative_signals.services.scheduler.run_scrape_cron")
def run_scrape_cron() -> Dict[str, Any]:
    """Periodic task: scrape every due project."""
    return asyncio.run(run_scheduled_scrape())


@celery_app.task(name="narrative_signals.services.scheduler.scrape_project_task")
def scrape_project_task(project_id: str) -> Dict[str, Any]:
    return scrape_project_on_demand(UUID(project_id))


@celery_app.task(name="narrative_signals.services.scheduler.sweep_stale_scrape_runs")
def sweep_stale_scrape_runs() -> Dict[str, int]:
    """
    Periodic task: fail scrape logs a dead worker left RUNNING and drop
    expired lock rows.
    """
    db: Session = SessionLocal()
    try:
        swept = sweep_stale_scrape_logs(db)
        purged = purge_expired_locks(db)
        logger.info(
            "Swept %d stale scrape logs, purged %d expired locks",
            swept,
            purged,
            extra={"step": "scrape:sweep"},
        )
        return {"stale_logs": swept, "expired_locks": purged}
    except Exception:
        db.rollback()
        logger.exception("Error during sweep_stale_scrape_runs", extra={"step": "scrape:sweep"})
        raise
    finally:
        db.close()
