from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.ingestion import Ingestion, IngestionStatus
from ..models.scrape_log import ScrapeLog, ScrapeStatus
from ..models.source import Source
from .content import compute_content_hash
from .extractors import ExtractionPipeline, build_default_pipeline
from .extractors.base import ScrapeResult
from .platforms import detect_platform

logger = logging.getLogger(__name__)
settings = get_settings()


def start_scrape_log(db: Session, source: Source) -> ScrapeLog:
    log = ScrapeLog(
        source_id=source.id,
        status=ScrapeStatus.RUNNING,
        started_at=datetime.utcnow(),
    )
    db.add(log)
    db.commit()
    return log


def finish_scrape_log(
    db: Session,
    log_id: UUID,
    status: str,
    execution_time_ms: int,
    items_found: int = 0,
    items_processed: int = 0,
    error_message: str | None = None,
) -> None:
    log = db.get(ScrapeLog, log_id)
    if log is None:
        return
    log.status = status
    log.completed_at = datetime.utcnow()
    log.execution_time_ms = execution_time_ms
    log.items_found = items_found
    log.items_processed = items_processed
    log.error_message = error_message
    db.commit()


def save_ingestion(db: Session, source: Source, scrape: ScrapeResult) -> Dict[str, Any]:
    """
    Store extracted content for a source unless the same content already exists.

    Returns {"ingestion_id": str, "duplicate": bool}. Duplicates still refresh
    the source's last_fetch_at.
    """
    content = scrape.content
    if content is None:
        raise ValueError("Cannot save a failed scrape result")

    now = datetime.utcnow()
    content_hash = compute_content_hash(content.text)

    existing = (
        db.query(Ingestion)
        .filter(
            Ingestion.source_id == source.id,
            Ingestion.content_hash == content_hash,
        )
        .first()
    )
    if existing:
        source.last_fetch_at = now
        db.commit()
        return {"ingestion_id": str(existing.id), "duplicate": True}

    ingestion = Ingestion(
        source_id=source.id,
        content=content.text,
        content_hash=content_hash,
        word_count=content.word_count,
        url=source.url,
        title=content.title,
        extraction_method=content.method,
        meta=scrape.metadata,
        scraped_at=scrape.timestamp,
        ingested_at=now,
        status=IngestionStatus.PENDING_ANALYSIS,
        processed=False,
    )
    try:
        with db.begin_nested():
            db.add(ingestion)
            db.flush()
    except IntegrityError:
        # Concurrent writer stored the same content first
        existing = (
            db.query(Ingestion)
            .filter(
                Ingestion.source_id == source.id,
                Ingestion.content_hash == content_hash,
            )
            .first()
        )
        if not existing:
            raise
        source.last_fetch_at = now
        db.commit()
        return {"ingestion_id": str(existing.id), "duplicate": True}

    source.last_fetch_at = now
    db.commit()
    return {"ingestion_id": str(ingestion.id), "duplicate": False}


async def scrape_and_save(
    source_id: UUID,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    pipeline: Optional[ExtractionPipeline] = None,
    min_word_count: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Scrape one source and persist the result.

    The scrape log is opened RUNNING before extraction and always closed as
    COMPLETED or FAILED with its execution time, including on unexpected errors.
    """
    started = time.monotonic()
    pipeline = pipeline or build_default_pipeline()
    outcome: Dict[str, Any] = {
        "success": False,
        "source_id": str(source_id),
        "source_name": None,
        "ingestion_id": None,
        "log_id": None,
        "duplicate": False,
        "error": None,
        "execution_time_ms": 0,
    }
    log_id: Optional[UUID] = None
    final_status = ScrapeStatus.FAILED
    items_found = 0
    items_processed = 0

    db = session_factory()
    try:
        source = db.get(Source, source_id)
        if source is None:
            outcome["error"] = "Source not found"
            return outcome

        outcome["source_name"] = source.label
        url = source.url
        platform = source.platform or detect_platform(url)
        log_id = start_scrape_log(db, source).id
        outcome["log_id"] = str(log_id)

        scrape = await pipeline.run(url, platform=platform, min_word_count=min_word_count)

        if not scrape.success:
            outcome["error"] = scrape.error
            logger.warning(
                "Scrape failed for %s: %s",
                url,
                scrape.error,
                extra={"source_id": str(source_id), "platform": platform, "step": "scrape"},
            )
            return outcome

        source = db.get(Source, source_id)
        saved = save_ingestion(db, source, scrape)
        items_found = 1
        items_processed = 0 if saved["duplicate"] else 1
        final_status = ScrapeStatus.COMPLETED
        outcome.update(
            success=True,
            ingestion_id=saved["ingestion_id"],
            duplicate=saved["duplicate"],
        )
        logger.info(
            "Scrape completed%s",
            " (duplicate content)" if saved["duplicate"] else "",
            extra={"source_id": str(source_id), "platform": platform, "step": "scrape"},
        )
        return outcome
    except Exception as e:
        db.rollback()
        outcome["success"] = False
        outcome["error"] = str(e) or type(e).__name__
        logger.exception(
            "Unexpected error while scraping source",
            extra={"source_id": str(source_id), "step": "scrape"},
        )
        return outcome
    finally:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        outcome["execution_time_ms"] = elapsed_ms
        if log_id is not None:
            try:
                finish_scrape_log(
                    db,
                    log_id,
                    final_status,
                    elapsed_ms,
                    items_found=items_found,
                    items_processed=items_processed,
                    error_message=None if final_status == ScrapeStatus.COMPLETED else outcome["error"],
                )
            except Exception:
                db.rollback()
                logger.exception(
                    "Failed to finalize scrape log %s",
                    log_id,
                    extra={"source_id": str(source_id), "step": "scrape:finalize"},
                )
        db.close()


def sweep_stale_scrape_logs(db: Session, timeout_minutes: int | None = None) -> int:
    """
    Mark scrape logs stuck in RUNNING for too long as FAILED.

    A log only stays RUNNING past its run when the worker died mid-scrape.
    """
    timeout_minutes = timeout_minutes or settings.SCRAPE_LOG_STALE_MINUTES
    cutoff = datetime.utcnow() - timedelta(minutes=timeout_minutes)

    stale_logs = (
        db.query(ScrapeLog)
        .filter(
            ScrapeLog.status == ScrapeStatus.RUNNING,
            ScrapeLog.started_at < cutoff,
        )
        .all()
    )

    for log in stale_logs:
        log.status = ScrapeStatus.FAILED
        log.completed_at = datetime.utcnow()
        log.execution_time_ms = int((log.completed_at - log.started_at).total_seconds() * 1000)
        log.error_message = f"Timed out after {timeout_minutes} minutes"
        logger.warning(
            "Marked stale scrape log as FAILED: log_id=%s",
            log.id,
            extra={"source_id": str(log.source_id), "step": "scrape:sweep"},
        )

    if stale_logs:
        db.commit()

    return len(stale_logs)
