from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.ingestion import Ingestion
from ..models.scrape_log import ScrapeLog
from ..models.signal_evidence import SignalEvidence

logger = logging.getLogger(__name__)
settings = get_settings()


def purge_expired_data(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Delete data past its retention window.

    - Ingestions older than INGESTION_RETENTION_DAYS, unless a signal cites them.
    - Scrape logs older than SCRAPE_LOG_RETENTION_DAYS.

    Signals, evidence links, momentum history and usage rows are kept.
    """
    now = now or datetime.utcnow()
    ingestion_cutoff = now - timedelta(days=settings.INGESTION_RETENTION_DAYS)
    log_cutoff = now - timedelta(days=settings.SCRAPE_LOG_RETENTION_DAYS)

    cited = select(SignalEvidence.ingestion_id)
    deleted_ingestions = (
        db.query(Ingestion)
        .filter(Ingestion.ingested_at < ingestion_cutoff, ~Ingestion.id.in_(cited))
        .delete(synchronize_session=False)
    )
    deleted_logs = (
        db.query(ScrapeLog)
        .filter(ScrapeLog.started_at < log_cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return {"ingestions": deleted_ingestions, "scrape_logs": deleted_logs}


@celery_app.task(name="narrative_signals.services.retention.cleanup_expired")
def cleanup_expired() -> Dict[str, int]:
    """Periodic task enforcing the retention policy."""
    db: Session = SessionLocal()
    try:
        deleted = purge_expired_data(db)
        logger.info(
            "Deleted %d expired ingestions and %d scrape logs",
            deleted["ingestions"],
            deleted["scrape_logs"],
            extra={"step": "retention"},
        )
        return deleted
    except Exception:
        db.rollback()
        logger.exception(
            "Error during cleanup_expired",
            extra={"step": "retention"},
        )
        raise
    finally:
        db.close()
