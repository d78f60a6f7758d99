"""
Per-project scrape locks.

A lock is a single row in scrape_locks keyed by project_id. Acquisition is one
INSERT ... ON CONFLICT DO UPDATE that only takes over an expired row, so two
executions can never both hold a live lock for the same project.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import dialect_insert
from ..models.scrape_lock import ScrapeLock

logger = logging.getLogger(__name__)
settings = get_settings()


def new_execution_id(prefix: str = "cron") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def acquire_scrape_lock(
    db: Session,
    project_id: UUID,
    execution_id: str,
    lock_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    now = now or datetime.utcnow()
    duration = lock_minutes or settings.SCRAPE_LOCK_MINUTES
    expires_at = now + timedelta(minutes=duration)

    stmt = dialect_insert(db, ScrapeLock.__table__).values(
        project_id=project_id,
        locked_by=execution_id,
        locked_at=now,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["project_id"],
        set_={
            "locked_by": stmt.excluded.locked_by,
            "locked_at": stmt.excluded.locked_at,
            "expires_at": stmt.excluded.expires_at,
        },
        where=ScrapeLock.__table__.c.expires_at <= now,
    )
    db.execute(stmt)
    db.commit()

    holder = (
        db.query(ScrapeLock.locked_by)
        .filter(ScrapeLock.project_id == project_id)
        .scalar()
    )
    acquired = holder == execution_id
    if not acquired:
        logger.info(
            "Scrape lock for project held by %s",
            holder,
            extra={"project_id": str(project_id), "execution_id": execution_id, "step": "lock"},
        )
    return acquired


def release_scrape_lock(db: Session, project_id: UUID, execution_id: str) -> bool:
    """Release the lock only if this execution still holds it."""
    deleted = (
        db.query(ScrapeLock)
        .filter(
            ScrapeLock.project_id == project_id,
            ScrapeLock.locked_by == execution_id,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(deleted)


def get_active_lock(
    db: Session, project_id: UUID, now: Optional[datetime] = None
) -> Optional[ScrapeLock]:
    now = now or datetime.utcnow()
    return (
        db.query(ScrapeLock)
        .filter(ScrapeLock.project_id == project_id, ScrapeLock.expires_at > now)
        .first()
    )


def purge_expired_locks(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    deleted = (
        db.query(ScrapeLock)
        .filter(ScrapeLock.expires_at <= now)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
