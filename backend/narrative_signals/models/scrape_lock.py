from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid

from ..core.db import Base


class ScrapeLock(Base):
    """
    Time-boxed scrape lock, at most one row per project.

    The primary key on project_id is what enforces mutual exclusion; an
    expired row may be taken over by a new execution.
    """
    __tablename__ = "scrape_locks"

    project_id = Column(Uuid, ForeignKey("projects.id"), primary_key=True)
    locked_by = Column(String(64), nullable=False)  # scheduler execution id
    locked_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
