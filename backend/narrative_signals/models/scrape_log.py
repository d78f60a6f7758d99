from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Uuid

from ..core.db import Base


class ScrapeStatus:
    """
    Lifecycle of a single scrape attempt.

    Logs are created RUNNING before extraction and always finish as
    COMPLETED (novel or duplicate content) or FAILED.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScrapeLog(Base):
    __tablename__ = "scrape_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    source_id = Column(Uuid, ForeignKey("sources.id"), index=True, nullable=False)
    status = Column(String(32), default=ScrapeStatus.PENDING, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    items_found = Column(Integer, nullable=False, default=0)
    items_processed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
