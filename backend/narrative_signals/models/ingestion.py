"""
Ingestion model: one deduplicated unit of scraped content tied to a source.

Rows are created once per (source_id, content_hash) pair and are immutable
afterwards except for the analysis bookkeeping fields.
"""
from uuid import uuid4
from datetime import datetime

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from ..core.db import Base
from .source import Source


class IngestionStatus:
    """Analysis status values for Ingestion."""
    PENDING_ANALYSIS = "pending_analysis"
    ANALYZED = "analyzed"
    ANALYSIS_FAILED = "analysis_failed"


class Ingestion(Base):
    __tablename__ = "ingestions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    source_id = Column(Uuid, ForeignKey("sources.id"), index=True, nullable=False)

    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)  # SHA256 of normalized content
    word_count = Column(Integer, nullable=False, default=0)
    url = Column(String(2048), nullable=True)
    title = Column(String(512), nullable=True)
    extraction_method = Column(String(32), nullable=True)  # feed, forum_json, readability, browser, hosted
    meta = Column("metadata", JSON, nullable=True)  # domain, duration, selectors found, scrolled

    scraped_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ingested_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Analysis bookkeeping (the only mutable fields)
    status = Column(String(32), default=IngestionStatus.PENDING_ANALYSIS, nullable=False)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    source = relationship(Source)

    __table_args__ = (
        UniqueConstraint("source_id", "content_hash", name="uq_ingestion_source_content"),
        Index("ix_ingestions_processed_ingested_at", "processed", "ingested_at"),
    )
