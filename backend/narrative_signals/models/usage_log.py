from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Numeric, Uuid

from ..core.db import Base


class UsageLog(Base):
    """Append-only ledger row, one per language-model invocation."""
    __tablename__ = "usage_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), index=True, nullable=False)
    action_type = Column(String(64), nullable=False)  # signal_detection, momentum_analysis
    model = Column(String(128), nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Numeric(14, 6), nullable=False, default=0)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
