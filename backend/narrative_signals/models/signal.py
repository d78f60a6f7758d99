"""
Signal and MomentumHistory models.

A Signal is created by detection and afterwards only changed by momentum
analysis. Every momentum change appends a MomentumHistory row; history rows
are never updated or deleted.
"""
from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship

from ..core.db import Base


class SignalStatus:
    NEW = "New"
    ACCELERATING = "Accelerating"
    STABILIZING = "Stabilizing"
    ARCHIVED = "Archived"

    OPEN = (NEW, ACCELERATING, STABILIZING)
    ALL = (NEW, ACCELERATING, STABILIZING, ARCHIVED)


class Momentum:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    ALL = (HIGH, MEDIUM, LOW)


class RiskLevel:
    WATCH_CLOSELY = "watch_closely"
    MONITOR = "monitor"

    ALL = (WATCH_CLOSELY, MONITOR)


class Signal(Base):
    __tablename__ = "signals"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), index=True, nullable=False)

    headline = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    key_points = Column(JSON, nullable=True)  # List[str]
    tags = Column(JSON, nullable=True)  # List[str]

    status = Column(String(32), default=SignalStatus.NEW, nullable=False)
    momentum = Column(String(16), default=Momentum.MEDIUM, nullable=False)
    risk_level = Column(String(32), default=RiskLevel.MONITOR, nullable=False)

    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    last_momentum_check = Column(DateTime, nullable=True)
    total_momentum_checks = Column(Integer, nullable=False, default=0)

    # raw_ingestion_ids, sources, ai_model, ai_suggested_*, last_momentum_reason
    meta = Column("metadata", JSON, nullable=True)

    history = relationship(
        "MomentumHistory",
        order_by="MomentumHistory.checked_at",
        back_populates="signal",
    )


class MomentumHistory(Base):
    __tablename__ = "momentum_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    signal_id = Column(Uuid, ForeignKey("signals.id"), index=True, nullable=False)
    checked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    previous_status = Column(String(32), nullable=False)
    new_status = Column(String(32), nullable=False)
    previous_momentum = Column(String(16), nullable=False)
    new_momentum = Column(String(16), nullable=False)
    previous_risk_level = Column(String(32), nullable=False)
    new_risk_level = Column(String(32), nullable=False)

    reason = Column(Text, nullable=True)
    supporting_ingestion_ids = Column(JSON, nullable=True)  # List[str]
    evidence_count = Column(Integer, nullable=False, default=0)

    signal = relationship("Signal", back_populates="history")
