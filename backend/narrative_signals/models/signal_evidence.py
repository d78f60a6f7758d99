from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, UniqueConstraint, Uuid

from ..core.db import Base


class ReferenceType:
    DETECTED = "detected"
    MOMENTUM = "momentum"
    MANUAL = "manual"

    ALL = (DETECTED, MOMENTUM, MANUAL)


class SignalEvidence(Base):
    """
    Many-to-many link between a signal and the ingestions backing it.

    The (signal_id, ingestion_id) pair is unique; repeated links are no-ops.
    """
    __tablename__ = "signal_evidence"

    id = Column(Uuid, primary_key=True, default=uuid4)
    signal_id = Column(Uuid, ForeignKey("signals.id"), index=True, nullable=False)
    ingestion_id = Column(Uuid, ForeignKey("ingestions.id"), index=True, nullable=False)
    reference_type = Column(String(16), nullable=False, default=ReferenceType.DETECTED)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("signal_id", "ingestion_id", name="uq_signal_evidence_pair"),
    )
