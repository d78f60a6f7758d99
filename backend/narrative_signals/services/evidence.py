from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.db import dialect_insert
from ..models.ingestion import Ingestion
from ..models.signal import Signal
from ..models.signal_evidence import ReferenceType, SignalEvidence
from ..models.source import Source

logger = logging.getLogger(__name__)


def _coerce_ids(values: Iterable[Any], errors: List[str]) -> List[UUID]:
    seen = set()
    ids: List[UUID] = []
    for value in values or []:
        if value is None or str(value).strip() == "":
            continue
        try:
            parsed = value if isinstance(value, UUID) else UUID(str(value).strip())
        except ValueError:
            errors.append(f"Invalid ingestion id: {value}")
            continue
        if parsed not in seen:
            seen.add(parsed)
            ids.append(parsed)
    return ids


def link_evidence(
    db: Session,
    signal_id: UUID,
    ingestion_ids: Iterable[Any],
    reference_type: str = ReferenceType.DETECTED,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """
    Link ingestions to a signal, ignoring pairs that are already linked.

    Safe to call repeatedly. Unknown ingestion ids are reported in ``errors``
    instead of being inserted. Returns {"linked": int, "errors": [str]}.
    """
    if reference_type not in ReferenceType.ALL:
        raise ValueError(f"Unknown evidence reference type: {reference_type}")

    errors: List[str] = []
    ids = _coerce_ids(ingestion_ids, errors)
    if not ids:
        return {"linked": 0, "errors": errors}

    known = {
        row[0]
        for row in db.query(Ingestion.id).filter(Ingestion.id.in_(ids)).all()
    }
    for missing in [i for i in ids if i not in known]:
        errors.append(f"Unknown ingestion id: {missing}")
    ids = [i for i in ids if i in known]
    if not ids:
        return {"linked": 0, "errors": errors}

    now = datetime.utcnow()
    rows = [
        {
            "id": uuid4(),
            "signal_id": signal_id,
            "ingestion_id": ingestion_id,
            "reference_type": reference_type,
            "metadata": metadata or {},
            "created_at": now,
        }
        for ingestion_id in ids
    ]
    stmt = (
        dialect_insert(db, SignalEvidence.__table__)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["signal_id", "ingestion_id"])
    )

    linked = 0
    try:
        with db.begin_nested():
            result = db.execute(stmt)
            linked = max(0, result.rowcount or 0)
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        errors.append(f"Failed to link evidence: {e}")
        logger.exception(
            "Evidence linking failed",
            extra={"signal_id": str(signal_id), "step": "evidence"},
        )

    return {"linked": linked, "errors": errors}


def get_signal_evidence(db: Session, signal_id: UUID) -> List[Dict[str, Any]]:
    rows = (
        db.query(SignalEvidence, Ingestion, Source)
        .join(Ingestion, SignalEvidence.ingestion_id == Ingestion.id)
        .join(Source, Ingestion.source_id == Source.id)
        .filter(SignalEvidence.signal_id == signal_id)
        .order_by(SignalEvidence.created_at.asc())
        .all()
    )
    return [
        {
            "ingestion_id": str(ingestion.id),
            "reference_type": link.reference_type,
            "linked_at": link.created_at,
            "metadata": link.meta or {},
            "title": ingestion.title,
            "url": ingestion.url or source.url,
            "source_name": source.label,
            "platform": source.platform,
            "ingested_at": ingestion.ingested_at,
            "excerpt": (ingestion.content or "")[:500],
        }
        for link, ingestion, source in rows
    ]


def get_ingestion_signals(db: Session, ingestion_id: UUID) -> List[Dict[str, Any]]:
    rows = (
        db.query(SignalEvidence, Signal)
        .join(Signal, SignalEvidence.signal_id == Signal.id)
        .filter(SignalEvidence.ingestion_id == ingestion_id)
        .order_by(Signal.detected_at.desc())
        .all()
    )
    return [
        {
            "signal_id": str(signal.id),
            "headline": signal.headline,
            "status": signal.status,
            "reference_type": link.reference_type,
            "linked_at": link.created_at,
        }
        for link, signal in rows
    ]
