"""
Read-side queries that assemble the input for signal detection and momentum
analysis: project context, candidate ingestions and summary statistics.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from ..models.ingestion import Ingestion
from ..models.project import Project
from ..models.source import Source


@dataclass
class ProjectContext:
    id: UUID
    name: str
    signal_instructions: Optional[str] = None
    risk_criteria: Optional[str] = None
    sources: List[Dict[str, Any]] = field(default_factory=list)


def fetch_project_context(db: Session, project_id: UUID) -> Optional[ProjectContext]:
    project = db.get(Project, project_id)
    if project is None:
        return None

    sources = (
        db.query(Source)
        .filter(Source.project_id == project_id, Source.is_active.is_(True))
        .all()
    )
    return ProjectContext(
        id=project.id,
        name=project.name,
        signal_instructions=project.signal_instructions,
        risk_criteria=project.risk_criteria,
        sources=[
            {"id": str(s.id), "name": s.label, "platform": s.platform, "url": s.url}
            for s in sources
        ],
    )


def _project_ingestions(db: Session, project_id: UUID, hours_back: int):
    cutoff = datetime.utcnow() - timedelta(hours=hours_back)
    return (
        db.query(Ingestion)
        .join(Source, Ingestion.source_id == Source.id)
        .options(joinedload(Ingestion.source))
        .filter(Source.project_id == project_id, Ingestion.ingested_at >= cutoff)
    )


def fetch_unprocessed_ingestions(
    db: Session,
    project_id: UUID,
    hours_back: int,
    limit: int,
    ingestion_ids: Optional[Sequence[UUID]] = None,
) -> List[Ingestion]:
    """Newest-first unprocessed ingestions for the project within the window."""
    query = _project_ingestions(db, project_id, hours_back).filter(
        Ingestion.processed.is_(False)
    )
    if ingestion_ids is not None:
        query = query.filter(Ingestion.id.in_(list(ingestion_ids)))
    return query.order_by(Ingestion.ingested_at.desc()).limit(limit).all()


def fetch_recent_ingestions(
    db: Session, project_id: UUID, hours_back: int, limit: int
) -> List[Ingestion]:
    """Newest-first ingestions within the window, processed or not."""
    return (
        _project_ingestions(db, project_id, hours_back)
        .order_by(Ingestion.ingested_at.desc())
        .limit(limit)
        .all()
    )


def calculate_ingestion_stats(ingestions: Sequence[Ingestion], hours_back: int) -> Dict[str, Any]:
    platforms: Dict[str, int] = {}
    for ingestion in ingestions:
        platform = (ingestion.source.platform if ingestion.source else None) or "unknown"
        platforms[platform] = platforms.get(platform, 0) + 1

    timestamps = sorted(i.ingested_at for i in ingestions if i.ingested_at)
    return {
        "total_items": len(ingestions),
        "time_range_start": timestamps[0].isoformat() if timestamps else None,
        "time_range_end": timestamps[-1].isoformat() if timestamps else None,
        "hours_included": hours_back,
        "platforms": platforms,
    }
