from typing import List
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.project import Project
from ..models.signal import Signal
from ..schemas.analysis import (
    AnalysisRequest,
    DetectionResult,
    EvidenceOut,
    FullAnalysisResult,
    MomentumResult,
)
from ..services.detection import detect_signals
from ..services.evidence import get_signal_evidence
from ..services.momentum import analyze_momentum
from ..services.pipeline import run_full_analysis
from .deps import verify_api_key

router = APIRouter(tags=["analysis"])
logger = logging.getLogger(__name__)


def _require_project(db: Session, project_id: UUID) -> None:
    if not db.get(Project, project_id):
        raise HTTPException(status_code=404, detail="Project not found")


@router.post("/analysis/detect-signals", response_model=DetectionResult)
def run_detection(
    payload: AnalysisRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    _require_project(db, payload.project_id)
    return detect_signals(db, payload.project_id, payload.hours_back)


@router.post("/analysis/analyze-momentum", response_model=MomentumResult)
def run_momentum(
    payload: AnalysisRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    _require_project(db, payload.project_id)
    return analyze_momentum(db, payload.project_id, payload.hours_back)


@router.post("/analysis/run", response_model=FullAnalysisResult)
def run_analysis(
    payload: AnalysisRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    # hours_back applies to detection only; momentum keeps its wider window
    _require_project(db, payload.project_id)
    return run_full_analysis(db, payload.project_id, detection_hours_back=payload.hours_back)


@router.get("/signals/{signal_id}/evidence", response_model=List[EvidenceOut])
def signal_evidence(
    signal_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if not db.get(Signal, signal_id):
        raise HTTPException(status_code=404, detail="Signal not found")
    return get_signal_evidence(db, signal_id)
