from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.db import SessionLocal
from ..models.project import Project
from .detection import detect_signals
from .momentum import analyze_momentum

logger = logging.getLogger(__name__)


def _sum_usage(*usages: Dict[str, int]) -> Dict[str, int]:
    total = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    for usage in usages:
        for key in total:
            total[key] += int(usage.get(key, 0) or 0)
    return total


def run_full_analysis(
    db: Session,
    project_id: UUID,
    detection_hours_back: Optional[int] = None,
    momentum_hours_back: Optional[int] = None,
    *,
    client: Any = None,
) -> Dict[str, Any]:
    """
    Detection followed by momentum analysis.

    Momentum always runs, even when detection failed. ``success`` is true only
    when both stages succeeded; ``error`` joins whatever each stage reported.
    """
    started = time.monotonic()
    detection = detect_signals(db, project_id, detection_hours_back, client=client)
    momentum = analyze_momentum(db, project_id, momentum_hours_back, client=client)

    errors: List[str] = []
    if detection.get("error"):
        errors.append(f"Detection: {detection['error']}")
    if momentum.get("error"):
        errors.append(f"Momentum: {momentum['error']}")

    result = {
        "success": bool(detection["success"] and momentum["success"]),
        "project_id": str(project_id),
        "detection": detection,
        "momentum": momentum,
        "token_usage": {
            "detection": detection["token_usage"],
            "momentum": momentum["token_usage"],
            "total": _sum_usage(detection["token_usage"], momentum["token_usage"]),
        },
        "error": "; ".join(errors) or None,
        "execution_time_ms": int((time.monotonic() - started) * 1000),
    }
    logger.info(
        "Full analysis finished: %d new signals, %d momentum updates",
        detection["signals_detected"],
        momentum["signals_updated"],
        extra={"project_id": str(project_id), "step": "analysis"},
    )
    return result


@celery_app.task(name="narrative_signals.services.pipeline.run_analysis_cron")
def run_analysis_cron() -> Dict[str, Any]:
    """Periodic task: run the full analysis for every active project."""
    db: Session = SessionLocal()
    try:
        project_ids = [
            row[0]
            for row in db.query(Project.id).filter(Project.is_active.is_(True)).all()
        ]
        results = []
        for project_id in project_ids:
            analysis = run_full_analysis(db, project_id)
            results.append(
                {
                    "project_id": str(project_id),
                    "success": analysis["success"],
                    "signals_detected": analysis["detection"]["signals_detected"],
                    "signals_updated": analysis["momentum"]["signals_updated"],
                    "total_tokens": analysis["token_usage"]["total"]["total_tokens"],
                    "error": analysis["error"],
                }
            )
        logger.info(
            "Analysis cron processed %d projects",
            len(project_ids),
            extra={"step": "analysis_cron"},
        )
        return {"projects_analyzed": len(project_ids), "results": results}
    except Exception:
        db.rollback()
        logger.exception("Error during run_analysis_cron", extra={"step": "analysis_cron"})
        raise
    finally:
        db.close()
