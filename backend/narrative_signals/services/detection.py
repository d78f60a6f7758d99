"""
Signal detection: turn a batch of unprocessed ingestions into new signals.

The model sees every unprocessed ingestion in the lookback window (capped by
recency), proposes candidate signals, and each candidate is stored with its
supporting ingestions linked as ``detected`` evidence. Every ingestion sent to
the model is marked processed whether or not a signal cites it.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..models.ingestion import Ingestion, IngestionStatus
from ..models.signal import Momentum, RiskLevel, Signal, SignalStatus
from ..models.signal_evidence import ReferenceType
from ..schemas.analysis import DetectedSignal, DetectionResponse
from .analysis_data import (
    calculate_ingestion_stats,
    fetch_project_context,
    fetch_unprocessed_ingestions,
)
from .evidence import link_evidence
from .llm import ModelResponseError, complete_json, parse_model_response
from .prompts import build_detection_prompt
from .usage import log_usage

logger = logging.getLogger(__name__)
settings = get_settings()

ACTION_TYPE = "signal_detection"


def _empty_usage() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def _truncate_headline(headline: str, limit: int) -> str:
    if len(headline) <= limit:
        return headline
    return headline[: limit - 3].rstrip() + "..."


def _mark_ingestions(
    db: Session,
    ingestion_ids: Sequence[UUID],
    status: str,
    processed: bool,
    error_message: Optional[str] = None,
) -> None:
    if not ingestion_ids:
        return
    values: Dict[str, Any] = {
        Ingestion.status: status,
        Ingestion.error_message: error_message,
    }
    if processed:
        values[Ingestion.processed] = True
        values[Ingestion.processed_at] = datetime.utcnow()
    db.query(Ingestion).filter(Ingestion.id.in_(list(ingestion_ids))).update(
        values, synchronize_session=False
    )
    db.commit()


def _create_signal(
    db: Session,
    project_id: UUID,
    candidate: DetectedSignal,
    sent_ids: Dict[str, UUID],
    model: str,
) -> Dict[str, Any]:
    """Insert one signal and link its evidence in a single commit."""
    cited = []
    for raw in candidate.raw_ingestion_ids:
        ingestion_id = sent_ids.get(raw.strip().lower())
        if ingestion_id is not None and ingestion_id not in cited:
            cited.append(ingestion_id)

    now = datetime.utcnow()
    signal = Signal(
        project_id=project_id,
        headline=_truncate_headline(candidate.headline, settings.SIGNAL_HEADLINE_MAX_LENGTH),
        summary=candidate.summary,
        key_points=candidate.key_points,
        tags=candidate.tags,
        status=candidate.status or SignalStatus.NEW,
        momentum=candidate.momentum or Momentum.MEDIUM,
        risk_level=candidate.risk_level or RiskLevel.MONITOR,
        detected_at=now,
        updated_at=now,
        total_momentum_checks=0,
        meta={
            "raw_ingestion_ids": [str(i) for i in cited],
            "sources": candidate.sources,
            "ai_model": model,
            "ai_suggested_status": candidate.status,
            "ai_suggested_momentum": candidate.momentum,
            "ai_suggested_risk_level": candidate.risk_level,
        },
    )
    db.add(signal)
    db.flush()

    link = link_evidence(
        db,
        signal.id,
        cited,
        ReferenceType.DETECTED,
        {"detected_at": now.isoformat()},
        commit=False,
    )
    db.commit()

    return {
        "id": str(signal.id),
        "headline": signal.headline,
        "summary": signal.summary,
        "key_points": signal.key_points or [],
        "tags": signal.tags or [],
        "status": signal.status,
        "momentum": signal.momentum,
        "risk_level": signal.risk_level,
        "raw_ingestion_ids": [str(i) for i in cited],
        "evidence_linked": link["linked"],
        "evidence_errors": link["errors"],
    }


def detect_signals(
    db: Session,
    project_id: UUID,
    hours_back: Optional[int] = None,
    *,
    client: Any = None,
    ingestion_ids: Optional[Sequence[UUID]] = None,
) -> Dict[str, Any]:
    """
    Run one detection pass for a project.

    ``ingestion_ids`` restricts the candidate set (used after an on-demand
    scrape). A malformed model response fails the whole run without creating
    any signal; the sent ingestions are then flagged ``analysis_failed`` and
    left unprocessed.
    """
    started = time.monotonic()
    hours_back = hours_back or settings.DETECTION_HOURS_BACK
    result: Dict[str, Any] = {
        "success": False,
        "project_id": str(project_id),
        "ingestions_analyzed": 0,
        "signals_detected": 0,
        "signals": [],
        "token_usage": _empty_usage(),
        "analysis_notes": "",
        "errors": [],
        "error": None,
        "execution_time_ms": 0,
    }

    def _finish() -> Dict[str, Any]:
        result["execution_time_ms"] = int((time.monotonic() - started) * 1000)
        return result

    log_extra = {"project_id": str(project_id), "step": "detection"}

    try:
        project = fetch_project_context(db, project_id)
        if project is None:
            result["error"] = "Project not found"
            return _finish()

        ingestions = fetch_unprocessed_ingestions(
            db,
            project_id,
            hours_back,
            settings.ANALYSIS_MAX_INGESTIONS,
            ingestion_ids=ingestion_ids,
        )
        if not ingestions:
            logger.info("No unprocessed ingestions to analyze", extra=log_extra)
            result["success"] = True
            result["analysis_notes"] = "No new content to analyze"
            return _finish()

        sent_ids = {str(i.id).lower(): i.id for i in ingestions}
        stats = calculate_ingestion_stats(ingestions, hours_back)
        result["ingestions_analyzed"] = len(ingestions)
        logger.info(
            "Detecting signals over %d ingestions",
            len(ingestions),
            extra={**log_extra, "platforms": stats["platforms"]},
        )

        system_prompt, user_prompt = build_detection_prompt(project, ingestions)

        def _fail(kind: str, e: Exception) -> Dict[str, Any]:
            message = str(e) or type(e).__name__
            logger.error("%s: %s", kind, message, extra=log_extra)
            _mark_ingestions(
                db,
                list(sent_ids.values()),
                IngestionStatus.ANALYSIS_FAILED,
                processed=False,
                error_message=f"{kind}: {message}"[:1000],
            )
            result["error"] = f"{kind}: {message}"
            return _finish()

        try:
            response = complete_json(system_prompt, user_prompt, client=client)
        except Exception as e:
            return _fail("Model call failed", e)

        result["token_usage"] = {
            "prompt_tokens": response.prompt_tokens,
            "completion_tokens": response.completion_tokens,
            "total_tokens": response.total_tokens,
        }
        try:
            log_usage(
                db,
                project_id,
                ACTION_TYPE,
                response.model,
                response.prompt_tokens,
                response.completion_tokens,
                {"ingestions_analyzed": len(ingestions), "hours_back": hours_back},
            )
        except SQLAlchemyError as e:
            db.rollback()
            result["errors"].append(f"Failed to log usage: {e}")
            logger.exception("Usage logging failed", extra=log_extra)

        try:
            parsed = parse_model_response(response.text, DetectionResponse)
        except ModelResponseError as e:
            return _fail("Malformed model response", e)

        result["analysis_notes"] = parsed.analysis_notes
        for candidate in parsed.signals:
            try:
                created = _create_signal(db, project_id, candidate, sent_ids, response.model)
            except SQLAlchemyError as e:
                db.rollback()
                result["errors"].append(f"Failed to create signal '{candidate.headline[:60]}': {e}")
                logger.exception("Signal insert failed", extra=log_extra)
                continue
            result["errors"].extend(created.pop("evidence_errors"))
            result["signals"].append(created)

        _mark_ingestions(db, list(sent_ids.values()), IngestionStatus.ANALYZED, processed=True)

        result["signals_detected"] = len(result["signals"])
        result["success"] = True
        logger.info(
            "Detection complete: %d signals from %d ingestions",
            result["signals_detected"],
            result["ingestions_analyzed"],
            extra=log_extra,
        )
        return _finish()
    except Exception as e:
        db.rollback()
        result["success"] = False
        result["error"] = str(e) or type(e).__name__
        logger.exception(
            "Signal detection failed after %d ms",
            int((time.monotonic() - started) * 1000),
            extra=log_extra,
        )
        return _finish()
