"""
Momentum analysis: re-evaluate open signals against recent content.

State only changes on an explicit update from the model. Signals younger than
MOMENTUM_MIN_SIGNAL_AGE_HOURS are never sent and always reported unchanged, and
every analyzed signal ends up in exactly one of ``updated_signals`` or
``unchanged_signal_ids``.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..models.signal import MomentumHistory, Signal, SignalStatus
from ..models.signal_evidence import ReferenceType
from ..schemas.analysis import MomentumResponse, SignalUpdate
from .analysis_data import fetch_project_context, fetch_recent_ingestions
from .evidence import link_evidence
from .llm import ModelResponseError, complete_json, parse_model_response
from .prompts import build_momentum_prompt
from .usage import log_usage

logger = logging.getLogger(__name__)
settings = get_settings()

ACTION_TYPE = "momentum_analysis"


def _empty_usage() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def reconcile_updates(
    eligible_ids: Sequence[str],
    updates: Sequence[SignalUpdate],
) -> Tuple["OrderedDict[str, SignalUpdate]", List[str], List[str]]:
    """
    Partition eligible signal ids into updates and unchanged ids.

    Updates for unknown ids are dropped, the first update per id wins, an update
    wins over an "unchanged" mention, and ids the model forgot are unchanged.
    Returns (updates_by_id, unchanged_ids, ignored_ids).
    """
    known = {i.lower(): i for i in eligible_ids}
    by_id: "OrderedDict[str, SignalUpdate]" = OrderedDict()
    ignored: List[str] = []

    for update in updates:
        key = update.signal_id.lower()
        if key not in known:
            ignored.append(update.signal_id)
            continue
        if known[key] in by_id:
            continue
        by_id[known[key]] = update

    unchanged_ids = [i for i in eligible_ids if i not in by_id]
    return by_id, unchanged_ids, ignored


def _apply_update(
    db: Session,
    signal_id: UUID,
    update: SignalUpdate,
    recent_ids: Dict[str, UUID],
    now: datetime,
) -> Dict[str, Any]:
    signal = (
        db.query(Signal)
        .filter(Signal.id == signal_id)
        .with_for_update()
        .one()
    )

    supporting: List[UUID] = []
    for raw in update.supporting_ingestion_ids:
        ingestion_id = recent_ids.get(raw.strip().lower())
        if ingestion_id is not None and ingestion_id not in supporting:
            supporting.append(ingestion_id)

    new_risk = update.new_risk_level or signal.risk_level
    reason = (update.reason or "")[:500]
    previous = {
        "status": signal.status,
        "momentum": signal.momentum,
        "risk_level": signal.risk_level,
    }

    db.add(
        MomentumHistory(
            signal_id=signal.id,
            checked_at=now,
            previous_status=previous["status"],
            new_status=update.new_status,
            previous_momentum=previous["momentum"],
            new_momentum=update.new_momentum,
            previous_risk_level=previous["risk_level"],
            new_risk_level=new_risk,
            reason=reason,
            supporting_ingestion_ids=[str(i) for i in supporting],
            evidence_count=len(supporting),
        )
    )

    signal.status = update.new_status
    signal.momentum = update.new_momentum
    signal.risk_level = new_risk
    signal.updated_at = now
    signal.last_momentum_check = now
    signal.total_momentum_checks = (signal.total_momentum_checks or 0) + 1
    meta = dict(signal.meta or {})
    meta["last_momentum_reason"] = reason
    signal.meta = meta
    db.flush()

    link = link_evidence(
        db,
        signal.id,
        supporting,
        ReferenceType.MOMENTUM,
        {"checked_at": now.isoformat(), "new_status": update.new_status},
        commit=False,
    )
    db.commit()

    return {
        "signal_id": str(signal.id),
        "headline": signal.headline,
        "previous_status": previous["status"],
        "new_status": update.new_status,
        "previous_momentum": previous["momentum"],
        "new_momentum": update.new_momentum,
        "previous_risk_level": previous["risk_level"],
        "new_risk_level": new_risk,
        "reason": reason,
        "evidence_linked": link["linked"],
        "evidence_errors": link["errors"],
    }


def analyze_momentum(
    db: Session,
    project_id: UUID,
    hours_back: Optional[int] = None,
    *,
    client: Any = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    started = time.monotonic()
    hours_back = hours_back or settings.MOMENTUM_HOURS_BACK
    now = now or datetime.utcnow()
    result: Dict[str, Any] = {
        "success": False,
        "project_id": str(project_id),
        "signals_analyzed": 0,
        "signals_updated": 0,
        "signals_unchanged": 0,
        "updated_signals": [],
        "unchanged_signal_ids": [],
        "token_usage": _empty_usage(),
        "analysis_notes": "",
        "errors": [],
        "error": None,
        "execution_time_ms": 0,
    }

    def _finish() -> Dict[str, Any]:
        result["signals_updated"] = len(result["updated_signals"])
        result["signals_unchanged"] = len(result["unchanged_signal_ids"])
        result["execution_time_ms"] = int((time.monotonic() - started) * 1000)
        return result

    log_extra = {"project_id": str(project_id), "step": "momentum"}

    try:
        project = fetch_project_context(db, project_id)
        if project is None:
            result["error"] = "Project not found"
            return _finish()

        signals = (
            db.query(Signal)
            .filter(Signal.project_id == project_id, Signal.status.in_(SignalStatus.OPEN))
            .order_by(Signal.detected_at.asc())
            .all()
        )
        result["signals_analyzed"] = len(signals)

        cutoff = now - timedelta(hours=settings.MOMENTUM_MIN_SIGNAL_AGE_HOURS)
        eligible = [s for s in signals if s.detected_at <= cutoff]
        too_new = [str(s.id) for s in signals if s.detected_at > cutoff]
        result["unchanged_signal_ids"].extend(too_new)

        if not eligible:
            result["success"] = True
            result["analysis_notes"] = "No signals old enough for momentum analysis"
            return _finish()

        eligible_ids = [str(s.id) for s in eligible]
        recent = fetch_recent_ingestions(
            db, project_id, hours_back, settings.ANALYSIS_MAX_INGESTIONS
        )
        if not recent:
            result["unchanged_signal_ids"].extend(eligible_ids)
            result["success"] = True
            result["analysis_notes"] = "No recent content for momentum analysis"
            return _finish()

        recent_ids = {str(i.id).lower(): i.id for i in recent}
        logger.info(
            "Analyzing momentum for %d signals over %d ingestions",
            len(eligible),
            len(recent),
            extra=log_extra,
        )

        system_prompt, user_prompt = build_momentum_prompt(project, eligible, recent)

        def _fail(kind: str, e: Exception) -> Dict[str, Any]:
            message = str(e) or type(e).__name__
            logger.error("%s: %s", kind, message, extra=log_extra)
            result["unchanged_signal_ids"].extend(eligible_ids)
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
                {"signals_analyzed": len(eligible), "hours_back": hours_back},
            )
        except SQLAlchemyError as e:
            db.rollback()
            result["errors"].append(f"Failed to log usage: {e}")
            logger.exception("Usage logging failed", extra=log_extra)

        try:
            parsed = parse_model_response(response.text, MomentumResponse)
        except ModelResponseError as e:
            return _fail("Malformed model response", e)

        result["analysis_notes"] = parsed.analysis_notes
        updates, unchanged_ids, ignored = reconcile_updates(eligible_ids, parsed.signal_updates)
        for signal_id in ignored:
            logger.warning("Ignoring update for unknown signal %s", signal_id, extra=log_extra)
        result["unchanged_signal_ids"].extend(unchanged_ids)

        for signal_id, update in updates.items():
            try:
                applied = _apply_update(db, UUID(signal_id), update, recent_ids, now)
            except SQLAlchemyError as e:
                db.rollback()
                result["unchanged_signal_ids"].append(signal_id)
                result["errors"].append(f"Failed to update signal {signal_id}: {e}")
                logger.exception(
                    "Momentum update failed",
                    extra={**log_extra, "signal_id": signal_id},
                )
                continue
            result["errors"].extend(applied.pop("evidence_errors"))
            result["updated_signals"].append(applied)

        result["success"] = True
        logger.info(
            "Momentum analysis complete: %d updated, %d unchanged",
            len(result["updated_signals"]),
            len(result["unchanged_signal_ids"]),
            extra=log_extra,
        )
        return _finish()
    except Exception as e:
        db.rollback()
        result["success"] = False
        result["error"] = str(e) or type(e).__name__
        logger.exception(
            "Momentum analysis failed after %d ms",
            int((time.monotonic() - started) * 1000),
            extra=log_extra,
        )
        return _finish()
