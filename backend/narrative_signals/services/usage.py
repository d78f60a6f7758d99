from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.usage_log import UsageLog
from .llm_costs import cost_for_tokens

logger = logging.getLogger(__name__)


def log_usage(
    db: Session,
    project_id: UUID,
    action_type: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    metadata: Optional[Dict[str, Any]] = None,
) -> UsageLog:
    """Append one usage row for a model call; rows are never updated."""
    prompt_tokens = max(0, int(prompt_tokens or 0))
    completion_tokens = max(0, int(completion_tokens or 0))
    cost = cost_for_tokens(model, prompt_tokens, completion_tokens)

    entry = UsageLog(
        project_id=project_id,
        action_type=action_type,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated_cost=round(cost, 6),
        meta=metadata or {},
    )
    db.add(entry)
    db.commit()

    logger.info(
        "Logged %s usage: %d tokens, $%.6f",
        action_type,
        entry.total_tokens,
        cost,
        extra={"project_id": str(project_id), "step": "usage"},
    )
    return entry


def get_project_usage_summary(db: Session, project_id: UUID, days: int = 30) -> Dict[str, Any]:
    since = datetime.utcnow() - timedelta(days=days)

    rows = (
        db.query(
            UsageLog.action_type,
            func.count(UsageLog.id),
            func.coalesce(func.sum(UsageLog.total_tokens), 0),
            func.coalesce(func.sum(UsageLog.estimated_cost), 0),
        )
        .filter(UsageLog.project_id == project_id, UsageLog.created_at >= since)
        .group_by(UsageLog.action_type)
        .all()
    )

    breakdown: Dict[str, Dict[str, Any]] = {}
    total_tokens = 0
    total_cost = 0.0
    total_calls = 0
    for action_type, calls, tokens, cost in rows:
        breakdown[action_type] = {
            "calls": int(calls),
            "tokens": int(tokens),
            "cost": round(float(cost), 6),
        }
        total_calls += int(calls)
        total_tokens += int(tokens)
        total_cost += float(cost)

    return {
        "project_id": str(project_id),
        "days": days,
        "total_tokens": total_tokens,
        "total_cost": round(total_cost, 6),
        "total_calls": total_calls,
        "breakdown_by_action": breakdown,
    }
