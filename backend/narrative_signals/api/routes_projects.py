from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.project import Project
from ..schemas.analysis import UsageSummaryOut
from ..services.scheduler import scrape_project_on_demand
from ..services.usage import get_project_usage_summary
from .deps import verify_api_key

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def _get_project_or_404(db: Session, project_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.post("/{project_id}/scrape")
def scrape_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    """
    Scrape one project now. The refresh interval is ignored; the project lock
    is still honored, so a concurrent run makes this return success=false.
    """
    _get_project_or_404(db, project_id)
    db.close()

    logger.info(
        "On-demand scrape requested",
        extra={"project_id": str(project_id), "step": "scrape:on_demand"},
    )
    return scrape_project_on_demand(project_id)


@router.get("/{project_id}/usage", response_model=UsageSummaryOut)
def project_usage(
    project_id: UUID,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    _get_project_or_404(db, project_id)
    return get_project_usage_summary(db, project_id, days=days)
