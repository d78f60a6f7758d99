import asyncio
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..services.scheduler import get_scheduler_health, run_scheduled_scrape
from .deps import verify_cron_secret

router = APIRouter(prefix="/cron", tags=["cron"])
logger = logging.getLogger(__name__)


@router.post("/scrape")
def trigger_scheduled_scrape(_: None = Depends(verify_cron_secret)):
    """Run one scheduler pass synchronously and return its summary."""
    logger.info("Cron scrape triggered", extra={"step": "cron"})
    return asyncio.run(run_scheduled_scrape())


@router.get("/status")
def scheduler_status(db: Session = Depends(get_db)):
    return get_scheduler_health(db)
