from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "narrative_signals",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={
        "narrative_signals.services.scheduler.run_scrape_cron": {"queue": "scrape"},
        "narrative_signals.services.scheduler.scrape_project_task": {"queue": "scrape"},
        "narrative_signals.services.pipeline.run_analysis_cron": {"queue": "analysis"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=(
        "narrative_signals.services.scheduler",
        "narrative_signals.services.pipeline",
        "narrative_signals.services.retention",
    ),
    beat_schedule={
        # Hourly check for projects whose refresh interval has elapsed
        "scrape-due-projects": {
            "task": "narrative_signals.services.scheduler.run_scrape_cron",
            "schedule": crontab(minute=0),
        },
        # Detection + momentum for every active project, offset from scraping
        "analyze-active-projects": {
            "task": "narrative_signals.services.pipeline.run_analysis_cron",
            "schedule": crontab(minute=30),
        },
        "sweep-stale-scrape-runs": {
            "task": "narrative_signals.services.scheduler.sweep_stale_scrape_runs",
            "schedule": crontab(minute="*/15"),
        },
        # Daily cleanup of old ingestions and scrape logs
        "cleanup-expired-data": {
            "task": "narrative_signals.services.retention.cleanup_expired",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
