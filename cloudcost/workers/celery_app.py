"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging

from cloudcost.core.config import settings
from cloudcost.core.logging import configure_logging

# Create Celery application
celery_app = Celery(
    "cloudcost",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["cloudcost.workers.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # 55 minutes soft limit
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    worker_max_tasks_per_child=50,  # Restart worker after 50 tasks
)


@setup_logging.connect
def configure_worker_logging(**kwargs: object) -> None:
    """Use the application's structlog setup instead of Celery's logging."""
    configure_logging()
