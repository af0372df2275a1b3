"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Separate queues for event processing and the scheduler
- Beat schedule for the continuation poller and stale-run recovery
- The application log format in place of Celery's own handlers
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()

celery_app = Celery(
    "automation_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.events.*": {"queue": "events"},
        "worker.tasks.scheduler.*": {"queue": "scheduler"},
    },
    task_default_queue="events",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=300,
    task_time_limit=600,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "poll-continuations": {
            "task": "worker.tasks.scheduler.poll_continuations",
            "schedule": crontab(minute="*/1"),  # Every minute
            "options": {"queue": "scheduler"},
        },
        "recover-stale-runs": {
            "task": "worker.tasks.scheduler.recover_stale_runs",
            "schedule": crontab(minute="*/5"),  # Every 5 minutes
            "options": {"queue": "scheduler"},
        },
    },

    include=[
        "worker.tasks.events",
        "worker.tasks.scheduler",
    ],
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connecting this signal stops Celery from installing its own handlers
    setup_logging(settings)
