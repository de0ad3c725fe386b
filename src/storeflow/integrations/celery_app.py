"""Celery application configuration."""
from celery import Celery

from storeflow.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "storeflow",
    broker=settings.broker_url,
    backend=settings.redis_url,
    include=["storeflow.integrations.tasks"],
)

# Configure Celery with production-safe defaults
celery_app.conf.update(
    # Task execution
    task_time_limit=settings.celery_task_time_limit,  # Hard time limit
    task_soft_time_limit=settings.celery_task_soft_time_limit,  # Soft time limit
    task_acks_late=True,  # Acknowledge after task completes (safer)
    task_reject_on_worker_lost=True,  # Reject if worker dies
    worker_prefetch_multiplier=1,  # Process one task at a time (safer)
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Results
    result_expires=3600,  # Results expire after 1 hour
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Schedules are matched to the minute
    beat_schedule={
        "run-scheduled-workflows": {
            "task": "run_scheduled_workflows",
            "schedule": 60.0,
        },
    },
)
