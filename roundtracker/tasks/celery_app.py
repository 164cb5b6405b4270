"""
Celery application configuration.
"""
from celery import Celery
from celery.schedules import crontab
from roundtracker.config import settings

# Create Celery app
celery_app = Celery(
    "round_tracker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["roundtracker.tasks.round_backfill"]  # Include task modules
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes max per task
    task_soft_time_limit=1500,  # 25 minutes soft limit
    worker_prefetch_multiplier=1,  # Only fetch one task at a time
)

# Optional: Configure result expiration
celery_app.conf.result_expires = 3600  # Results expire after 1 hour

# Celery Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "backfill-recent-rounds": {
        "task": "tasks.backfill_recent_rounds",
        "schedule": crontab(minute=f"*/{settings.ROUND_BACKFILL_INTERVAL_MINUTES}"),
    },
}

if __name__ == "__main__":
    celery_app.start()
