"""Celery application configuration."""

from celery import Celery

from reelforge.config import get_settings

settings = get_settings()

celery_app = Celery(
    "reelforge",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["reelforge.tasks.generation_tasks", "reelforge.tasks.render_task"],
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
    task_soft_time_limit=1700,
    worker_prefetch_multiplier=1,  # Process one task at a time
    task_acks_late=True,  # Acknowledge after task completion
    task_reject_on_worker_lost=True,  # Requeue if worker dies
)

celery_app.conf.beat_schedule = {
    "sweep-outstanding-generation-jobs": {
        "task": "reelforge.tasks.generation_tasks.sweep_generation_jobs",
        "schedule": settings.poll_interval_seconds,
    },
}
