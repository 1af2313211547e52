"""Celery application for the learning worker."""

from celery import Celery
from celery.schedules import crontab

from uplift_service.config import get_settings
from uplift_service.log_config import configure_logging

settings = get_settings()
configure_logging(settings)

app = Celery(
    "learning_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "learning_worker.tasks.daily_learning",
        "learning_worker.tasks.similarity",
    ],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # a run must finish before its per-shop lock expires
    task_time_limit=settings.learning_lock_ttl_seconds,
    task_soft_time_limit=max(settings.learning_lock_ttl_seconds - 60, 30),
    worker_max_tasks_per_child=50,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="learning",
    task_routes={
        "learning_worker.tasks.*": {"queue": "learning"},
    },
)

app.conf.beat_schedule = {
    # Once a day, after the trailing window has closed
    "daily-learning": {
        "task": "learning_worker.tasks.daily_learning.run_daily_learning_for_all_shops",
        "schedule": crontab(minute=0, hour=settings.learning_schedule_hour),
    },
    "weekly-similarity": {
        "task": "learning_worker.tasks.similarity.run_similarity_computation_for_all_shops",
        "schedule": crontab(
            minute=0,
            hour=settings.similarity_schedule_hour,
            day_of_week=settings.similarity_schedule_day_of_week,
        ),
    },
}
