"""
Celery application configuration.

Defines the Celery app with Redis broker, the task modules,
and the cron beat schedule for the loan matcher.
"""

from celery import Celery
from celery.schedules import crontab

from lendmatch.config import settings

celery_app = Celery(
    "lendmatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "lendmatch.tasks.matching_tasks",
        "lendmatch.tasks.notification_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_transport_options={"priority_steps": list(range(11)), "queue_order_strategy": "priority"},
)


def cron_schedule(expression: str) -> crontab:
    """Build a crontab from a 5-field cron expression (minute hour day month weekday)."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression {expression!r}: expected 5 fields")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def build_beat_schedule() -> dict:
    if not settings.LOAN_MATCHER_SCHEDULER_ENABLED:
        return {}
    return {
        "run-loan-matching": {
            "task": "lendmatch.tasks.matching_tasks.run_loan_matching",
            "schedule": cron_schedule(settings.LOAN_MATCHER_CRON_SCHEDULE),
            "args": ({"batch_size": settings.LOAN_MATCHER_BATCH_SIZE},),
        },
    }


# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = build_beat_schedule()
