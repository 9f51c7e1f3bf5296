"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "tbi-connect",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # a full sweep emails every due contact
    task_soft_time_limit=1740,
    # Reliability: re-queue tasks if a worker crashes mid-execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_retry_delay=60,   # 60 seconds base delay before first retry
)


class RetryableTask(celery_app.Task):
    """
    Base task class with automatic exponential-backoff retry on failure.

    Transient errors (DB timeouts, network blips) are retried automatically.
    Override max_retries=0 on tasks that must not retry (e.g., tasks that send email).
    """

    abstract = True
    autoretry_for = (Exception,)
    max_retries = 3
    retry_backoff = True        # Exponential: 60s -> 120s -> 240s
    retry_backoff_max = 600     # Cap at 10 minutes
    retry_jitter = True         # Add jitter to prevent thundering herd on retry wave


celery_app.Task = RetryableTask


# Import tasks here as they're created
from app.workers.tasks import verification_tasks  # noqa: F401,E402

# Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    "run-reverification-sweep": {
        "task": "run_reverification_sweep",
        "schedule": crontab(hour=settings.REVERIFICATION_SWEEP_HOUR, minute=0),
    },
    "purge-expired-verification-tokens": {
        "task": "purge_expired_verification_tokens",
        "schedule": crontab(hour=4, minute=0),  # 4am daily
    },
}
