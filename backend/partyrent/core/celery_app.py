"""Celery application configuration."""

from celery import Celery

from partyrent.core.config import settings

celery_app = Celery(
    "partyrent_payments",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "release-due-escrows": {
            "task": "payments.release_due_escrows",
            "schedule": float(settings.ESCROW_SWEEP_INTERVAL_SECONDS),
        },
        "expire-provider-reviews": {
            "task": "payments.expire_provider_reviews",
            "schedule": float(settings.ESCROW_SWEEP_INTERVAL_SECONDS),
        },
    },
)

celery_app.autodiscover_tasks(["partyrent.modules.payments"])
