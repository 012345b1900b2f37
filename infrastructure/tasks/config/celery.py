"""Celery application configuration"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue
from sqlalchemy.engine import make_url

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)

# notifications are best-effort and must never delay the payment sweeps
TASK_ROUTES = {
    "payments.*": {"queue": "high"},
    "notifications.*": {"queue": "low"},
}

logger = get_logger(__name__)

celery_app = Celery("course_payments")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # sweeps are idempotent, so a task lost with its worker is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_ignore_result=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    task_routes=TASK_ROUTES,
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


def _masked(url: str | None) -> str | None:
    if not url:
        return url
    return make_url(url).render_as_string(hide_password=True)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=_masked(sender.conf.broker_url),
        eager=bool(sender.conf.task_always_eager),
        scheduled=sorted(sender.conf.beat_schedule or {}),
    )
