"""Expose Celery configuration objects for convenient imports."""
from .celery import celery_app
from .beat import CELERY_BEAT_SCHEDULE, build_beat_schedule

__all__ = ["celery_app", "CELERY_BEAT_SCHEDULE", "build_beat_schedule"]
