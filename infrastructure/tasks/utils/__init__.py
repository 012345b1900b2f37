"""Utility helpers for Celery tasks."""
from .dispatcher import CeleryNotificationSink, TaskDispatcher
from .base_task import PaymentTask

__all__ = ["CeleryNotificationSink", "TaskDispatcher", "PaymentTask"]
