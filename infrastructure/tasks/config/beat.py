"""Celery beat schedule configuration.

Both payment sweeps are opt-in (PAYMENT__SWEEPS__*); operators can always
run them on demand from the reconciliation endpoints.
"""
from __future__ import annotations

from core.settings import payment_settings


def build_beat_schedule() -> dict:
    sweeps = payment_settings.sweeps
    schedule = {}
    if sweeps.expire_stale_enabled:
        schedule["payments-expire-stale"] = {
            "task": "payments.expire_stale",
            "schedule": sweeps.expire_stale_every_seconds,
        }
    if sweeps.regrant_enabled:
        schedule["payments-regrant-unfulfilled"] = {
            "task": "payments.regrant_unfulfilled",
            "schedule": sweeps.regrant_every_seconds,
        }
    return schedule


CELERY_BEAT_SCHEDULE = build_beat_schedule()
