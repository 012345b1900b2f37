"""Payment notification delivery"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import PaymentTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="notifications.payment_event",
    bind=True,
    base=PaymentTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def deliver_payment_event(self, payload: dict) -> None:
    """Deliver one payment lifecycle event to the buyer and the operators feed.

    Replace the body with the real email/ESP integration.
    """
    logger.info(
        "payment_notification_delivered",
        event=payload.get("event"),
        event_id=payload.get("event_id"),
        payment_id=payload.get("payment_id"),
        user_id=payload.get("user_id"),
    )
