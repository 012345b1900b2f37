"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from domain.payment.events import PaymentEvent


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks."""

    def publish_payment_event(self, event: PaymentEvent) -> None:
        """Fire-and-forget delivery of a committed payment event."""
        from ..tasks.notifications import deliver_payment_event

        deliver_payment_event.delay(event.to_payload())


class CeleryNotificationSink:
    """NotificationSink backed by the Celery notification queue."""

    def __init__(self, dispatcher: TaskDispatcher | None = None) -> None:
        self._dispatcher = dispatcher or TaskDispatcher()

    def publish(self, event: PaymentEvent) -> None:
        self._dispatcher.publish_payment_event(event)
