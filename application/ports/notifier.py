"""
Notification sink port. Delivery is fire-and-forget from the caller's view.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.payment.events import PaymentEvent


@runtime_checkable
class NotificationSink(Protocol):
    def publish(self, event: PaymentEvent) -> None: ...
