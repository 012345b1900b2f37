"""
Payment domain events.

Dataclass events record payment lifecycle facts for downstream handling
(notifications, audit feeds). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_id: Optional[str]  # None for free enrollments
    user_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return EVENT_NAMES[type(self)]

    def to_payload(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        data["event"] = self.name
        return data


@dataclass
class PaymentCompleted(PaymentEvent):
    amount: str = ""
    currency: str = ""
    method: str = ""
    approved_by: Optional[str] = None


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None
    rejected_by: Optional[str] = None


@dataclass
class PaymentRefunded(PaymentEvent):
    amount: str = ""
    refunded_by: Optional[str] = None


@dataclass
class EnrollmentGranted(PaymentEvent):
    course_ids: list[str] = field(default_factory=list)


EVENT_NAMES = {
    PaymentCompleted: "payment.completed",
    PaymentFailed: "payment.failed",
    PaymentRefunded: "payment.refunded",
    EnrollmentGranted: "enrollment.granted",
}
