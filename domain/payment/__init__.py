"""Payment domain exports."""
from .entity import (
    ALLOWED_TRANSITIONS,
    AuditAction,
    AuditEntry,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentView,
    ReconciliationBucket,
    Resolution,
    Transition,
    TransitionResult,
)
from .repository import PaymentAuditRepository, PaymentRepository

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditAction",
    "AuditEntry",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentView",
    "ReconciliationBucket",
    "Resolution",
    "Transition",
    "TransitionResult",
    "PaymentAuditRepository",
    "PaymentRepository",
]
