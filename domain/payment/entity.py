"""
Payment domain entity - the ledger aggregate root and its state machine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.catalog.entity import ItemKind, ItemRef
from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """Payment status"""
    PENDING = "pending"          # created, waiting for a slip or a gateway callback
    VERIFYING = "verifying"      # slip attached, verdict outstanding
    COMPLETED = "completed"      # money received (terminal)
    FAILED = "failed"            # verification failed, expired or rejected
    REFUNDED = "refunded"        # refunded by an operator (terminal)


class PaymentMethod(str, Enum):
    CARD_GATEWAY = "card_gateway"
    BANK_TRANSFER = "bank_transfer"


class Resolution(str, Enum):
    """Operator decision recorded on the payment row."""
    APPROVED = "approved"
    REJECTED = "rejected"


# Every edge the ledger may take. Self-edges are bookkeeping transitions:
# pending->pending stores the gateway session id, failed->failed records an
# operator rejection.
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PENDING,
        PaymentStatus.VERIFYING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.VERIFYING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize timestamps to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Payment:
    """
    Payment aggregate root - one purchase attempt.

    Business rules:
    1. Exactly one of course_id / bundle_id is set
    2. amount is the final price after discounts and is never recomputed
    3. amount must be greater than 0 (free purchases never create a payment)
    4. status only moves along ALLOWED_TRANSITIONS, through conditional updates
    """

    id: str
    user_id: str
    course_id: Optional[str]
    bundle_id: Optional[str]
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING

    external_ref: Optional[str] = None  # gateway session id or slip storage reference
    coupon_id: Optional[str] = None
    item_title: Optional[str] = None  # snapshot at purchase time

    # reconciliation bookkeeping
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    resolution: Optional[Resolution] = None
    failure_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None  # enrollments granted for this payment
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self._validate_item()
        self._validate_amount()
        self._validate_currency()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.last_retry_at = _ensure_utc(self.last_retry_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.failed_at = _ensure_utc(self.failed_at)
        self.fulfilled_at = _ensure_utc(self.fulfilled_at)
        if self.metadata is None:
            self.metadata = {}

    def _validate_item(self) -> None:
        if bool(self.course_id) == bool(self.bundle_id):
            raise DomainValidationException(
                "A payment targets exactly one course or one bundle",
                field="item",
            )

    def _validate_amount(self) -> None:
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.amount}",
                field="amount",
            )

    def _validate_currency(self) -> None:
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )

    @property
    def item_ref(self) -> ItemRef:
        if self.bundle_id:
            return ItemRef(kind=ItemKind.BUNDLE, id=self.bundle_id)
        return ItemRef(kind=ItemKind.COURSE, id=self.course_id or "")

    @property
    def is_rejected(self) -> bool:
        return self.status == PaymentStatus.FAILED and self.resolution == Resolution.REJECTED

    @property
    def needs_fulfillment(self) -> bool:
        return self.status == PaymentStatus.COMPLETED and self.fulfilled_at is None


@dataclass(frozen=True)
class Transition:
    """A compare-and-swap request: move `payment_id` from `expected` to `target`.

    The idempotency key of a transition is (payment_id, target); the store
    applies it only while the row still holds `expected`.
    """

    payment_id: str
    expected: PaymentStatus
    target: PaymentStatus
    external_ref: Optional[str] = None
    reason: Optional[str] = None  # stored as failure_reason when the target is failed
    resolution: Optional[Resolution] = None
    at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not can_transition(self.expected, self.target):
            raise DomainValidationException(
                f"Cannot transition payment from {self.expected.value} to {self.target.value}",
                field="status",
            )

    @property
    def requires_unresolved(self) -> bool:
        # operator decisions apply once; a rejected payment stays rejected
        return self.resolution is not None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a conditional transition; never raised, always returned."""

    applied: bool
    payment: Optional[Payment]

    @property
    def current_status(self) -> Optional[PaymentStatus]:
        return self.payment.status if self.payment else None

    @property
    def not_found(self) -> bool:
        return self.payment is None


class ReconciliationBucket(str, Enum):
    """Operator triage buckets; `unfulfilled` is completed payments whose grant has not finished."""
    PENDING = "pending"
    VERIFYING = "verifying"
    FAILED = "failed"
    UNFULFILLED = "unfulfilled"


@dataclass
class PaymentView:
    """Payment plus denormalized display fields for the reconciliation list."""

    payment: Payment
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    course_title: Optional[str] = None
    bundle_title: Optional[str] = None

    @property
    def item_title(self) -> Optional[str]:
        return self.course_title or self.bundle_title or self.payment.item_title


class AuditAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    BULK_MARK_FAILED = "bulk_mark_failed"
    EXPIRE = "expire"
    REFUND = "refund"
    REGRANT = "regrant"
    AUTO_FAILED = "auto_failed"


@dataclass
class AuditEntry:
    """Who moved a payment, from where to where, and why."""

    id: str
    payment_id: str
    action: AuditAction
    from_status: Optional[PaymentStatus]
    to_status: Optional[PaymentStatus]
    actor_id: Optional[str] = None  # "system" for automatic transitions
    reason: Optional[str] = None
    details: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at)
