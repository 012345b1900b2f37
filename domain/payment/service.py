"""
Payment ledger - the single writer of payment state.

Every status change is a compare-and-swap through the repository. A lost race
is returned as a TransitionResult with applied=False; callers decide whether
that is a no-op or a conflict for their user.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from domain.common.exceptions import DomainValidationException

from .entity import (
    AuditAction,
    AuditEntry,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Resolution,
    Transition,
    TransitionResult,
)
from .events import PaymentCompleted, PaymentFailed, PaymentRefunded
from .repository import PaymentAuditRepository, PaymentRepository


# audit actor for transitions no operator initiated
SYSTEM_ACTOR = "system"


class PaymentLedger:
    """
    Payment state machine service.

    Responsibilities:
    1. Create payments in pending with the final, already-resolved amount
    2. Apply transitions as conditional updates
    3. Record audit entries for operator actions and automatic failures
    4. Collect domain events for transitions that actually applied
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        audit_repository: Optional[PaymentAuditRepository] = None,
    ):
        self.payment_repository = payment_repository
        self.audit_repository = audit_repository
        self.events: List = []

    async def open(
        self,
        *,
        user_id: str,
        course_id: Optional[str],
        bundle_id: Optional[str],
        amount: Decimal,
        currency: str,
        method: PaymentMethod,
        coupon_id: Optional[str] = None,
        item_title: Optional[str] = None,
        payment_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Payment:
        now = datetime.now(timezone.utc)
        payment = Payment(
            id=payment_id or uuid.uuid4().hex,
            user_id=user_id,
            course_id=course_id,
            bundle_id=bundle_id,
            amount=amount,
            currency=currency.upper(),
            method=method,
            status=PaymentStatus.PENDING,
            coupon_id=coupon_id,
            item_title=item_title,
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )
        return await self.payment_repository.create(payment)

    async def apply(
        self,
        transition: Transition,
        *,
        action: Optional[AuditAction] = None,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> TransitionResult:
        """Apply one transition; on success emit its event and audit entry."""
        result = await self.payment_repository.transition(transition)
        if not result.applied or result.payment is None:
            return result

        payment = result.payment
        if action is not None and self.audit_repository is not None:
            await self.audit_repository.add(AuditEntry(
                id=uuid.uuid4().hex,
                payment_id=payment.id,
                action=action,
                from_status=transition.expected,
                to_status=transition.target,
                actor_id=actor_id or SYSTEM_ACTOR,
                reason=transition.reason,
                details=details or {},
                created_at=transition.at,
            ))
        self._record_event(transition, payment, actor_id)
        return result

    def _record_event(self, transition: Transition, payment: Payment, actor_id: Optional[str]) -> None:
        if transition.expected == transition.target and transition.resolution is None:
            return
        if transition.target == PaymentStatus.COMPLETED:
            self.events.append(PaymentCompleted(
                payment_id=payment.id,
                user_id=payment.user_id,
                amount=str(payment.amount),
                currency=payment.currency,
                method=payment.method.value,
                approved_by=actor_id,
            ))
        elif transition.target == PaymentStatus.FAILED:
            self.events.append(PaymentFailed(
                payment_id=payment.id,
                user_id=payment.user_id,
                reason=transition.reason,
                rejected_by=actor_id if transition.resolution == Resolution.REJECTED else None,
            ))
        elif transition.target == PaymentStatus.REFUNDED:
            self.events.append(PaymentRefunded(
                payment_id=payment.id,
                user_id=payment.user_id,
                amount=str(payment.amount),
                refunded_by=actor_id,
            ))

    # --- named transitions ----------------------------------------------------

    async def attach_session(self, payment_id: str, session_id: str) -> TransitionResult:
        """pending -> pending, storing the gateway session id."""
        return await self.apply(Transition(
            payment_id=payment_id,
            expected=PaymentStatus.PENDING,
            target=PaymentStatus.PENDING,
            external_ref=session_id,
        ))

    async def begin_verification(self, payment_id: str, slip_ref: str) -> TransitionResult:
        return await self.apply(Transition(
            payment_id=payment_id,
            expected=PaymentStatus.PENDING,
            target=PaymentStatus.VERIFYING,
            external_ref=slip_ref,
        ))

    async def complete(
        self,
        payment_id: str,
        expected: PaymentStatus,
        *,
        external_ref: Optional[str] = None,
    ) -> TransitionResult:
        """Automatic completion after a gateway callback or a slip match."""
        return await self.apply(Transition(
            payment_id=payment_id,
            expected=expected,
            target=PaymentStatus.COMPLETED,
            external_ref=external_ref,
        ))

    async def fail(
        self,
        payment_id: str,
        expected: PaymentStatus,
        reason: str,
        *,
        action: AuditAction = AuditAction.AUTO_FAILED,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> TransitionResult:
        """Automatic or bulk failure; always audited."""
        if expected == PaymentStatus.FAILED:
            raise DomainValidationException("Payment is already failed", field="status")
        return await self.apply(
            Transition(
                payment_id=payment_id,
                expected=expected,
                target=PaymentStatus.FAILED,
                reason=reason,
            ),
            action=action,
            actor_id=actor_id,
            details=details,
        )

    async def approve(self, payment: Payment, actor_id: str) -> TransitionResult:
        """Operator override: verifying/failed -> completed."""
        return await self.apply(
            Transition(
                payment_id=payment.id,
                expected=payment.status,
                target=PaymentStatus.COMPLETED,
                resolution=Resolution.APPROVED,
            ),
            action=AuditAction.APPROVE,
            actor_id=actor_id,
        )

    async def reject(self, payment: Payment, actor_id: str, reason: Optional[str] = None) -> TransitionResult:
        """Operator decision: pending/verifying/failed -> failed, terminal."""
        return await self.apply(
            Transition(
                payment_id=payment.id,
                expected=payment.status,
                target=PaymentStatus.FAILED,
                resolution=Resolution.REJECTED,
                reason=reason or payment.failure_reason or "rejected_by_operator",
            ),
            action=AuditAction.REJECT,
            actor_id=actor_id,
        )

    async def refund(self, payment: Payment, actor_id: str, reason: Optional[str] = None) -> TransitionResult:
        return await self.apply(
            Transition(
                payment_id=payment.id,
                expected=PaymentStatus.COMPLETED,
                target=PaymentStatus.REFUNDED,
                reason=reason,
            ),
            action=AuditAction.REFUND,
            actor_id=actor_id,
        )

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
