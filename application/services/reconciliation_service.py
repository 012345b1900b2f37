"""
Reconciliation application service - the operator's view of stuck payments.

Every operator action re-reads the payment and applies a conditional
transition, because the payment may have resolved on its own between the
list query and the click. Batch actions commit per item.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Optional

from application.dtos.payments import (
    BulkItemOutcome,
    BulkResultDTO,
    GrantDTO,
    PaymentDTO,
    ReconciliationItemDTO,
    ReconciliationListDTO,
    ReconciliationSummaryDTO,
    RetryResultDTO,
    SweepResultDTO,
)
from application.ports.notifier import NotificationSink
from application.services.fulfillment import FulfillmentService, publish_events
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    DomainValidationException,
    InvalidPaymentActionException,
    PaymentConflictException,
    PaymentNotFoundException,
    RetryLimitReachedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    AuditAction,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ReconciliationBucket,
    TransitionResult,
)
from domain.payment.service import PaymentLedger


logger = get_logger(__name__)

_APPROVABLE = {PaymentStatus.VERIFYING, PaymentStatus.FAILED}
_REJECTABLE = {PaymentStatus.PENDING, PaymentStatus.VERIFYING, PaymentStatus.FAILED}
_SETTLED = {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}


def _status_value(result: TransitionResult) -> Optional[str]:
    return result.current_status.value if result.current_status else None


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        fulfillment: Optional[FulfillmentService] = None,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.notifier = notifier
        self.fulfillment = fulfillment or FulfillmentService(uow_factory, notifier)
        self.settings = settings or payment_settings

    @property
    def _cfg(self):
        return self.settings.reconciliation

    def clamp_days(self, days_back: Optional[int]) -> int:
        """Look-back window in days, clamped to the configured range."""
        if days_back is None:
            days_back = self._cfg.default_days_back
        return max(self._cfg.min_days_back, min(self._cfg.max_days_back, int(days_back)))

    # --- queries ------------------------------------------------------------------

    async def summary(self, days_back: Optional[int] = None) -> ReconciliationSummaryDTO:
        days = self.clamp_days(days_back)
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self._uow_factory(readonly=True) as uow:
            counts = await uow.payment_repository.count_by_bucket(since)
        return ReconciliationSummaryDTO(
            days_back=days,
            since=since,
            counts={bucket: counts.get(bucket, 0) for bucket in ReconciliationBucket},
        )

    async def list_payments(
        self,
        bucket: ReconciliationBucket,
        days_back: Optional[int] = None,
        method: Optional[PaymentMethod] = None,
    ) -> ReconciliationListDTO:
        days = self.clamp_days(days_back)
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self._uow_factory(readonly=True) as uow:
            views = await uow.payment_repository.list_for_reconciliation(
                bucket, since, self._cfg.list_limit, method
            )
            counts = await uow.payment_repository.count_by_bucket(since)
        return ReconciliationListDTO(
            bucket=bucket,
            days_back=days,
            items=[ReconciliationItemDTO.from_view(v) for v in views],
            summary=ReconciliationSummaryDTO(
                days_back=days,
                since=since,
                counts={b: counts.get(b, 0) for b in ReconciliationBucket},
            ),
        )

    async def _load(self, payment_id: str) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id)
        return payment

    # --- single payment actions ---------------------------------------------------

    async def retry(
        self,
        payment_id: str,
        action: Literal["approve", "reject"],
        actor_id: str,
        reason: Optional[str] = None,
    ) -> RetryResultDTO:
        """Operator approve or reject. Every call counts against the retry ceiling,
        including calls refused because of the payment's state or a lost race."""
        async with self._uow_factory() as uow:
            if await uow.payment_repository.get_by_id(payment_id) is None:
                raise PaymentNotFoundException(payment_id)
            counted = await uow.payment_repository.record_attempt(
                payment_id, self._cfg.max_retries, datetime.now(timezone.utc)
            )
        if not counted:
            logger.warning("reconciliation_retry_limit", payment_id=payment_id, action=action, actor_id=actor_id)
            raise RetryLimitReachedException(payment_id, self._cfg.max_retries)

        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(payment_id)
            if payment.status in _SETTLED:
                raise PaymentConflictException(payment_id, payment.status.value)
            if payment.is_rejected:
                raise InvalidPaymentActionException(
                    "Payment was rejected by an operator",
                    details={"payment_id": payment_id, "status": payment.status.value},
                )

            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            if action == "approve":
                if payment.status not in _APPROVABLE:
                    raise InvalidPaymentActionException(
                        "Only verifying or failed payments can be approved",
                        details={"payment_id": payment_id, "status": payment.status.value},
                    )
                result = await ledger.approve(payment, actor_id)
            else:
                if payment.status not in _REJECTABLE:
                    raise InvalidPaymentActionException(
                        "Payment cannot be rejected in its current state",
                        details={"payment_id": payment_id, "status": payment.status.value},
                    )
                result = await ledger.reject(payment, actor_id, reason)

            if not result.applied:
                logger.warning(
                    "reconciliation_action_conflict",
                    payment_id=payment_id,
                    action=action,
                    expected=payment.status.value,
                    current_status=_status_value(result),
                )
                raise PaymentConflictException(payment_id, _status_value(result))
            events = ledger.clear_events()

        publish_events(self.notifier, events)
        logger.info(
            "reconciliation_action_applied",
            payment_id=payment_id,
            action=action,
            actor_id=actor_id,
            from_status=payment.status.value,
            to_status=result.payment.status.value,
            retry_count=result.payment.retry_count,
        )

        grant = None
        if action == "approve":
            grant = await self.fulfillment.fulfill(payment_id)
        current = await self._load(payment_id)
        return RetryResultDTO(
            payment=PaymentDTO.from_entity(current),
            enrollment=GrantDTO(newly_granted=grant.newly_granted, already_owned=grant.already_owned) if grant else None,
        )

    async def refund(self, payment_id: str, actor_id: str, reason: Optional[str] = None) -> PaymentDTO:
        """completed -> refunded. Enrollments are left in place."""
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(payment_id)
            if payment.status != PaymentStatus.COMPLETED:
                raise InvalidPaymentActionException(
                    "Only completed payments can be refunded",
                    details={"payment_id": payment_id, "status": payment.status.value},
                )
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.refund(payment, actor_id, reason)
            if not result.applied:
                raise PaymentConflictException(payment_id, _status_value(result))
            events = ledger.clear_events()

        publish_events(self.notifier, events)
        logger.info("payment_refunded", payment_id=payment_id, actor_id=actor_id)
        return PaymentDTO.from_entity(result.payment)

    async def regrant(self, payment_id: str, actor_id: Optional[str] = None) -> RetryResultDTO:
        """Re-run enrollment granting for a completed payment; safe to repeat."""
        payment = await self._load(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidPaymentActionException(
                "Only completed payments can be fulfilled",
                details={"payment_id": payment_id, "status": payment.status.value},
            )
        grant = await self.fulfillment.fulfill(payment_id)
        logger.info(
            "payment_regranted",
            payment_id=payment_id,
            actor_id=actor_id,
            succeeded=grant is not None,
        )
        current = await self._load(payment_id)
        return RetryResultDTO(
            payment=PaymentDTO.from_entity(current),
            enrollment=GrantDTO(newly_granted=grant.newly_granted, already_owned=grant.already_owned) if grant else None,
        )

    # --- batch actions ------------------------------------------------------------

    async def _fail_one(
        self,
        payment_id: str,
        expected: PaymentStatus,
        reason: str,
        action: AuditAction,
        actor_id: Optional[str],
    ) -> TransitionResult:
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.fail(payment_id, expected, reason, action=action, actor_id=actor_id)
            events = ledger.clear_events()
        publish_events(self.notifier, events)
        return result

    async def bulk_mark_failed(
        self,
        payment_ids: list[str],
        actor_id: str,
        reason: Optional[str] = None,
    ) -> BulkResultDTO:
        """verifying -> failed for each id, committed one at a time, reported per id."""
        ids = list(dict.fromkeys(pid for pid in payment_ids if pid))
        if not ids:
            raise DomainValidationException("No payment ids given", field="payment_ids")
        if len(ids) > self._cfg.bulk_max_batch:
            raise DomainValidationException(
                f"At most {self._cfg.bulk_max_batch} payments per batch",
                field="payment_ids",
                details={"max_batch": self._cfg.bulk_max_batch, "requested": len(ids)},
            )

        results: list[BulkItemOutcome] = []
        for pid in ids:
            result = await self._fail_one(
                pid,
                PaymentStatus.VERIFYING,
                reason or "marked_failed_by_operator",
                AuditAction.BULK_MARK_FAILED,
                actor_id,
            )
            if result.not_found:
                outcome = "not_found"
            elif result.applied:
                outcome = "succeeded"
            else:
                outcome = "conflict"
            results.append(BulkItemOutcome(payment_id=pid, outcome=outcome, current_status=result.current_status))

        summary = BulkResultDTO(
            requested=len(ids),
            succeeded=sum(1 for r in results if r.outcome == "succeeded"),
            conflicts=sum(1 for r in results if r.outcome == "conflict"),
            not_found=sum(1 for r in results if r.outcome == "not_found"),
            results=results,
        )
        logger.info(
            "bulk_mark_failed",
            actor_id=actor_id,
            requested=summary.requested,
            succeeded=summary.succeeded,
            conflicts=summary.conflicts,
            not_found=summary.not_found,
        )
        return summary

    async def expire_stale(
        self,
        actor_id: Optional[str] = None,
        older_than_hours: Optional[int] = None,
    ) -> SweepResultDTO:
        """pending payments older than the staleness window -> failed, one bounded batch per call."""
        hours = older_than_hours or self._cfg.stale_after_hours
        if hours < 1:
            raise DomainValidationException("Staleness window must be at least 1 hour", field="older_than_hours")
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_repository.list_stale_pending(cutoff, self._cfg.expire_batch_size)

        applied: list[str] = []
        for payment in stale:
            result = await self._fail_one(
                payment.id,
                PaymentStatus.PENDING,
                "expired",
                AuditAction.EXPIRE,
                actor_id,
            )
            if result.applied:
                applied.append(payment.id)

        logger.info(
            "stale_payments_expired",
            actor_id=actor_id,
            older_than_hours=hours,
            scanned=len(stale),
            expired=len(applied),
        )
        return SweepResultDTO(
            scanned=len(stale),
            applied=len(applied),
            skipped=len(stale) - len(applied),
            payment_ids=applied,
        )

    async def regrant_unfulfilled(self, limit: Optional[int] = None) -> SweepResultDTO:
        """Complete the grant step for completed payments that never got it."""
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.payment_repository.list_unfulfilled(limit or self._cfg.expire_batch_size)

        done: list[str] = []
        for payment in pending:
            if await self.fulfillment.fulfill(payment.id) is not None:
                done.append(payment.id)

        logger.info("unfulfilled_regranted", scanned=len(pending), fulfilled=len(done))
        return SweepResultDTO(
            scanned=len(pending),
            applied=len(done),
            skipped=len(pending) - len(done),
            payment_ids=done,
        )
