import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from application.services.fulfillment import FulfillmentService
from application.services.reconciliation_service import ReconciliationService
from domain.common.exceptions import (
    DomainValidationException,
    InvalidPaymentActionException,
    PaymentConflictException,
    PaymentNotFoundException,
    RetryLimitReachedException,
)
from domain.payment.entity import (
    AuditAction,
    PaymentMethod,
    PaymentStatus,
    ReconciliationBucket,
    Resolution,
)


@pytest.fixture
def recon(uow_factory, notifier):
    return ReconciliationService(
        uow_factory,
        notifier=notifier,
        fulfillment=FulfillmentService(uow_factory, notifier, attempts=2, backoff=0),
    )


@pytest.mark.asyncio
async def test_approve_completes_counts_retry_and_enrolls(recon, store, notifier):
    payment = store.add_payment(status=PaymentStatus.VERIFYING, course_id=None, bundle_id="b1")

    result = await recon.retry(payment.id, "approve", "admin1")

    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.resolution == Resolution.APPROVED
    assert result.payment.retry_count == 1
    assert result.payment.last_retry_at is not None
    assert result.payment.fulfilled_at is not None
    assert result.enrollment.newly_granted == ["c1", "c2"]
    assert store.enrolled("u1") == {"c1", "c2"}
    [entry] = store.audit
    assert (entry.action, entry.actor_id) == (AuditAction.APPROVE, "admin1")
    assert (entry.from_status, entry.to_status) == (PaymentStatus.VERIFYING, PaymentStatus.COMPLETED)
    assert notifier.names == ["payment.completed", "enrollment.granted"]


@pytest.mark.asyncio
async def test_failed_payment_can_be_approved(recon, store):
    payment = store.add_payment(status=PaymentStatus.FAILED, failure_reason="amount_mismatch")

    result = await recon.retry(payment.id, "approve", "admin1")

    assert result.payment.status == PaymentStatus.COMPLETED
    assert store.enrolled("u1") == {"c1"}


@pytest.mark.asyncio
async def test_reject_then_approve_is_refused(recon, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)

    rejected = await recon.retry(payment.id, "reject", "admin1", reason="slip is edited")
    with pytest.raises(InvalidPaymentActionException):
        await recon.retry(payment.id, "approve", "admin2")

    assert rejected.payment.status == PaymentStatus.FAILED
    assert rejected.payment.resolution == Resolution.REJECTED
    assert rejected.enrollment is None
    assert store.payments[payment.id].status == PaymentStatus.FAILED
    assert store.enrollments == {}
    assert [e.action for e in store.audit] == [AuditAction.REJECT]


@pytest.mark.asyncio
async def test_pending_payment_cannot_be_approved(recon, store):
    payment = store.add_payment(status=PaymentStatus.PENDING)

    with pytest.raises(InvalidPaymentActionException):
        await recon.retry(payment.id, "approve", "admin1")


@pytest.mark.asyncio
async def test_refused_attempts_count_toward_the_retry_ceiling(recon, store):
    payment = store.add_payment(status=PaymentStatus.PENDING)

    for _ in range(5):
        with pytest.raises(InvalidPaymentActionException):
            await recon.retry(payment.id, "approve", "admin1")
    with pytest.raises(RetryLimitReachedException):
        await recon.retry(payment.id, "reject", "admin1")

    stored = store.payments[payment.id]
    assert stored.status == PaymentStatus.PENDING
    assert stored.retry_count == 5
    assert stored.last_retry_at is not None
    assert store.audit == []


@pytest.mark.asyncio
async def test_action_on_settled_payment_is_a_conflict(recon, store):
    payment = store.add_payment(status=PaymentStatus.COMPLETED)

    with pytest.raises(PaymentConflictException) as exc:
        await recon.retry(payment.id, "reject", "admin1")

    assert exc.value.details["current_status"] == "completed"


@pytest.mark.asyncio
async def test_two_operators_approving_at_once_one_gets_conflict(recon, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)

    results = await asyncio.gather(
        recon.retry(payment.id, "approve", "admin1"),
        recon.retry(payment.id, "approve", "admin2"),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, PaymentConflictException)]
    assert len(conflicts) == 1
    assert store.payments[payment.id].retry_count == 2
    assert len(store.enrollments) == 1


@pytest.mark.asyncio
async def test_retry_on_unknown_payment(recon):
    with pytest.raises(PaymentNotFoundException):
        await recon.retry("missing", "approve", "admin1")


@pytest.mark.asyncio
async def test_bulk_mark_failed_reports_each_payment(recon, store):
    first = store.add_payment(status=PaymentStatus.VERIFYING)
    second = store.add_payment(status=PaymentStatus.VERIFYING, user_id="u2")
    third = store.add_payment(status=PaymentStatus.VERIFYING, user_id="u3")
    # the gateway callback lands between the list query and the click
    await recon.retry(second.id, "approve", "admin1")

    result = await recon.bulk_mark_failed([first.id, second.id, third.id], "admin2", reason="no slip")

    assert (result.requested, result.succeeded, result.conflicts, result.not_found) == (3, 2, 1, 0)
    outcomes = {r.payment_id: r for r in result.results}
    assert outcomes[second.id].outcome == "conflict"
    assert outcomes[second.id].current_status == PaymentStatus.COMPLETED
    assert store.payments[first.id].status == PaymentStatus.FAILED
    assert store.payments[third.id].status == PaymentStatus.FAILED
    assert store.payments[second.id].status == PaymentStatus.COMPLETED
    assert store.enrolled("u2") == {"c1"}
    bulk_entries = [e for e in store.audit if e.action == AuditAction.BULK_MARK_FAILED]
    assert {e.payment_id for e in bulk_entries} == {first.id, third.id}
    assert all(e.actor_id == "admin2" for e in bulk_entries)


@pytest.mark.asyncio
async def test_bulk_mark_failed_flags_unknown_and_deduplicates(recon, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)

    result = await recon.bulk_mark_failed([payment.id, "missing", payment.id], "admin1")

    assert result.requested == 2
    assert [r.outcome for r in result.results] == ["succeeded", "not_found"]


@pytest.mark.asyncio
async def test_bulk_batch_is_capped(recon):
    with pytest.raises(DomainValidationException):
        await recon.bulk_mark_failed([f"p{i}" for i in range(51)], "admin1")
    with pytest.raises(DomainValidationException):
        await recon.bulk_mark_failed([], "admin1")


@pytest.mark.asyncio
async def test_expire_stale_fails_only_old_pending_payments(recon, store):
    old = store.add_payment(age=timedelta(hours=30))
    fresh = store.add_payment(age=timedelta(hours=2))
    old_verifying = store.add_payment(status=PaymentStatus.VERIFYING, age=timedelta(hours=30))

    result = await recon.expire_stale(actor_id="admin1")

    assert result.payment_ids == [old.id]
    assert store.payments[old.id].status == PaymentStatus.FAILED
    assert store.payments[old.id].failure_reason == "expired"
    assert store.payments[fresh.id].status == PaymentStatus.PENDING
    assert store.payments[old_verifying.id].status == PaymentStatus.VERIFYING
    [entry] = store.audit
    assert entry.action == AuditAction.EXPIRE


@pytest.mark.asyncio
async def test_summary_counts_buckets_inside_the_window(recon, store):
    store.add_payment(status=PaymentStatus.PENDING)
    store.add_payment(status=PaymentStatus.VERIFYING)
    store.add_payment(status=PaymentStatus.VERIFYING)
    store.add_payment(status=PaymentStatus.FAILED)
    store.add_payment(status=PaymentStatus.FAILED, age=timedelta(days=40))
    store.add_payment(status=PaymentStatus.COMPLETED, completed_at=datetime.now(timezone.utc))

    summary = await recon.summary()

    assert summary.days_back == 30
    assert summary.counts == {
        ReconciliationBucket.PENDING: 1,
        ReconciliationBucket.VERIFYING: 2,
        ReconciliationBucket.FAILED: 1,
        ReconciliationBucket.UNFULFILLED: 1,
    }


@pytest.mark.parametrize("requested,expected", [(None, 30), (1, 7), (365, 90), (14, 14)])
def test_days_back_is_clamped(recon, requested, expected):
    assert recon.clamp_days(requested) == expected


@pytest.mark.asyncio
async def test_list_includes_display_names_and_filters_method(recon, store):
    bank = store.add_payment(status=PaymentStatus.VERIFYING)
    store.add_payment(status=PaymentStatus.VERIFYING, method=PaymentMethod.CARD_GATEWAY, course_id=None, bundle_id="b1")

    listing = await recon.list_payments(
        ReconciliationBucket.VERIFYING, days_back=3, method=PaymentMethod.BANK_TRANSFER
    )

    assert listing.days_back == 7
    [item] = listing.items
    assert item.id == bank.id
    assert item.user_name == "Somchai"
    assert item.user_email == "somchai@example.com"
    assert item.course_title == "Python Basics"
    assert listing.summary.counts[ReconciliationBucket.VERIFYING] == 2


@pytest.mark.asyncio
async def test_refund_keeps_enrollments(recon, store, notifier):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)
    await recon.retry(payment.id, "approve", "admin1")

    refunded = await recon.refund(payment.id, "admin1", reason="duplicate purchase")

    assert refunded.status == PaymentStatus.REFUNDED
    assert store.enrolled("u1") == {"c1"}
    assert store.audit[-1].action == AuditAction.REFUND
    assert notifier.names[-1] == "payment.refunded"
    with pytest.raises(InvalidPaymentActionException):
        await recon.refund(payment.id, "admin1")


@pytest.mark.asyncio
async def test_unfulfilled_payment_is_regranted_later(recon, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING, course_id=None, bundle_id="b1")
    store.failing_courses.add("c2")

    approved = await recon.retry(payment.id, "approve", "admin1")

    assert approved.payment.status == PaymentStatus.COMPLETED
    assert approved.enrollment is None
    assert store.enrollments == {}
    assert (await recon.summary()).counts[ReconciliationBucket.UNFULFILLED] == 1

    store.failing_courses.clear()
    sweep = await recon.regrant_unfulfilled()

    assert sweep.payment_ids == [payment.id]
    assert store.enrolled("u1") == {"c1", "c2"}
    assert store.payments[payment.id].fulfilled_at is not None
    assert (await recon.summary()).counts[ReconciliationBucket.UNFULFILLED] == 0


@pytest.mark.asyncio
async def test_regrant_requires_completed_payment(recon, store):
    payment = store.add_payment(status=PaymentStatus.FAILED)

    with pytest.raises(InvalidPaymentActionException):
        await recon.regrant(payment.id, "admin1")
