import asyncio
from decimal import Decimal

import pytest

from application.dtos.payments import CreatePaymentRequest, GatewayOutcome, QuoteRequest, SlipVerdict
from application.services.checkout_service import CheckoutService
from application.services.fulfillment import FulfillmentService
from domain.catalog.entity import ItemKind
from domain.common.exceptions import (
    AlreadyEnrolledException,
    CouponInvalidException,
    ExternalServiceException,
    InvalidPaymentActionException,
    PaymentConflictException,
    PaymentNotFoundException,
    SlipRejectedException,
    WebhookSignatureException,
)
from domain.coupon.entity import DiscountKind
from domain.payment.entity import AuditAction, PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import GatewayError, SlipVerifierError


def _service(uow_factory, notifier, **ports) -> CheckoutService:
    return CheckoutService(
        uow_factory,
        notifier=notifier,
        fulfillment=FulfillmentService(uow_factory, notifier, attempts=2, backoff=0),
        **ports,
    )


def _order(item_id="c1", kind=ItemKind.COURSE, method=PaymentMethod.BANK_TRANSFER, coupon=None):
    return CreatePaymentRequest(item_kind=kind, item_id=item_id, method=method, coupon_code=coupon)


def _success(payment_id, /, amount_minor=50000, **overrides) -> GatewayOutcome:
    data = dict(
        event_id="evt_1",
        event_type="checkout.session.completed",
        provider="stub",
        outcome="succeeded",
        session_id=f"cs_{payment_id}",
        payment_id=payment_id,
        amount_minor=amount_minor,
        currency="THB",
        metadata={"user_id": "u1", "type": "course", "course_id": "c1"},
    )
    data.update(overrides)
    return GatewayOutcome(**data)


SIGNED = {"x-signature": "valid"}


@pytest.fixture
def bank(uow_factory, notifier, verifier, slip_storage):
    return _service(uow_factory, notifier, slip_verifier=verifier, slip_storage=slip_storage)


@pytest.fixture
def card(uow_factory, notifier, gateway):
    return _service(uow_factory, notifier, gateway=gateway)


# --- create payment -------------------------------------------------------------


@pytest.mark.asyncio
async def test_created_payment_keeps_the_quoted_amount(bank, store):
    store.add_coupon("SAVE15", DiscountKind.PERCENT, "15")

    quote = await bank.quote("u1", QuoteRequest(item_kind=ItemKind.BUNDLE, item_id="b1", coupon_code="save15"))
    result = await bank.create_payment("u1", _order("b1", ItemKind.BUNDLE, coupon="save15"))
    stored = await bank.get_payment("u1", result.payment.id)

    assert quote.final_price == Decimal("765.00")
    assert result.payment.status == PaymentStatus.PENDING
    assert result.payment.amount == quote.final_price == stored.amount
    assert stored.bundle_id == "b1" and stored.course_id is None
    assert stored.coupon_id == quote.coupon_id


@pytest.mark.asyncio
async def test_coupon_redemption_is_recorded_with_the_payment(bank, store):
    coupon = store.add_coupon("TEN", DiscountKind.FIXED, "10")

    result = await bank.create_payment("u1", _order(coupon="TEN"))

    assert store.coupons[coupon.id].redeemed_count == 1
    [usage] = store.redemptions
    assert usage.payment_id == result.payment.id
    assert usage.discount_amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_last_coupon_slot_goes_to_exactly_one_checkout(bank, store):
    coupon = store.add_coupon("LAST", DiscountKind.PERCENT, "20", max_redemptions=1)

    results = await asyncio.gather(
        bank.create_payment("u1", _order(coupon="LAST")),
        bank.create_payment("u2", _order(coupon="LAST")),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], CouponInvalidException)
    assert store.coupons[coupon.id].redeemed_count == 1
    assert len(store.payments) == 1
    assert len(store.redemptions) == 1


@pytest.mark.asyncio
async def test_exhausted_coupon_reads_as_invalid(bank, store):
    store.add_coupon("GONE", DiscountKind.PERCENT, "20", max_redemptions=1, redeemed_count=1)

    with pytest.raises(CouponInvalidException):
        await bank.create_payment("u1", _order(coupon="GONE"))

    assert store.payments == {}


@pytest.mark.asyncio
async def test_free_checkout_enrolls_without_a_payment(bank, store, notifier):
    coupon = store.add_coupon("ALLFREE", DiscountKind.PERCENT, "100")

    result = await bank.create_payment("u1", _order("b1", ItemKind.BUNDLE, coupon="ALLFREE"))

    assert result.free
    assert result.payment is None
    assert result.enrollment.newly_granted == ["c1", "c2"]
    assert store.payments == {}
    assert store.enrolled("u1") == {"c1", "c2"}
    assert store.coupons[coupon.id].redeemed_count == 1
    assert store.redemptions[0].payment_id is None
    assert notifier.names == ["enrollment.granted"]


@pytest.mark.asyncio
async def test_buying_an_owned_course_is_rejected(bank, store):
    store.add_coupon("ALLFREE", DiscountKind.PERCENT, "100")
    await bank.create_payment("u1", _order(coupon="ALLFREE"))

    with pytest.raises(AlreadyEnrolledException):
        await bank.create_payment("u1", _order())


@pytest.mark.asyncio
async def test_unavailable_method_creates_nothing(bank, store):
    with pytest.raises(InvalidPaymentActionException):
        await bank.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))

    assert store.payments == {}


@pytest.mark.asyncio
async def test_get_payment_hides_other_users_payments(bank):
    result = await bank.create_payment("u1", _order())

    with pytest.raises(PaymentNotFoundException):
        await bank.get_payment("u2", result.payment.id)


# --- card gateway ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_card_checkout_stores_the_session_id(card, gateway, store):
    result = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))

    payment = store.payments[result.payment.id]
    assert payment.status == PaymentStatus.PENDING
    assert payment.external_ref == f"cs_{payment.id}"
    assert result.redirect_url == f"https://pay.example/{payment.id}"
    [session] = gateway.sessions
    assert session.amount == Decimal("500.00")
    assert session.item_kind == ItemKind.COURSE


@pytest.mark.asyncio
async def test_gateway_session_failure_moves_payment_to_failed(card, gateway, store):
    gateway.session_error = GatewayError("Stripe request timed out")

    with pytest.raises(ExternalServiceException):
        await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))

    [payment] = store.payments.values()
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway_session_failed"
    assert store.audit[0].action == AuditAction.AUTO_FAILED


@pytest.mark.asyncio
async def test_webhook_success_completes_and_enrolls(card, gateway, store, notifier):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id)

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    payment = store.payments[created.payment.id]
    assert ack.applied and ack.payment_id == payment.id
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.fulfilled_at is not None
    assert store.enrolled("u1") == {"c1"}
    assert notifier.names == ["payment.completed", "enrollment.granted"]


@pytest.mark.asyncio
async def test_replayed_webhook_is_a_quiet_no_op(card, gateway, store, notifier):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id)

    await card.handle_gateway_webhook(SIGNED, b"{}")
    replay = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert replay.received and not replay.applied
    assert replay.outcome == "succeeded"
    assert len(store.enrollments) == 1
    assert notifier.names.count("payment.completed") == 1


@pytest.mark.asyncio
async def test_webhook_finds_payment_by_session_id(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id, payment_id=None)

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert ack.applied
    assert store.payments[created.payment.id].status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_unauthenticated_webhook_changes_nothing(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id)

    with pytest.raises(WebhookSignatureException):
        await card.handle_gateway_webhook({"x-signature": "forged"}, b"{}")

    assert store.payments[created.payment.id].status == PaymentStatus.PENDING
    assert store.enrollments == {}


@pytest.mark.asyncio
async def test_failed_gateway_event_fails_pending_payment(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(
        created.payment.id, outcome="failed", event_type="checkout.session.expired"
    )

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    payment = store.payments[created.payment.id]
    assert ack.applied
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway:checkout.session.expired"


@pytest.mark.asyncio
async def test_amount_mismatch_fails_instead_of_completing(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id, amount_minor=100)

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    payment = store.payments[created.payment.id]
    assert ack.outcome == "rejected"
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway_mismatch:amount"
    assert store.enrollments == {}


@pytest.mark.asyncio
async def test_success_from_another_session_fails_instead_of_completing(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id, session_id="cs_someone_else")

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    payment = store.payments[created.payment.id]
    assert ack.outcome == "rejected"
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway_mismatch:session_id"
    assert payment.external_ref == f"cs_{created.payment.id}"
    assert store.enrollments == {}


@pytest.mark.asyncio
async def test_expiry_from_another_session_is_ignored(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(
        created.payment.id,
        outcome="failed",
        event_type="checkout.session.expired",
        session_id="cs_someone_else",
    )

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert not ack.applied
    assert store.payments[created.payment.id].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_one_satang_short_is_an_amount_mismatch(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id, amount_minor=49999)

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert ack.outcome == "rejected"
    assert store.payments[created.payment.id].failure_reason == "gateway_mismatch:amount"


@pytest.mark.asyncio
async def test_completion_keeps_the_stored_session_id(card, gateway, store):
    created = await card.create_payment("u1", _order(method=PaymentMethod.CARD_GATEWAY))
    gateway.outcome = _success(created.payment.id)

    await card.handle_gateway_webhook(SIGNED, b"{}")

    payment = store.payments[created.payment.id]
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.external_ref == f"cs_{created.payment.id}"


@pytest.mark.asyncio
async def test_late_success_does_not_resurrect_a_failed_payment(card, gateway, store):
    payment = store.add_payment(status=PaymentStatus.FAILED, method=PaymentMethod.CARD_GATEWAY)
    gateway.outcome = _success(payment.id)

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert not ack.applied
    assert store.payments[payment.id].status == PaymentStatus.FAILED
    assert store.enrollments == {}


@pytest.mark.asyncio
async def test_webhook_for_unknown_payment_is_acknowledged(card, gateway, store):
    gateway.outcome = _success("missing", session_id="cs_missing")

    ack = await card.handle_gateway_webhook(SIGNED, b"{}")

    assert ack.received and ack.payment_id is None and not ack.applied


# --- bank transfer slip ---------------------------------------------------------


@pytest.mark.asyncio
async def test_matching_slip_completes_and_enrolls(bank, verifier, slip_storage, store):
    created = await bank.create_payment("u1", _order("b1", ItemKind.BUNDLE))

    result = await bank.attach_slip("u1", created.payment.id, b"jpeg-bytes", content_type="image/jpeg")

    assert result.matched
    assert result.payment.status == PaymentStatus.COMPLETED
    assert result.payment.external_ref == slip_storage.saved[0]
    assert result.enrollment.newly_granted == ["c1", "c2"]
    [call] = verifier.calls
    assert call.expected_amount == Decimal("900.00")
    assert call.currency == "THB"


@pytest.mark.asyncio
async def test_amount_mismatch_verdict_fails_the_payment(bank, verifier, store):
    verifier.verdict = SlipVerdict(matched=False, extracted_amount=Decimal("499.99"), reason="amount_mismatch")
    created = await bank.create_payment("u1", _order())

    result = await bank.attach_slip("u1", created.payment.id, b"jpeg", content_type="image/jpeg")

    assert not result.matched
    assert result.payment.status == PaymentStatus.FAILED
    assert result.payment.failure_reason == "amount_mismatch"
    assert store.enrollments == {}
    [entry] = store.audit
    assert entry.action == AuditAction.AUTO_FAILED
    assert entry.details["extracted_amount"] == "499.99"


@pytest.mark.asyncio
async def test_verifier_outage_fails_the_payment_and_surfaces(bank, verifier, store):
    verifier.error = SlipVerifierError("SlipOK request timed out")
    created = await bank.create_payment("u1", _order())

    with pytest.raises(ExternalServiceException):
        await bank.attach_slip("u1", created.payment.id, b"jpeg", content_type="image/jpeg")

    payment = store.payments[created.payment.id]
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "verifier_error"
    assert len(verifier.calls) == 1


@pytest.mark.asyncio
async def test_unexpected_verifier_crash_still_fails_the_payment(bank, verifier, store):
    verifier.error = ValueError("unexpected payload")
    created = await bank.create_payment("u1", _order())

    with pytest.raises(ExternalServiceException) as exc:
        await bank.attach_slip("u1", created.payment.id, b"jpeg", content_type="image/jpeg")

    assert isinstance(exc.value.__cause__, ValueError)
    payment = store.payments[created.payment.id]
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "verifier_error"


@pytest.mark.asyncio
async def test_slip_for_someone_elses_payment_is_not_found(bank, store):
    created = await bank.create_payment("u1", _order())

    with pytest.raises(PaymentNotFoundException):
        await bank.attach_slip("u2", created.payment.id, b"jpeg", content_type="image/jpeg")

    assert store.payments[created.payment.id].status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("data,content_type", [
    (b"", "image/jpeg"),
    (b"%PDF-1.4", "application/pdf"),
    (b"jpeg", None),
])
async def test_unusable_slip_is_rejected_before_any_transition(bank, verifier, store, data, content_type):
    created = await bank.create_payment("u1", _order())

    with pytest.raises(SlipRejectedException):
        await bank.attach_slip("u1", created.payment.id, data, content_type=content_type)

    assert store.payments[created.payment.id].status == PaymentStatus.PENDING
    assert verifier.calls == []


@pytest.mark.asyncio
async def test_second_slip_while_verifying_is_a_conflict(bank, store):
    payment = store.add_payment(status=PaymentStatus.VERIFYING)

    with pytest.raises(PaymentConflictException):
        await bank.attach_slip("u1", payment.id, b"jpeg", content_type="image/jpeg")


@pytest.mark.asyncio
async def test_slip_on_card_payment_is_refused(bank, store):
    payment = store.add_payment(method=PaymentMethod.CARD_GATEWAY)

    with pytest.raises(InvalidPaymentActionException):
        await bank.attach_slip("u1", payment.id, b"jpeg", content_type="image/jpeg")


@pytest.mark.asyncio
async def test_broken_notifier_does_not_break_checkout(bank, notifier, store):
    notifier.fail = True
    created = await bank.create_payment("u1", _order())

    result = await bank.attach_slip("u1", created.payment.id, b"jpeg", content_type="image/jpeg")

    assert result.payment.status == PaymentStatus.COMPLETED
    assert store.enrolled("u1") == {"c1"}
