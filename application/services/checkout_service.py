"""
Checkout application service - quote, create payment, attach slip, gateway callbacks.

Gateway and slip verifier implementations are injected from the composition
root (API/tasks); this module depends only on the application ports.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.payments import (
    CheckoutResultDTO,
    CheckoutSessionRequest,
    CreatePaymentRequest,
    GatewayOutcome,
    GrantDTO,
    PaymentDTO,
    QuoteDTO,
    QuoteRequest,
    SlipResultDTO,
    SlipVerificationRequest,
    WebhookAckDTO,
)
from application.ports.notifier import NotificationSink
from application.ports.payment_gateway import PaymentGateway
from application.ports.slip_storage import SlipStorage
from application.ports.slip_verifier import SlipVerifier
from application.services.fulfillment import FulfillmentService, publish_events
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.catalog.entity import ItemKind, ItemRef
from domain.common.exceptions import (
    ExternalServiceException,
    InvalidPaymentActionException,
    PaymentConflictException,
    PaymentNotFoundException,
    SlipRejectedException,
)
from domain.common.money import to_minor_units
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.coupon.service import CouponLedger
from domain.enrollment.service import EnrollmentGranter
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.service import PaymentLedger
from domain.pricing.service import PriceQuote, PriceResolver


logger = get_logger(__name__)


class CheckoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        gateway: Optional[PaymentGateway] = None,
        slip_verifier: Optional[SlipVerifier] = None,
        slip_storage: Optional[SlipStorage] = None,
        notifier: Optional[NotificationSink] = None,
        fulfillment: Optional[FulfillmentService] = None,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.slip_verifier = slip_verifier
        self.slip_storage = slip_storage
        self.notifier = notifier
        self.fulfillment = fulfillment or FulfillmentService(uow_factory, notifier)
        self.settings = settings or payment_settings

    # --- quote --------------------------------------------------------------------

    async def quote(self, user_id: str, req: QuoteRequest) -> QuoteDTO:
        async with self._uow_factory(readonly=True) as uow:
            resolver = PriceResolver(uow.catalog_repository, CouponLedger(uow.coupon_repository))
            quote = await resolver.resolve(
                ItemRef(kind=req.item_kind, id=req.item_id), req.coupon_code, user_id=user_id
            )
        return QuoteDTO.from_quote(quote)

    # --- create payment -----------------------------------------------------------

    def _ensure_method_available(self, method: PaymentMethod) -> None:
        if method == PaymentMethod.CARD_GATEWAY and self.gateway is None:
            raise InvalidPaymentActionException(
                "Card payments are not available", details={"method": method.value}
            )
        if method == PaymentMethod.BANK_TRANSFER and (self.slip_verifier is None or self.slip_storage is None):
            raise InvalidPaymentActionException(
                "Bank transfer payments are not available", details={"method": method.value}
            )

    async def create_payment(self, user_id: str, req: CreatePaymentRequest) -> CheckoutResultDTO:
        """Resolve the price, then either enroll directly (free) or open a pending payment.

        Coupon redemption and payment creation commit together; a checkout that
        loses the race for the last coupon slot creates nothing.
        """
        ref = ItemRef(kind=req.item_kind, id=req.item_id)

        async with self._uow_factory() as uow:
            coupons = CouponLedger(uow.coupon_repository)
            resolver = PriceResolver(uow.catalog_repository, coupons)
            granter = EnrollmentGranter(uow.enrollment_repository, uow.catalog_repository)

            quote = await resolver.resolve(ref, req.coupon_code, user_id=user_id)
            await granter.ensure_not_owned(user_id, quote.item)

            if quote.is_free:
                if quote.coupon_id:
                    await coupons.redeem(quote.coupon_id, user_id, discount_amount=quote.coupon_discount)
                grant = await granter.grant_courses(user_id, quote.item.course_ids)
                events = granter.clear_events()
                payment = None
            else:
                self._ensure_method_available(req.method)
                ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
                payment = await ledger.open(
                    user_id=user_id,
                    course_id=ref.id if ref.kind == ItemKind.COURSE else None,
                    bundle_id=ref.id if ref.kind == ItemKind.BUNDLE else None,
                    amount=quote.final_price,
                    currency=quote.currency,
                    method=req.method,
                    coupon_id=quote.coupon_id,
                    item_title=quote.item.title,
                    metadata=self._quote_metadata(quote),
                )
                if quote.coupon_id:
                    await coupons.redeem(
                        quote.coupon_id, user_id, payment.id, discount_amount=quote.coupon_discount
                    )
                events = []
                grant = None

        quote_dto = QuoteDTO.from_quote(quote)
        if payment is None:
            publish_events(self.notifier, events)
            logger.info(
                "free_enrollment_granted",
                user_id=user_id,
                item_kind=ref.kind.value,
                item_id=ref.id,
                coupon_id=quote.coupon_id,
                newly_granted=grant.newly_granted,
            )
            return CheckoutResultDTO(
                free=True,
                quote=quote_dto,
                enrollment=GrantDTO(newly_granted=grant.newly_granted, already_owned=grant.already_owned),
            )

        logger.info(
            "payment_created",
            payment_id=payment.id,
            user_id=user_id,
            method=payment.method.value,
            amount=str(payment.amount),
            currency=payment.currency,
            coupon_id=payment.coupon_id,
        )

        redirect_url = None
        if payment.method == PaymentMethod.CARD_GATEWAY:
            payment, redirect_url = await self._open_gateway_session(payment, quote)

        return CheckoutResultDTO(
            free=False,
            payment=PaymentDTO.from_entity(payment),
            redirect_url=redirect_url,
            quote=quote_dto,
        )

    @staticmethod
    def _quote_metadata(quote: PriceQuote) -> dict:
        return {
            "original_price": str(quote.original_price),
            "discount_amount": str(quote.discount_amount),
            "coupon_code": quote.coupon_code,
        }

    async def _open_gateway_session(self, payment: Payment, quote: PriceQuote) -> tuple[Payment, str]:
        request = CheckoutSessionRequest(
            payment_id=payment.id,
            user_id=payment.user_id,
            amount=payment.amount,
            currency=payment.currency,
            item_kind=quote.item.kind,
            item_id=quote.item.ref.id,
            item_title=quote.item.title,
            item_slug=quote.item.slug,
            coupon_id=payment.coupon_id,
        )
        try:
            session = await self.gateway.create_checkout_session(request)
        except ExternalServiceException as exc:
            logger.error(
                "gateway_session_failed",
                payment_id=payment.id,
                service=exc.service,
                error=exc.message,
                details=exc.details,
            )
            await self._fail(payment.id, PaymentStatus.PENDING, "gateway_session_failed", {"error": exc.message})
            raise

        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.attach_session(payment.id, session.session_id)
        if not result.applied:
            logger.warning(
                "gateway_session_attach_conflict",
                payment_id=payment.id,
                current_status=result.current_status.value if result.current_status else None,
            )
            raise PaymentConflictException(
                payment.id, result.current_status.value if result.current_status else None
            )
        logger.info("gateway_session_created", payment_id=payment.id, session_id=session.session_id)
        return result.payment, session.redirect_url

    async def _fail(
        self,
        payment_id: str,
        expected: PaymentStatus,
        reason: str,
        details: Optional[dict] = None,
    ):
        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.fail(payment_id, expected, reason, details=details)
            events = ledger.clear_events()
        publish_events(self.notifier, events)
        if result.applied:
            logger.info("payment_failed", payment_id=payment_id, reason=reason)
        else:
            logger.warning(
                "payment_fail_conflict",
                payment_id=payment_id,
                expected=expected.value,
                current_status=result.current_status.value if result.current_status else None,
            )
        return result

    # --- read ---------------------------------------------------------------------

    async def get_payment(self, user_id: str, payment_id: str) -> PaymentDTO:
        """Owner-only read; other users' payments look like they do not exist."""
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFoundException(payment_id)
        return PaymentDTO.from_entity(payment)

    # --- bank transfer slip -------------------------------------------------------

    def _validate_slip(self, data: bytes, content_type: Optional[str]) -> str:
        slip_cfg = self.settings.slip
        if not data:
            raise SlipRejectedException("empty")
        if len(data) > slip_cfg.max_bytes:
            raise SlipRejectedException("too_large")
        ctype = (content_type or "").split(";")[0].strip().lower()
        if ctype not in slip_cfg.allowed_types:
            raise SlipRejectedException("unsupported_type")
        return ctype

    async def attach_slip(
        self,
        user_id: str,
        payment_id: str,
        data: bytes,
        *,
        content_type: Optional[str],
        filename: Optional[str] = None,
    ) -> SlipResultDTO:
        """pending -> verifying, then a single verifier call decides completed or failed."""
        ctype = self._validate_slip(data, content_type)
        if self.slip_verifier is None or self.slip_storage is None:
            raise InvalidPaymentActionException("Bank transfer payments are not available")

        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFoundException(payment_id)
        if payment.method != PaymentMethod.BANK_TRANSFER:
            raise InvalidPaymentActionException(
                "Slips can only be attached to bank transfer payments",
                details={"payment_id": payment_id, "method": payment.method.value},
            )
        if payment.status != PaymentStatus.PENDING:
            raise PaymentConflictException(payment_id, payment.status.value)

        stored = await self.slip_storage.save(
            payment.id, data, content_type=ctype, filename=filename or "slip"
        )

        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.begin_verification(payment.id, stored.reference)
        if not result.applied:
            raise PaymentConflictException(
                payment_id, result.current_status.value if result.current_status else None
            )
        logger.info("slip_attached", payment_id=payment_id, reference=stored.reference, size=stored.size)

        try:
            verdict = await self.slip_verifier.verify(SlipVerificationRequest(
                payment_id=payment.id,
                image=data,
                filename=filename or "slip",
                content_type=ctype,
                expected_amount=payment.amount,
                currency=payment.currency,
            ))
        except ExternalServiceException as exc:
            logger.error(
                "slip_verification_error",
                payment_id=payment_id,
                service=exc.service,
                error=exc.message,
                details=exc.details,
            )
            await self._fail(payment.id, PaymentStatus.VERIFYING, "verifier_error", {"error": exc.message})
            raise
        except Exception as exc:
            # a verifier bug must not leave the payment parked in verifying
            logger.exception("slip_verification_crashed", payment_id=payment_id, error_type=type(exc).__name__)
            await self._fail(
                payment.id, PaymentStatus.VERIFYING, "verifier_error", {"error": type(exc).__name__}
            )
            raise ExternalServiceException(
                "Slip verification failed", service="slip_verifier"
            ) from exc

        logger.info(
            "slip_verdict",
            payment_id=payment_id,
            matched=verdict.matched,
            extracted_amount=str(verdict.extracted_amount) if verdict.extracted_amount is not None else None,
            reason=verdict.reason,
            reference=verdict.raw_reference,
        )

        if not verdict.matched:
            fail_result = await self._fail(
                payment.id,
                PaymentStatus.VERIFYING,
                verdict.reason or "slip_not_matched",
                {
                    "extracted_amount": str(verdict.extracted_amount) if verdict.extracted_amount is not None else None,
                    "reference": verdict.raw_reference,
                },
            )
            return SlipResultDTO(payment=PaymentDTO.from_entity(fail_result.payment or payment), matched=False)

        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            result = await ledger.complete(payment.id, PaymentStatus.VERIFYING)
            events = ledger.clear_events()
        publish_events(self.notifier, events)

        if not result.applied:
            # an operator resolved it while the verifier was running
            logger.warning(
                "slip_complete_conflict",
                payment_id=payment_id,
                current_status=result.current_status.value if result.current_status else None,
            )
            return SlipResultDTO(payment=PaymentDTO.from_entity(result.payment or payment), matched=True)

        logger.info("payment_completed", payment_id=payment_id, method=payment.method.value)
        grant = await self.fulfillment.fulfill(payment.id)
        current = await self._reload(payment.id)
        return SlipResultDTO(
            payment=PaymentDTO.from_entity(current),
            matched=True,
            enrollment=GrantDTO(newly_granted=grant.newly_granted, already_owned=grant.already_owned) if grant else None,
        )

    async def _reload(self, payment_id: str) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id)
        return payment

    # --- gateway callback ---------------------------------------------------------

    def _cross_check(self, payment: Payment, outcome: GatewayOutcome) -> Optional[str]:
        """Name of the first field where the callback disagrees with the stored payment."""
        meta = outcome.metadata
        if meta.get("user_id") and meta["user_id"] != payment.user_id:
            return "user_id"
        kind = meta.get("type")
        if kind and kind != payment.item_ref.kind.value:
            return "type"
        if meta.get("course_id") and meta["course_id"] != payment.course_id:
            return "course_id"
        if meta.get("bundle_id") and meta["bundle_id"] != payment.bundle_id:
            return "bundle_id"
        if payment.external_ref and outcome.session_id and outcome.session_id != payment.external_ref:
            return "session_id"
        if outcome.amount_minor is not None and outcome.amount_minor != to_minor_units(payment.amount, payment.currency):
            return "amount"
        if outcome.currency and outcome.currency.upper() != payment.currency.upper():
            return "currency"
        return None

    async def handle_gateway_webhook(self, headers: dict[str, str], body: bytes) -> WebhookAckDTO:
        """Authenticate, then apply at most one transition. Replays are acknowledged as no-ops."""
        if self.gateway is None:
            raise InvalidPaymentActionException("Card payments are not available")
        outcome = self.gateway.verify_webhook(headers, body)
        ack = WebhookAckDTO(event_id=outcome.event_id, outcome=outcome.outcome)
        if outcome.outcome == "ignored":
            logger.info("webhook_ignored", event_id=outcome.event_id, event_type=outcome.event_type)
            return ack

        async with self._uow_factory(readonly=True) as uow:
            payment = None
            if outcome.payment_id:
                payment = await uow.payment_repository.get_by_id(outcome.payment_id)
            if payment is None and outcome.session_id:
                payment = await uow.payment_repository.get_by_external_ref(outcome.session_id)
        if payment is None:
            logger.warning(
                "webhook_payment_not_found",
                event_id=outcome.event_id,
                payment_id=outcome.payment_id,
                session_id=outcome.session_id,
            )
            return ack
        ack.payment_id = payment.id

        if outcome.outcome == "failed":
            if payment.external_ref and outcome.session_id and outcome.session_id != payment.external_ref:
                logger.warning(
                    "webhook_failure_for_other_session",
                    payment_id=payment.id,
                    event_id=outcome.event_id,
                    session_id=outcome.session_id,
                )
                return ack
            if payment.status == PaymentStatus.PENDING:
                result = await self._fail(payment.id, PaymentStatus.PENDING, f"gateway:{outcome.event_type}")
                ack.applied = result.applied
            return ack

        mismatch = self._cross_check(payment, outcome)
        if mismatch:
            logger.error(
                "webhook_mismatch",
                payment_id=payment.id,
                event_id=outcome.event_id,
                field=mismatch,
                callback_amount_minor=outcome.amount_minor,
                callback_currency=outcome.currency,
            )
            if payment.status == PaymentStatus.PENDING:
                await self._fail(payment.id, PaymentStatus.PENDING, f"gateway_mismatch:{mismatch}")
            ack.outcome = "rejected"
            return ack

        if payment.status == PaymentStatus.COMPLETED:
            logger.info("webhook_replay", payment_id=payment.id, event_id=outcome.event_id)
            if payment.needs_fulfillment:
                await self.fulfillment.fulfill(payment.id)
            return ack
        if payment.status != PaymentStatus.PENDING:
            logger.warning(
                "webhook_late_success",
                payment_id=payment.id,
                event_id=outcome.event_id,
                current_status=payment.status.value,
            )
            return ack

        async with self._uow_factory() as uow:
            ledger = PaymentLedger(uow.payment_repository, uow.audit_repository)
            # the stored session id stays authoritative; it is only filled in when missing
            result = await ledger.complete(
                payment.id,
                PaymentStatus.PENDING,
                external_ref=None if payment.external_ref else outcome.session_id,
            )
            events = ledger.clear_events()
        publish_events(self.notifier, events)

        if not result.applied:
            logger.info(
                "webhook_transition_conflict",
                payment_id=payment.id,
                current_status=result.current_status.value if result.current_status else None,
            )
            return ack

        ack.applied = True
        logger.info(
            "payment_completed",
            payment_id=payment.id,
            method=payment.method.value,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        await self.fulfillment.fulfill(payment.id)
        return ack
