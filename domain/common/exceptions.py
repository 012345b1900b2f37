"""Domain business exceptions shared by domain and infrastructure.

The core layer only maps these to HTTP responses; the domain never imports core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """Base class for business exceptions"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


# --- Validation (user-correctable) ---------------------------------------


class CouponInvalidException(BusinessException):
    """Unknown, inactive, expired or exhausted coupon.

    Deliberately carries no detail: every reason renders the same message.
    """

    def __init__(self):
        super().__init__(
            code=PaymentCode.COUPON_INVALID,
            message="Coupon code is invalid",
            error_type="CouponInvalid",
            field="coupon_code",
            message_key="coupon.invalid",
        )


class CouponNotApplicableException(BusinessException):
    def __init__(self, reason: str = "item"):
        super().__init__(
            code=PaymentCode.COUPON_NOT_APPLICABLE,
            message="Coupon cannot be used for this purchase",
            error_type="CouponNotApplicable",
            details={"reason": reason},
            field="coupon_code",
            message_key="coupon.not_applicable",
        )


class AlreadyEnrolledException(BusinessException):
    def __init__(self, course_id: str):
        super().__init__(
            code=PaymentCode.ALREADY_ENROLLED,
            message="Already enrolled in this course",
            error_type="AlreadyEnrolled",
            details={"course_id": course_id},
            message_key="enrollment.already_enrolled",
        )


class InvalidPaymentActionException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.INVALID_PAYMENT_ACTION,
            message=message,
            error_type="InvalidPaymentAction",
            details=details,
            message_key="payment.action.invalid",
        )


class RetryLimitReachedException(BusinessException):
    def __init__(self, payment_id: str, max_retries: int):
        super().__init__(
            code=PaymentCode.RETRY_LIMIT_REACHED,
            message=f"Maximum retries ({max_retries}) reached",
            error_type="RetryLimitReached",
            details={"payment_id": payment_id, "max_retries": max_retries},
            message_key="payment.retry.limit",
            format_params={"max_retries": max_retries},
        )


class SlipRejectedException(BusinessException):
    """Uploaded slip is not acceptable before it ever reaches the verifier."""

    def __init__(self, reason: str):
        super().__init__(
            code=PaymentCode.SLIP_REJECTED,
            message="Slip image is not acceptable",
            error_type="SlipRejected",
            details={"reason": reason},
            field="slip",
            message_key="slip.rejected",
        )


# --- Not found ----------------------------------------------------------------


class PaymentNotFoundException(BusinessException):
    def __init__(self, payment_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="PaymentNotFound",
            details={"payment_id": payment_id},
            message_key="payment.not_found",
        )


class CatalogItemNotFoundException(BusinessException):
    def __init__(self, kind: str, item_id: str):
        super().__init__(
            code=PaymentCode.CATALOG_ITEM_NOT_FOUND,
            message=f"{kind.capitalize()} not found",
            error_type="CatalogItemNotFound",
            details={"kind": kind, "item_id": item_id},
            message_key="catalog.not_found",
        )


# --- Conflict -------------------------------------------------------------------


class PaymentConflictException(BusinessException):
    """A conditional transition lost against a concurrent writer."""

    def __init__(self, payment_id: str, current_status: Optional[str] = None):
        super().__init__(
            code=PaymentCode.PAYMENT_CONFLICT,
            message="This payment was already processed",
            error_type="PaymentConflict",
            details={"payment_id": payment_id, "current_status": current_status},
            message_key="payment.conflict",
        )


# --- External services ----------------------------------------------------------


class ExternalServiceException(BusinessException):
    """Timeout or malformed response from the slip verifier or card gateway."""

    def __init__(
        self,
        message: str,
        *,
        service: str,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "ExternalServiceError",
        details: Optional[dict] = None,
    ):
        full_details = {"service": service}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
            message_key="payment.external.failed",
        )
        self.service = service


class WebhookSignatureException(BusinessException):
    """Inbound callback failed authentication; nothing was changed."""

    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message="Invalid webhook signature",
            error_type="WebhookSignatureError",
            details={"provider": provider},
            message_key="payment.webhook.signature",
        )
