from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path

import structlog

_current_locale: ContextVar[str] = ContextVar("current_locale", default="en")
_translators: dict[str, gettext.NullTranslations] = {}
_logger = structlog.get_logger(__name__)

# Built-in English texts; .mo catalogs under locales/ override them per locale.
DEFAULT_MESSAGES: dict[str, str] = {
    "validation.failed": "Validation failed: {reason}",
    "validation.domain": "Invalid request",
    "error.internal": "Internal server error",
    "auth.unauthorized": "Authentication required",
    "auth.forbidden": "You are not allowed to perform this action",
    "coupon.invalid": "Coupon code is invalid",
    "coupon.not_applicable": "Coupon cannot be used for this purchase",
    "catalog.not_found": "Item not found",
    "catalog.bundle_empty": "This bundle has no courses",
    "enrollment.already_enrolled": "Already enrolled in this course",
    "payment.not_found": "Payment not found",
    "payment.conflict": "This payment was already processed",
    "payment.action.invalid": "This action is not allowed for the payment in its current state",
    "payment.retry.limit": "Maximum retries ({max_retries}) reached",
    "payment.external.failed": "We could not verify your payment. Please try again or contact support.",
    "payment.webhook.signature": "Invalid webhook signature",
    "slip.rejected": "Slip image is not acceptable",
    "welcome": "Course payments API",
    "health.ok": "OK",
    "checkout.quote.ready": "Price quote",
    "checkout.enrolled": "Enrolled successfully",
    "payment.created": "Payment created",
    "payment.retrieved": "Payment",
    "payment.webhook.received": "Webhook received",
    "slip.processed": "Slip processed",
    "reconciliation.approve.done": "Payment approved",
    "reconciliation.reject.done": "Payment rejected",
    "reconciliation.bulk.done": "Bulk update finished",
    "reconciliation.sweep.done": "Sweep finished",
    "reconciliation.refund.done": "Payment refunded",
    "reconciliation.regrant.done": "Enrollments granted",
}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to 'en')."""
    _current_locale.set(locale or "en")


def get_locale() -> str:
    """Get current request locale (default 'en')."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, **params) -> str:
    """Translate msgid using current locale and format with params.

    Falls back to the built-in English text, then to msgid itself.
    """
    text = _get_translator(get_locale()).gettext(msgid)
    if text == msgid:
        text = DEFAULT_MESSAGES.get(msgid, msgid)
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError) as exc:
        _logger.warning("i18n_format_failed", msgid=msgid, params=list(params.keys()), error=str(exc))
        return text
