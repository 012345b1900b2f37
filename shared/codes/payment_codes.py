"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Checkout / ledger errors (21xxx)
    PAYMENT_NOT_FOUND = 21000
    PAYMENT_CONFLICT = 21001
    INVALID_PAYMENT_ACTION = 21002
    RETRY_LIMIT_REACHED = 21003
    CATALOG_ITEM_NOT_FOUND = 21010
    ALREADY_ENROLLED = 21011
    COUPON_INVALID = 21020
    COUPON_NOT_APPLICABLE = 21021
    SLIP_REJECTED = 21030

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Gateway event type -> ledger outcome. Anything unlisted is acknowledged and ignored.
GATEWAY_EVENT_OUTCOME = {
    "stripe": {
        "checkout.session.completed": "succeeded",
        "checkout.session.async_payment_succeeded": "succeeded",
        "checkout.session.async_payment_failed": "failed",
        "checkout.session.expired": "failed",
    },
}

# Stripe Checkout `payment_status` values that mean the money has arrived.
GATEWAY_PAID_STATUSES = {
    "stripe": {"paid", "no_payment_required"},
}

# SlipOK business codes: the slip was read but must not be accepted.
# These are verdicts (matched=False), not transport errors.
SLIPOK_REJECTION_CODES = {
    1000: "slip_invalid",
    1001: "slip_not_found",
    1003: "slip_duplicate",
    1004: "slip_unreadable",
    1005: "slip_invalid_image",
    1006: "slip_invalid_image",
    1007: "slip_qr_not_found",
    1008: "slip_not_a_payment",
    1010: "slip_not_yet_available",
    1012: "slip_duplicate",
    1013: "amount_mismatch",
    1014: "receiver_mismatch",
}

# SlipOK codes that indicate our own credentials/quota are broken (service error).
SLIPOK_SERVICE_ERROR_CODES = {1002, 1009, 1011}
