"""
Provider errors mapped to the unified ExternalServiceException family.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import ExternalServiceException
from shared.codes.payment_codes import PaymentCode


class ProviderError(ExternalServiceException):
    service = "provider"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
    ):
        details = {"status_code": status_code, "provider_code": provider_code}
        if status_code == 429:
            code = PaymentCode.RATE_LIMITED
        super().__init__(
            message,
            service=type(self).service,
            code=code,
            error_type=type(self).__name__,
            details={k: v for k, v in details.items() if v is not None},
        )


class GatewayError(ProviderError):
    """Card gateway (Stripe) failure."""
    service = "stripe"


class SlipVerifierError(ProviderError):
    """Slip verifier (SlipOK) failure."""
    service = "slipok"
