"""
SlipOK slip verifier.

POST {base_url}/{branch_id} with the image as multipart `files`, the expected
amount and `log=true` so SlipOK remembers the slip and reports duplicates.
A readable slip always yields a SlipVerdict; only timeouts, transport errors,
credential/quota problems and unparseable bodies raise.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from application.dtos.payments import SlipVerdict, SlipVerificationRequest
from core.settings import payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import SlipVerifierError
from shared.codes.payment_codes import SLIPOK_REJECTION_CODES, SLIPOK_SERVICE_ERROR_CODES


class SlipOKClient(BasePaymentClient):
    provider = "slipok"
    error_class = SlipVerifierError
    name = "slipok"

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeouts=payment_settings.timeouts.model_dump(), transport=transport)
        self._cfg = payment_settings.slipok

    @staticmethod
    def _amount(value) -> Optional[Decimal]:
        if value is None or isinstance(value, bool):
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        # NaN / Infinity parse but cannot be compared
        return amount if amount.is_finite() else None

    @staticmethod
    def _reference(data: dict) -> Optional[str]:
        ref = data.get("transRef")
        return str(ref) if ref is not None else None

    async def verify(self, req: SlipVerificationRequest) -> SlipVerdict:
        if not self._cfg.api_key or not self._cfg.branch_id:
            raise SlipVerifierError("SlipOK credentials are not configured")

        response = await self._request(
            "POST",
            f"{self._cfg.base_url.rstrip('/')}/{self._cfg.branch_id}",
            headers={"x-authorization": self._cfg.api_key},
            files={"files": (req.filename, req.image, req.content_type)},
            data={"amount": str(req.expected_amount), "log": "true"},
        )
        body = self._json(response)

        if not body.get("success"):
            return self._rejection(req, response.status_code, body)

        data = body.get("data")
        if not isinstance(data, dict):
            self._log_error("slip_malformed_response", payment_id=req.payment_id, status_code=response.status_code)
            raise SlipVerifierError(
                "SlipOK response data is malformed",
                status_code=response.status_code,
            )
        extracted = self._amount(data.get("amount"))
        reference = self._reference(data)
        if extracted is None:
            raise SlipVerifierError(
                "SlipOK response has no usable amount",
                status_code=response.status_code,
            )

        epsilon = payment_settings.slip.epsilon_for(req.currency)
        matched = abs(extracted - req.expected_amount) <= epsilon
        self._log(
            "slip_verified",
            payment_id=req.payment_id,
            matched=matched,
            expected_amount=str(req.expected_amount),
            extracted_amount=str(extracted),
            reference=reference,
        )
        return SlipVerdict(
            matched=matched,
            extracted_amount=extracted,
            confidence=1.0 if matched else 0.0,
            raw_reference=reference,
            reason=None if matched else "amount_mismatch",
        )

    def _rejection(self, req: SlipVerificationRequest, status_code: int, body: dict) -> SlipVerdict:
        try:
            code = int(body.get("code"))
        except (TypeError, ValueError):
            code = None

        if code in SLIPOK_REJECTION_CODES:
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            reason = SLIPOK_REJECTION_CODES[code]
            self._log(
                "slip_rejected",
                payment_id=req.payment_id,
                provider_code=code,
                reason=reason,
            )
            return SlipVerdict(
                matched=False,
                extracted_amount=self._amount(data.get("amount")),
                confidence=0.0,
                raw_reference=self._reference(data),
                reason=reason,
            )

        self._log_error(
            "slip_service_error",
            payment_id=req.payment_id,
            status_code=status_code,
            provider_code=code,
            credentials=code in SLIPOK_SERVICE_ERROR_CODES,
        )
        raise SlipVerifierError(
            body.get("message") or "SlipOK could not verify the slip",
            status_code=status_code,
            provider_code=str(code) if code is not None else None,
        )
