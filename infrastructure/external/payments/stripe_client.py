"""
Stripe Checkout adapter.

Sessions are created with a single form-encoded POST to /v1/checkout/sessions
over the shared httpx client; the payment id doubles as the idempotency key
so a resubmitted checkout cannot open a second session. Webhooks are
authenticated with the official SDK (`stripe.WebhookSignature`) before the
payload is parsed.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import stripe

from application.dtos.payments import (
    CheckoutSession,
    CheckoutSessionRequest,
    GatewayOutcome,
    WebhookEvent,
)
from core.settings import payment_settings
from domain.common.exceptions import WebhookSignatureException
from domain.common.money import to_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import GatewayError
from shared.codes.payment_codes import GATEWAY_EVENT_OUTCOME, GATEWAY_PAID_STATUSES


class StripeCheckoutClient(BasePaymentClient):
    provider = "stripe"
    error_class = GatewayError

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeouts=payment_settings.timeouts.model_dump(), transport=transport)
        self._cfg = payment_settings.stripe

    def _session_form(self, req: CheckoutSessionRequest) -> dict[str, Any]:
        slug = req.item_slug or req.item_id
        form: dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": req.payment_id,
            "success_url": self._cfg.success_url.format(slug=slug, payment_id=req.payment_id),
            "cancel_url": self._cfg.cancel_url.format(slug=slug, payment_id=req.payment_id),
            "line_items[0][quantity]": 1,
            "line_items[0][price_data][currency]": req.currency.lower(),
            "line_items[0][price_data][unit_amount]": to_minor_units(req.amount, req.currency),
            "line_items[0][price_data][product_data][name]": req.item_title,
            "metadata[payment_id]": req.payment_id,
            "metadata[user_id]": req.user_id,
            "metadata[type]": req.item_kind.value,
            f"metadata[{req.item_kind.value}_id]": req.item_id,
        }
        if req.coupon_id:
            form["metadata[coupon_id]"] = req.coupon_id
        if req.customer_email:
            form["customer_email"] = req.customer_email
        return form

    async def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSession:
        if not self._cfg.secret_key:
            raise GatewayError("Stripe secret key is not configured")

        response = await self._request(
            "POST",
            f"{self._cfg.api_base.rstrip('/')}/v1/checkout/sessions",
            data=self._session_form(req),
            headers={
                "Authorization": f"Bearer {self._cfg.secret_key}",
                "Idempotency-Key": req.payment_id,
            },
        )
        body = self._json(response)
        if response.status_code >= 400:
            error = body.get("error") or {}
            self._log_error(
                "checkout_session_rejected",
                payment_id=req.payment_id,
                status_code=response.status_code,
                provider_code=error.get("code"),
            )
            raise GatewayError(
                error.get("message") or "Stripe rejected the checkout session",
                status_code=response.status_code,
                provider_code=error.get("code"),
            )
        session_id = body.get("id")
        url = body.get("url")
        if not session_id or not url:
            raise GatewayError(
                "Stripe response is missing the session id or url",
                status_code=response.status_code,
            )
        self._log("checkout_session_created", payment_id=req.payment_id, session_id=session_id)
        return CheckoutSession(session_id=session_id, redirect_url=url, provider=self.provider)

    def _parse_event(self, headers: dict[str, str], body: bytes) -> WebhookEvent:
        secret = self._cfg.webhook_secret
        sig = {k.lower(): v for k, v in headers.items()}.get("stripe-signature")
        if not secret or not sig:
            self._log_error("webhook_signature_missing", has_secret=bool(secret), has_header=bool(sig))
            raise WebhookSignatureException(self.provider)
        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, sig, secret, payment_settings.webhook.tolerance_seconds
            )
            event = json.loads(payload)
        except (UnicodeDecodeError, ValueError, stripe.SignatureVerificationError) as exc:
            self._log_error("webhook_signature_invalid", error=str(exc))
            raise WebhookSignatureException(self.provider) from exc
        return WebhookEvent(
            id=str(event.get("id") or ""),
            type=str(event.get("type") or ""),
            provider=self.provider,
            data=event.get("data") or {},
        )

    def verify_webhook(self, headers: dict[str, str], body: bytes) -> GatewayOutcome:
        event = self._parse_event(headers, body)
        session = event.data.get("object") or {}
        metadata = {str(k): str(v) for k, v in (session.get("metadata") or {}).items()}

        outcome = GATEWAY_EVENT_OUTCOME[self.provider].get(event.type, "ignored")
        if (
            outcome == "succeeded"
            and session.get("payment_status") not in GATEWAY_PAID_STATUSES[self.provider]
        ):
            # completed checkout whose funds are still in flight; the async_* event settles it
            outcome = "ignored"

        self._log("webhook_verified", event_id=event.id, event_type=event.type, outcome=outcome)
        return GatewayOutcome(
            event_id=event.id,
            event_type=event.type,
            provider=self.provider,
            outcome=outcome,
            session_id=session.get("id"),
            payment_id=metadata.get("payment_id") or session.get("client_reference_id"),
            amount_minor=session.get("amount_total"),
            currency=(session.get("currency") or "").upper() or None,
            metadata=metadata,
        )
