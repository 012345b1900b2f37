"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import CheckoutSession, CheckoutSessionRequest, GatewayOutcome


@runtime_checkable
class PaymentGateway(Protocol):
    """Hosted-checkout card gateway.

    `create_checkout_session` is a single bounded call with no retries.
    `verify_webhook` authenticates the raw payload before anything else looks
    at it and raises WebhookSignatureException when it cannot.
    """

    provider: str

    async def create_checkout_session(self, req: CheckoutSessionRequest) -> CheckoutSession: ...

    def verify_webhook(self, headers: dict[str, str], body: bytes) -> GatewayOutcome: ...

    async def aclose(self) -> None: ...
