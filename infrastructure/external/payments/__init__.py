"""
Factories for the card gateway and slip verifier adapters.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.ports.payment_gateway import PaymentGateway
from application.ports.slip_verifier import SlipVerifier


def get_payment_gateway(transport: Optional[httpx.AsyncBaseTransport] = None) -> PaymentGateway:
    from .stripe_client import StripeCheckoutClient
    return StripeCheckoutClient(transport=transport)


def get_slip_verifier(transport: Optional[httpx.AsyncBaseTransport] = None) -> SlipVerifier:
    from infrastructure.external.slip.slipok_client import SlipOKClient
    return SlipOKClient(transport=transport)
