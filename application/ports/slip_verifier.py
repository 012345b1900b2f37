"""
Slip verifier port - bank transfer slip checking against an expected amount.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import SlipVerdict, SlipVerificationRequest


@runtime_checkable
class SlipVerifier(Protocol):
    """Returns a verdict for a readable slip; raises ExternalServiceException
    for timeouts, transport failures and malformed responses."""

    name: str

    async def verify(self, req: SlipVerificationRequest) -> SlipVerdict: ...

    async def aclose(self) -> None: ...
