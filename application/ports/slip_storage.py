"""
Slip storage port - keeps the uploaded image and returns an opaque reference.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import StoredSlip


@runtime_checkable
class SlipStorage(Protocol):
    async def save(self, payment_id: str, data: bytes, *, content_type: str, filename: str) -> StoredSlip: ...
