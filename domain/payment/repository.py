"""
Payment repository interface - what the ledger needs from storage.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import (
    AuditEntry,
    Payment,
    PaymentMethod,
    PaymentView,
    ReconciliationBucket,
    Transition,
    TransitionResult,
)


class PaymentRepository(ABC):
    """Payment storage. Status only changes through `transition`."""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """Insert a new payment in pending"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def transition(self, transition: Transition) -> TransitionResult:
        """Apply `transition` only if the stored status equals `transition.expected`.

        Never raises on a lost race; the result carries the row as it is now.
        """
        pass

    @abstractmethod
    async def record_attempt(self, payment_id: str, limit: int, at: datetime) -> bool:
        """Count one operator attempt; False once `limit` attempts are recorded"""
        pass

    @abstractmethod
    async def mark_fulfilled(self, payment_id: str, at: datetime) -> bool:
        """Stamp fulfilled_at on a completed payment that has none yet"""
        pass

    @abstractmethod
    async def list_for_reconciliation(
        self,
        bucket: ReconciliationBucket,
        since: datetime,
        limit: int,
        method: Optional[PaymentMethod] = None,
    ) -> List[PaymentView]:
        """Payments in a bucket created after `since`, newest first"""
        pass

    @abstractmethod
    async def count_by_bucket(self, since: datetime) -> dict[ReconciliationBucket, int]:
        pass

    @abstractmethod
    async def list_stale_pending(self, older_than: datetime, limit: int) -> List[Payment]:
        """Pending payments created before `older_than`, oldest first"""
        pass

    @abstractmethod
    async def list_unfulfilled(self, limit: int) -> List[Payment]:
        pass


class PaymentAuditRepository(ABC):

    @abstractmethod
    async def add(self, entry: AuditEntry) -> AuditEntry:
        pass

    @abstractmethod
    async def list_for_payment(self, payment_id: str) -> List[AuditEntry]:
        pass
