"""
Enrollment granter - turns a completed payment (or a free checkout) into course access.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from domain.catalog.entity import CatalogItem, ItemRef
from domain.catalog.repository import CatalogRepository
from domain.common.exceptions import AlreadyEnrolledException, InvalidPaymentActionException
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.events import EnrollmentGranted

from .entity import Enrollment, GrantResult
from .repository import EnrollmentRepository


class EnrollmentGranter:
    """
    Idempotent by (user, course).

    Granting is a set union: re-running after a partial failure creates only
    the missing rows and reports the rest as already owned.
    """

    def __init__(self, enrollment_repository: EnrollmentRepository, catalog_repository: CatalogRepository):
        self.enrollment_repository = enrollment_repository
        self.catalog_repository = catalog_repository
        self.events: List = []

    async def ensure_not_owned(self, user_id: str, item: CatalogItem) -> None:
        """Refuse a purchase that would unlock nothing new."""
        owned = await self.enrollment_repository.owned_course_ids(user_id, item.course_ids)
        if item.course_ids and owned.issuperset(item.course_ids):
            raise AlreadyEnrolledException(item.ref.id)

    async def grant_courses(
        self,
        user_id: str,
        course_ids: list[str],
        *,
        payment_id: Optional[str] = None,
    ) -> GrantResult:
        result = GrantResult(user_id=user_id)
        now = datetime.now(timezone.utc)
        for course_id in dict.fromkeys(course_ids):
            created = await self.enrollment_repository.add_if_absent(Enrollment(
                id=uuid.uuid4().hex,
                user_id=user_id,
                course_id=course_id,
                payment_id=payment_id,
                enrolled_at=now,
            ))
            if created:
                result.newly_granted.append(course_id)
            else:
                result.already_owned.append(course_id)

        if result.newly_granted:
            self.events.append(EnrollmentGranted(
                payment_id=payment_id,
                user_id=user_id,
                course_ids=list(result.newly_granted),
            ))
        return result

    async def grant_item(self, user_id: str, ref: ItemRef, *, payment_id: Optional[str] = None) -> GrantResult:
        course_ids = await self.catalog_repository.get_course_ids(ref)
        return await self.grant_courses(user_id, course_ids, payment_id=payment_id)

    async def grant_for_payment(self, payment: Payment) -> GrantResult:
        """Grant every course the payment paid for. Bundle contents are read at grant time."""
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidPaymentActionException(
                "Only completed payments can be fulfilled",
                details={"payment_id": payment.id, "status": payment.status.value},
            )
        return await self.grant_item(payment.user_id, payment.item_ref, payment_id=payment.id)

    def clear_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
