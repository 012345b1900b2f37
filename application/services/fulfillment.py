"""
Fulfillment - grants enrollments for completed payments and publishes events.

The completed transition is committed before fulfillment starts. Grant
failures are retried here; when they keep failing the payment stays
completed with no fulfilled_at and shows up in the `unfulfilled`
reconciliation bucket for a later regrant.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from application.ports.notifier import NotificationSink
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import BusinessException, PaymentNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.enrollment.entity import GrantResult
from domain.enrollment.service import EnrollmentGranter


logger = get_logger(__name__)


def publish_events(notifier: Optional[NotificationSink], events: Iterable) -> None:
    """Hand committed events to the sink. A failed notification never undoes a payment."""
    if notifier is None:
        return
    for event in events:
        try:
            notifier.publish(event)
        except Exception as exc:
            logger.warning(
                "notification_publish_failed",
                event=getattr(event, "name", type(event).__name__),
                payment_id=getattr(event, "payment_id", None),
                error=str(exc),
            )


class FulfillmentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        notifier: Optional[NotificationSink] = None,
        *,
        attempts: Optional[int] = None,
        backoff: Optional[float] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._attempts = attempts or payment_settings.fulfillment.grant_attempts
        self._backoff = payment_settings.fulfillment.grant_backoff if backoff is None else backoff

    async def _grant_once(self, payment_id: str) -> GrantResult:
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(payment_id)
            granter = EnrollmentGranter(uow.enrollment_repository, uow.catalog_repository)
            result = await granter.grant_for_payment(payment)
            if payment.fulfilled_at is None:
                await uow.payment_repository.mark_fulfilled(payment.id, datetime.now(timezone.utc))
            events = granter.clear_events()
        publish_events(self._notifier, events)
        return result

    async def fulfill(self, payment_id: str) -> Optional[GrantResult]:
        """Grant with bounded retries. Returns None when every attempt failed."""
        retrying = AsyncRetrying(
            reraise=False,
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._backoff, min=0, max=max(self._backoff * 8, 0)),
            retry=retry_if_not_exception_type(BusinessException),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._grant_once(payment_id)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error(
                "enrollment_grant_failed",
                payment_id=payment_id,
                attempts=self._attempts,
                error=str(last),
            )
            return None

        logger.info(
            "enrollment_granted",
            payment_id=payment_id,
            newly_granted=result.newly_granted,
            already_owned=result.already_owned,
        )
        return result
