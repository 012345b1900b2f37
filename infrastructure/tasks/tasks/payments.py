"""
Payment sweeps: expire stale pending payments and finish enrollment grants
that never completed. Scheduled by beat when enabled, or enqueued by hand.
"""
from __future__ import annotations

from celery import shared_task

from application.services.fulfillment import FulfillmentService
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

from ..utils.base_task import PaymentTask
from ..utils.dispatcher import CeleryNotificationSink


logger = get_logger(__name__)


def _reconciliation_service() -> ReconciliationService:
    notifier = CeleryNotificationSink()
    return ReconciliationService(
        SQLAlchemyUnitOfWork,
        fulfillment=FulfillmentService(SQLAlchemyUnitOfWork, notifier),
        notifier=notifier,
    )


@shared_task(name="payments.expire_stale", bind=True, base=PaymentTask)
def task_expire_stale(self, older_than_hours: int | None = None):
    result = self.run_async(lambda: _reconciliation_service().expire_stale(older_than_hours=older_than_hours))
    logger.info("sweep_expire_stale_finished", scanned=result.scanned, applied=result.applied)
    return result.model_dump()


@shared_task(name="payments.regrant_unfulfilled", bind=True, base=PaymentTask)
def task_regrant_unfulfilled(self, limit: int | None = None):
    result = self.run_async(lambda: _reconciliation_service().regrant_unfulfilled(limit=limit))
    logger.info("sweep_regrant_finished", scanned=result.scanned, applied=result.applied)
    return result.model_dump()
