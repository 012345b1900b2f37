"""Common base task for the payment workers"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)

# task arguments safe to put in logs; event payloads carry buyer emails
_LOGGED_KWARGS = ("payment_id", "older_than_hours", "limit")


class PaymentTask(Task):
    """Structured success/failure logging plus a bridge into the async services."""

    def _context(self, args, kwargs) -> dict:
        context = {k: kwargs[k] for k in _LOGGED_KWARGS if k in (kwargs or {})}
        payload = args[0] if args and isinstance(args[0], dict) else {}
        for key in ("event", "event_id", "payment_id"):
            if key in payload:
                context.setdefault(key, payload[key])
        return context

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
            **self._context(args, kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
            **self._context(args, kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            **self._context(args, kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)

    def run_async(self, coro_factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run one service call on a fresh event loop and release pooled connections after."""
        from infrastructure.database import engine

        async def _wrapped():
            try:
                return await coro_factory()
            finally:
                # pooled connections are bound to the loop that opened them
                await engine.dispose()

        return asyncio.run(_wrapped())
