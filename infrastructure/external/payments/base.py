"""
Base HTTP client for outbound payment calls: timeouts, a reusable httpx
client and error mapping.

Gateway session creation and slip verification are single bounded calls.
There is no retry here; a timeout surfaces as ExternalServiceException and
the caller decides what happens to the payment.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.payments.exceptions import ProviderError
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    error_class: type[ProviderError] = ProviderError

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """One request; transport failures become ExternalServiceException."""
        try:
            async with self.client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            self._log_error("provider_timeout", url=url, error=str(exc))
            raise self.error_class(
                f"{self.provider} request timed out",
                code=PaymentCode.TIMEOUT,
            ) from exc
        except httpx.HTTPError as exc:
            self._log_error("provider_transport_error", url=url, error=str(exc))
            raise self.error_class(f"{self.provider} request failed") from exc

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            self._log_error("provider_malformed_response", status_code=response.status_code)
            raise self.error_class(
                f"{self.provider} returned a malformed response",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise self.error_class(
                f"{self.provider} returned a malformed response",
                status_code=response.status_code,
            )
        return data

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)

    def _log_error(self, event: str, **kwargs) -> None:
        logger.error(event, provider=self.provider, **kwargs)
