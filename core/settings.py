"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Environment keys use the PAYMENT__ prefix, e.g. PAYMENT__STRIPE__SECRET_KEY
or PAYMENT__RECONCILIATION__MAX_RETRIES.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 12.0
    write: float = 5.0
    total: float = 15.0


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_base: str = "https://api.stripe.com"
    # {slug} and {payment_id} are substituted per checkout
    success_url: str = "http://localhost:3000/courses/{slug}/success?payment_id={payment_id}"
    cancel_url: str = "http://localhost:3000/courses/{slug}?canceled=1"


class SlipOKSettings(BaseModel):
    api_key: Optional[str] = None
    branch_id: Optional[str] = None
    base_url: str = "https://api.slipok.com/api/line/apikey"


class SlipSettings(BaseModel):
    storage_dir: str = "/tmp/payment-slips"
    max_bytes: int = 5 * 1024 * 1024
    allowed_types: list[str] = Field(default_factory=lambda: ["image/jpeg", "image/png", "image/webp"])
    # match tolerance per currency; anything unlisted must match exactly
    amount_epsilon: dict[str, Decimal] = Field(default_factory=dict)

    def epsilon_for(self, currency: str) -> Decimal:
        return self.amount_epsilon.get(currency.upper(), Decimal("0"))


class ReconciliationSettings(BaseModel):
    stale_after_hours: int = 24
    default_days_back: int = 30
    min_days_back: int = 7
    max_days_back: int = 90
    list_limit: int = 200
    bulk_max_batch: int = 50
    max_retries: int = 5
    expire_batch_size: int = 200


class FulfillmentSettings(BaseModel):
    grant_attempts: int = 3
    grant_backoff: float = 0.2


class SweepSettings(BaseModel):
    """Scheduled sweeps are off unless enabled; operators can always trigger them on demand."""
    expire_stale_enabled: bool = False
    expire_stale_every_seconds: int = 3600
    regrant_enabled: bool = False
    regrant_every_seconds: int = 900


class PaymentSettings(BaseSettings):
    default_currency: str = "THB"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    slipok: SlipOKSettings = Field(default_factory=SlipOKSettings)
    slip: SlipSettings = Field(default_factory=SlipSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    fulfillment: FulfillmentSettings = Field(default_factory=FulfillmentSettings)
    sweeps: SweepSettings = Field(default_factory=SweepSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
