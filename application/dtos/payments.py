"""
Payment DTOs (Pydantic v2) used at application boundaries.

Two groups live here: the contracts exchanged with the gateway and slip
verifier ports, and the request/response shapes of the checkout and
reconciliation use-cases.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from domain.catalog.entity import ItemKind
from domain.payment.entity import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentView,
    ReconciliationBucket,
    Resolution,
)
from domain.pricing.service import PriceQuote


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


# --- gateway port -------------------------------------------------------------


class CheckoutSessionRequest(BaseModel):
    payment_id: str
    user_id: str
    amount: Decimal = Field(gt=0)
    currency: str
    item_kind: ItemKind
    item_id: str
    item_title: str
    item_slug: Optional[str] = None
    coupon_id: Optional[str] = None
    customer_email: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class CheckoutSession(BaseModel):
    session_id: str
    redirect_url: str
    provider: str


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]


class GatewayOutcome(BaseModel):
    """A verified callback reduced to what the ledger needs."""

    event_id: str
    event_type: str
    provider: str
    outcome: Literal["succeeded", "failed", "ignored"]
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


# --- slip verifier port ---------------------------------------------------------


class SlipVerificationRequest(BaseModel):
    payment_id: str
    image: bytes
    filename: str = "slip.jpg"
    content_type: str = "image/jpeg"
    expected_amount: Decimal
    currency: str


class SlipVerdict(BaseModel):
    """Fixed verifier contract: a no-match is a verdict, not an error."""

    matched: bool
    extracted_amount: Optional[Decimal] = None
    confidence: Optional[float] = None
    raw_reference: Optional[str] = None
    reason: Optional[str] = None


class StoredSlip(BaseModel):
    reference: str
    url: Optional[str] = None
    size: int
    content_type: str


# --- checkout use-cases ---------------------------------------------------------


class QuoteRequest(DTOBase):
    item_kind: ItemKind
    item_id: str = Field(..., min_length=1, max_length=64)
    coupon_code: Optional[str] = Field(None, max_length=50)


class CreatePaymentRequest(QuoteRequest):
    method: PaymentMethod


class QuoteDTO(DTOBase):
    item_kind: ItemKind
    item_id: str
    item_title: str
    currency: str
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Decimal = Decimal("0")
    bundle_savings: Decimal = Decimal("0")
    savings_percent: int = 0
    course_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_quote(cls, quote: PriceQuote) -> "QuoteDTO":
        return cls(
            item_kind=quote.item.kind,
            item_id=quote.item.ref.id,
            item_title=quote.item.title,
            currency=quote.currency,
            original_price=quote.original_price,
            discount_amount=quote.discount_amount,
            final_price=quote.final_price,
            coupon_id=quote.coupon_id,
            coupon_code=quote.coupon_code,
            coupon_discount=quote.coupon_discount,
            bundle_savings=quote.bundle_savings,
            savings_percent=quote.savings_percent,
            course_ids=list(quote.item.course_ids),
        )


class PaymentDTO(DTOBase):
    id: str
    user_id: str
    course_id: Optional[str] = None
    bundle_id: Optional[str] = None
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    external_ref: Optional[str] = None
    coupon_id: Optional[str] = None
    item_title: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    resolution: Optional[Resolution] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentDTO":
        return cls.model_validate(payment)


class GrantDTO(DTOBase):
    newly_granted: list[str] = Field(default_factory=list)
    already_owned: list[str] = Field(default_factory=list)


class CheckoutResultDTO(DTOBase):
    """Either a payment to continue with, or a direct enrollment for a free checkout."""

    free: bool = False
    payment: Optional[PaymentDTO] = None
    redirect_url: Optional[str] = None
    quote: QuoteDTO
    enrollment: Optional[GrantDTO] = None


class SlipResultDTO(DTOBase):
    payment: PaymentDTO
    matched: bool
    enrollment: Optional[GrantDTO] = None


class WebhookAckDTO(DTOBase):
    received: bool = True
    event_id: str
    outcome: str
    payment_id: Optional[str] = None
    applied: bool = False


# --- reconciliation use-cases ---------------------------------------------------


class ReconciliationItemDTO(PaymentDTO):
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    course_title: Optional[str] = None
    bundle_title: Optional[str] = None

    @classmethod
    def from_view(cls, view: PaymentView) -> "ReconciliationItemDTO":
        data = {name: getattr(view.payment, name) for name in PaymentDTO.model_fields}
        return cls(
            **data,
            user_name=view.user_name,
            user_email=view.user_email,
            course_title=view.course_title,
            bundle_title=view.bundle_title,
        )


class ReconciliationSummaryDTO(DTOBase):
    days_back: int
    since: datetime
    counts: dict[ReconciliationBucket, int]


class ReconciliationListDTO(DTOBase):
    bucket: ReconciliationBucket
    days_back: int
    items: list[ReconciliationItemDTO]
    summary: ReconciliationSummaryDTO


class RetryRequest(DTOBase):
    action: Literal["approve", "reject"]
    reason: Optional[str] = Field(None, max_length=500)


class RetryResultDTO(DTOBase):
    payment: PaymentDTO
    enrollment: Optional[GrantDTO] = None


class BulkMarkFailedRequest(DTOBase):
    payment_ids: list[str] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class BulkItemOutcome(DTOBase):
    payment_id: str
    outcome: Literal["succeeded", "conflict", "not_found"]
    current_status: Optional[PaymentStatus] = None


class BulkResultDTO(DTOBase):
    requested: int
    succeeded: int
    conflicts: int
    not_found: int
    results: list[BulkItemOutcome]


class SweepResultDTO(DTOBase):
    scanned: int
    applied: int
    skipped: int
    payment_ids: list[str] = Field(default_factory=list)


class RefundRequest(DTOBase):
    reason: Optional[str] = Field(None, max_length=500)
