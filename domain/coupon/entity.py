"""
Coupon domain entity - discount rules and redemption bookkeeping.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.catalog.entity import ItemKind, ItemRef
from domain.common.exceptions import DomainValidationException
from domain.common.money import quantize_money


def normalize_code(code: str) -> str:
    return code.strip().upper()


class DiscountKind(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Coupon:
    """
    Coupon entity.

    Business rules:
    1. code is unique and stored upper-cased
    2. redeemed_count never exceeds max_redemptions
    3. a percent discount is at most 100
    4. an optional course_id restricts the coupon to that single course
    """

    id: str
    code: str
    discount_kind: DiscountKind
    discount_value: Decimal
    max_redemptions: Optional[int] = None
    redeemed_count: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    course_id: Optional[str] = None
    is_active: bool = True
    per_user_limit: Optional[int] = None
    min_purchase: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None  # cap for percent coupons
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.code = normalize_code(self.code)
        if not self.code:
            raise DomainValidationException("Coupon code is required", field="code")
        if self.discount_value < 0:
            raise DomainValidationException("Discount value cannot be negative", field="discount_value")
        if self.discount_kind == DiscountKind.PERCENT and self.discount_value > 100:
            raise DomainValidationException("Percent discount cannot exceed 100", field="discount_value")
        if self.max_redemptions is not None and self.max_redemptions < 0:
            raise DomainValidationException("max_redemptions cannot be negative", field="max_redemptions")
        self.valid_from = _ensure_utc(self.valid_from)
        self.valid_until = _ensure_utc(self.valid_until)
        self.created_at = _ensure_utc(self.created_at)

    @property
    def is_exhausted(self) -> bool:
        return self.max_redemptions is not None and self.redeemed_count >= self.max_redemptions

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        """Active, inside its validity window and with a slot left."""
        now = now or datetime.now(timezone.utc)
        if not self.is_active or self.is_exhausted:
            return False
        if self.valid_from and now < self.valid_from:
            return False
        if self.valid_until and now > self.valid_until:
            return False
        return True

    def applies_to(self, ref: ItemRef) -> bool:
        if self.course_id is None:
            return True
        return ref.kind == ItemKind.COURSE and ref.id == self.course_id

    def discount_for(self, price: Decimal, currency: str) -> Decimal:
        """Discount on `price`, rounded half-up to the currency minor unit and never above price."""
        if self.discount_kind == DiscountKind.PERCENT:
            discount = price * self.discount_value / Decimal(100)
            if self.max_discount is not None:
                discount = min(discount, self.max_discount)
        else:
            discount = self.discount_value
        return min(quantize_money(discount, currency), price)


@dataclass
class CouponRedemption:
    """One consumed coupon slot, tied to the payment (or free enrollment) that used it."""

    id: str
    coupon_id: str
    user_id: str
    payment_id: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    redeemed_at: Optional[datetime] = None

    def __post_init__(self):
        self.redeemed_at = _ensure_utc(self.redeemed_at)
