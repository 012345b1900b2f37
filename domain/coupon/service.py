"""
Coupon ledger - the one place that decides whether a coupon can still be used.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from domain.catalog.entity import ItemRef
from domain.common.exceptions import CouponInvalidException, CouponNotApplicableException

from .entity import Coupon, CouponRedemption, normalize_code
from .repository import CouponRepository


class CouponLedger:
    """
    Validation and redemption of coupons.

    `check` is read-only and used at quote time; `redeem` consumes a slot and
    must run inside the same unit of work that creates the owning payment.
    """

    def __init__(self, coupon_repository: CouponRepository):
        self.coupon_repository = coupon_repository

    async def check(
        self,
        code: str,
        ref: ItemRef,
        price: Decimal,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Coupon:
        """Return the coupon if it can be applied to `ref` at `price`.

        Unknown, inactive, expired, exhausted and per-user-exhausted coupons
        all raise the same CouponInvalidException.
        """
        coupon = await self.coupon_repository.get_by_code(normalize_code(code))
        if coupon is None or not coupon.is_redeemable(now or datetime.now(timezone.utc)):
            raise CouponInvalidException()

        if user_id and coupon.per_user_limit is not None:
            used = await self.coupon_repository.count_user_redemptions(coupon.id, user_id)
            if used >= coupon.per_user_limit:
                raise CouponInvalidException()

        if not coupon.applies_to(ref):
            raise CouponNotApplicableException(reason="item")
        if coupon.min_purchase is not None and price < coupon.min_purchase:
            raise CouponNotApplicableException(reason="min_purchase")
        return coupon

    async def redeem(
        self,
        coupon_id: str,
        user_id: str,
        payment_id: Optional[str] = None,
        discount_amount: Optional[Decimal] = None,
    ) -> CouponRedemption:
        """Consume one slot. Losing the race for the last slot reads as an invalid coupon."""
        if not await self.coupon_repository.try_increment(coupon_id):
            raise CouponInvalidException()
        redemption = CouponRedemption(
            id=uuid.uuid4().hex,
            coupon_id=coupon_id,
            user_id=user_id,
            payment_id=payment_id,
            discount_amount=discount_amount,
            redeemed_at=datetime.now(timezone.utc),
        )
        return await self.coupon_repository.add_redemption(redemption)
