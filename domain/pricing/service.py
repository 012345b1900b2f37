"""
Price resolution - what the buyer pays for an item, with an optional coupon.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.catalog.entity import CatalogItem, ItemRef
from domain.catalog.repository import CatalogRepository
from domain.common.exceptions import CatalogItemNotFoundException, DomainValidationException
from domain.common.money import quantize_money
from domain.coupon.service import CouponLedger


@dataclass(frozen=True)
class PriceQuote:
    """
    Result of a price resolution.

    `original_price` is what the buyer would pay without any discount: the
    course price, or the sum of the contained course prices for a bundle.
    `discount_amount` covers both the bundle saving and the coupon discount,
    so original_price - discount_amount == final_price whenever the coupon
    does not push the price below zero.
    """

    item: CatalogItem
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    currency: str
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Decimal = Decimal("0")

    @property
    def is_free(self) -> bool:
        return self.final_price <= 0

    @property
    def bundle_savings(self) -> Decimal:
        return self.item.bundle_savings

    @property
    def savings_percent(self) -> int:
        if self.original_price <= 0:
            return 0
        ratio = self.discount_amount * 100 / self.original_price
        return int(ratio.quantize(Decimal("1")))


class PriceResolver:
    """Side-effect free: quoting never reserves a coupon slot."""

    def __init__(self, catalog_repository: CatalogRepository, coupon_ledger: CouponLedger):
        self.catalog_repository = catalog_repository
        self.coupon_ledger = coupon_ledger

    async def load_item(self, ref: ItemRef) -> CatalogItem:
        item = await self.catalog_repository.resolve(ref)
        if item is None or not item.is_published:
            raise CatalogItemNotFoundException(ref.kind.value, ref.id)
        if not item.course_ids:
            raise DomainValidationException(
                "This bundle has no courses",
                field="item_id",
                message_key="catalog.bundle_empty",
            )
        return item

    async def resolve(
        self,
        ref: ItemRef,
        coupon_code: Optional[str] = None,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PriceQuote:
        item = await self.load_item(ref)
        currency = item.currency.upper()
        price = quantize_money(item.price, currency)
        original = quantize_money(item.list_price, currency) if item.list_price is not None else price
        original = max(original, price)

        coupon_id = None
        code = None
        coupon_discount = Decimal("0")
        if coupon_code and coupon_code.strip():
            coupon = await self.coupon_ledger.check(
                coupon_code, ref, price, user_id=user_id, now=now
            )
            coupon_id = coupon.id
            code = coupon.code
            coupon_discount = coupon.discount_for(price, currency)

        final_price = max(Decimal("0"), price - coupon_discount)
        return PriceQuote(
            item=item,
            original_price=original,
            discount_amount=original - final_price,
            final_price=quantize_money(final_price, currency),
            currency=currency,
            coupon_id=coupon_id,
            coupon_code=code,
            coupon_discount=coupon_discount,
        )
