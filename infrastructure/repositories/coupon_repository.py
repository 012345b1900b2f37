"""
优惠券仓储实现
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.coupon.entity import Coupon, CouponRedemption, DiscountKind, normalize_code
from domain.coupon.repository import CouponRepository
from infrastructure.models.coupon import CouponModel, CouponUsageModel


logger = get_logger(__name__)


def _decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class SQLAlchemyCouponRepository(CouponRepository):
    """优惠券仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CouponModel) -> Coupon:
        return Coupon(
            id=model.id,
            code=model.code,
            discount_kind=DiscountKind(model.discount_kind),
            discount_value=Decimal(str(model.discount_value)),
            max_redemptions=model.max_redemptions,
            redeemed_count=model.redeemed_count or 0,
            valid_from=model.valid_from,
            valid_until=model.valid_until,
            course_id=model.course_id,
            is_active=bool(model.is_active),
            per_user_limit=model.per_user_limit,
            min_purchase=_decimal(model.min_purchase),
            max_discount=_decimal(model.max_discount),
            created_at=model.created_at,
        )

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(CouponModel).where(CouponModel.code == normalize_code(code))
        )
        db_coupon = result.scalar_one_or_none()
        return self._to_entity(db_coupon) if db_coupon else None

    async def get_by_id(self, coupon_id: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(CouponModel)
            .where(CouponModel.id == coupon_id)
            .execution_options(populate_existing=True)
        )
        db_coupon = result.scalar_one_or_none()
        return self._to_entity(db_coupon) if db_coupon else None

    async def try_increment(self, coupon_id: str) -> bool:
        """redeemed_count + 1，仅当仍有剩余名额"""
        result = await self.session.execute(
            update(CouponModel)
            .where(
                CouponModel.id == coupon_id,
                or_(
                    CouponModel.max_redemptions.is_(None),
                    CouponModel.redeemed_count < CouponModel.max_redemptions,
                ),
            )
            .values(redeemed_count=CouponModel.redeemed_count + 1)
            .execution_options(synchronize_session=False)
        )
        taken = result.rowcount == 1
        if not taken:
            logger.info("coupon_slot_unavailable", coupon_id=coupon_id)
        return taken

    async def add_redemption(self, redemption: CouponRedemption) -> CouponRedemption:
        self.session.add(CouponUsageModel(
            id=redemption.id,
            coupon_id=redemption.coupon_id,
            user_id=redemption.user_id,
            payment_id=redemption.payment_id,
            discount_amount=redemption.discount_amount,
            redeemed_at=redemption.redeemed_at,
        ))
        await self.session.flush()
        logger.info(
            "coupon_redeemed",
            coupon_id=redemption.coupon_id,
            user_id=redemption.user_id,
            payment_id=redemption.payment_id,
        )
        return redemption

    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count(CouponUsageModel.id)).where(
                CouponUsageModel.coupon_id == coupon_id,
                CouponUsageModel.user_id == user_id,
            )
        )
        return result.scalar() or 0
