"""
优惠券数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, Index, CheckConstraint
)
from datetime import datetime, timezone

from .base import Base


class CouponModel(Base):
    __tablename__ = "coupons"

    id = Column(String(32), primary_key=True, comment="优惠券ID")
    code = Column(String(50), unique=True, nullable=False, comment="券码（大写）")
    discount_kind = Column(String(10), nullable=False, comment="percent/fixed")
    discount_value = Column(Numeric(precision=12, scale=2), nullable=False, comment="折扣值")
    max_redemptions = Column(Integer, nullable=True, comment="总可用次数，空表示不限")
    redeemed_count = Column(Integer, nullable=False, default=0, comment="已使用次数")
    per_user_limit = Column(Integer, nullable=True, comment="每用户可用次数")
    min_purchase = Column(Numeric(precision=12, scale=2), nullable=True, comment="最低消费")
    max_discount = Column(Numeric(precision=12, scale=2), nullable=True, comment="百分比折扣上限")
    course_id = Column(String(32), nullable=True, comment="仅限该课程")
    is_active = Column(Boolean, nullable=False, default=True, comment="是否启用")
    valid_from = Column(DateTime(timezone=True), nullable=True, comment="生效时间")
    valid_until = Column(DateTime(timezone=True), nullable=True, comment="失效时间")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    __table_args__ = (
        CheckConstraint(
            "max_redemptions IS NULL OR redeemed_count <= max_redemptions",
            name="ck_coupons_redeemed_within_limit",
        ),
    )

    def __repr__(self):
        return f"<CouponModel(code='{self.code}', redeemed={self.redeemed_count}/{self.max_redemptions})>"


class CouponUsageModel(Base):
    __tablename__ = "coupon_usages"

    id = Column(String(32), primary_key=True, comment="使用记录ID")
    coupon_id = Column(
        String(32),
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        comment="优惠券ID"
    )
    user_id = Column(String(32), nullable=False, comment="用户ID")
    payment_id = Column(String(32), nullable=True, comment="关联支付ID，免费选课为空")
    discount_amount = Column(Numeric(precision=12, scale=2), nullable=True, comment="本次抵扣金额")
    redeemed_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="使用时间"
    )

    __table_args__ = (
        Index("ix_coupon_usages_coupon_user", "coupon_id", "user_id"),
    )
