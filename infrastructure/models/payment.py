"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, CheckConstraint
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    状态流转规则在 domain.payment.entity 中，写入只走条件更新
    """
    __tablename__ = "payments"

    # 主键
    id = Column(String(32), primary_key=True, comment="支付ID")

    # 购买信息：course_id 与 bundle_id 二选一
    user_id = Column(String(32), nullable=False, comment="用户ID")
    course_id = Column(String(32), nullable=True, index=True, comment="课程ID")
    bundle_id = Column(String(32), nullable=True, index=True, comment="课程包ID")
    item_title = Column(String(255), nullable=True, comment="下单时的商品标题")

    # 金额信息（最终价格，创建后不再重算）
    amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="THB", comment="货币代码 ISO-4217")

    method = Column(String(20), nullable=False, comment="card_gateway/bank_transfer")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        comment="支付状态: pending/verifying/completed/failed/refunded"
    )
    external_ref = Column(String(255), nullable=True, index=True, comment="网关会话ID或转账凭证引用")
    coupon_id = Column(String(32), nullable=True, comment="使用的优惠券ID")

    # 对账信息
    retry_count = Column(Integer, nullable=False, default=0, comment="人工处理次数")
    last_retry_at = Column(DateTime(timezone=True), nullable=True, comment="最近人工处理时间")
    resolution = Column(String(20), nullable=True, comment="人工结论: approved/rejected")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")
    failed_at = Column(DateTime(timezone=True), nullable=True, comment="失败时间")
    fulfilled_at = Column(DateTime(timezone=True), nullable=True, comment="选课授予完成时间")

    # 元数据（使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    __table_args__ = (
        Index("ix_payments_status_created", "status", "created_at"),
        Index("ix_payments_user_status", "user_id", "status"),
        CheckConstraint(
            "(course_id IS NULL) <> (bundle_id IS NULL)",
            name="ck_payments_single_item",
        ),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id='{self.id}', method='{self.method}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class PaymentAuditLogModel(Base):
    """人工操作与自动失败的审计记录"""
    __tablename__ = "payment_audit_logs"

    id = Column(String(32), primary_key=True, comment="审计ID")
    payment_id = Column(
        String(32),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="支付ID"
    )
    action = Column(String(30), nullable=False, comment="操作类型")
    from_status = Column(String(20), nullable=True, comment="原状态")
    to_status = Column(String(20), nullable=True, comment="新状态")
    actor_id = Column(String(32), nullable=False, default="system", comment="操作人，自动操作为 system")
    reason = Column(Text, nullable=True, comment="原因")
    details = Column(JSON, nullable=True, comment="附加信息")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
