"""
支付仓储实现 - 使用SQLAlchemy实现数据访问

状态变更只通过条件更新（compare-and-swap）完成：
UPDATE payments SET ... WHERE id = ? AND status = <expected>
影响行数为 0 即表示并发方已先行推进，调用方拿到的是当前行。
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import (
    AuditAction,
    AuditEntry,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentView,
    ReconciliationBucket,
    Resolution,
    Transition,
    TransitionResult,
)
from domain.payment.repository import PaymentAuditRepository, PaymentRepository
from infrastructure.models.catalog import BundleModel, CourseModel
from infrastructure.models.payment import PaymentAuditLogModel, PaymentModel
from infrastructure.models.user import UserModel


logger = get_logger(__name__)


def _bucket_filter(bucket: ReconciliationBucket):
    if bucket == ReconciliationBucket.UNFULFILLED:
        return and_(
            PaymentModel.status == PaymentStatus.COMPLETED.value,
            PaymentModel.fulfilled_at.is_(None),
        )
    return PaymentModel.status == bucket.value


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            user_id=model.user_id,
            course_id=model.course_id,
            bundle_id=model.bundle_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            method=PaymentMethod(model.method),
            status=PaymentStatus(model.status),
            external_ref=model.external_ref,
            coupon_id=model.coupon_id,
            item_title=model.item_title,
            retry_count=model.retry_count or 0,
            last_retry_at=model.last_retry_at,
            resolution=Resolution(model.resolution) if model.resolution else None,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
            failed_at=model.failed_at,
            fulfilled_at=model.fulfilled_at,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            user_id=entity.user_id,
            course_id=entity.course_id,
            bundle_id=entity.bundle_id,
            item_title=entity.item_title,
            amount=entity.amount,
            currency=entity.currency,
            method=entity.method.value,
            status=entity.status.value,
            external_ref=entity.external_ref,
            coupon_id=entity.coupon_id,
            retry_count=entity.retry_count,
            last_retry_at=entity.last_retry_at,
            resolution=entity.resolution.value if entity.resolution else None,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            completed_at=entity.completed_at,
            failed_at=entity.failed_at,
            fulfilled_at=entity.fulfilled_at,
            extra_metadata=entity.metadata,
        )

    async def _load(self, payment_id: str) -> Optional[PaymentModel]:
        # 条件更新绕过了 identity map，这里强制刷新
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            user_id=db_payment.user_id,
            method=db_payment.method,
            amount=str(db_payment.amount),
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        db_payment = await self._load(payment_id)
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        """根据网关会话ID或凭证引用获取支付"""
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.external_ref == external_ref)
            .order_by(PaymentModel.created_at.desc())
            .limit(1)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def transition(self, transition: Transition) -> TransitionResult:
        """条件状态变更，失败不抛异常，返回当前行"""
        values = {
            "status": transition.target.value,
            "updated_at": transition.at,
        }
        if transition.external_ref is not None:
            values["external_ref"] = transition.external_ref
        if transition.resolution is not None:
            values["resolution"] = transition.resolution.value
        if transition.target == PaymentStatus.COMPLETED:
            values["completed_at"] = transition.at
        elif transition.target == PaymentStatus.FAILED:
            values["failed_at"] = transition.at
            if transition.reason is not None:
                values["failure_reason"] = transition.reason

        conditions = [
            PaymentModel.id == transition.payment_id,
            PaymentModel.status == transition.expected.value,
        ]
        if transition.requires_unresolved:
            conditions.append(PaymentModel.resolution.is_(None))

        result = await self.session.execute(
            update(PaymentModel)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1

        db_payment = await self._load(transition.payment_id)
        payment = self._to_entity(db_payment) if db_payment else None
        if applied:
            logger.info(
                "payment_transitioned",
                payment_id=transition.payment_id,
                from_status=transition.expected.value,
                to_status=transition.target.value,
            )
        else:
            logger.info(
                "payment_transition_skipped",
                payment_id=transition.payment_id,
                expected=transition.expected.value,
                target=transition.target.value,
                current=payment.status.value if payment else None,
            )
        return TransitionResult(applied=applied, payment=payment)

    async def record_attempt(self, payment_id: str, limit: int, at: datetime) -> bool:
        """retry_count 条件自增，达到上限后不再变化"""
        result = await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.retry_count < limit)
            .values(retry_count=PaymentModel.retry_count + 1, last_retry_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_fulfilled(self, payment_id: str, at: datetime) -> bool:
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == PaymentStatus.COMPLETED.value,
                PaymentModel.fulfilled_at.is_(None),
            )
            .values(fulfilled_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for_reconciliation(
        self,
        bucket: ReconciliationBucket,
        since: datetime,
        limit: int,
        method: Optional[PaymentMethod] = None,
    ) -> List[PaymentView]:
        stmt = (
            select(
                PaymentModel,
                UserModel.name,
                UserModel.email,
                CourseModel.title,
                BundleModel.title,
            )
            .outerjoin(UserModel, UserModel.id == PaymentModel.user_id)
            .outerjoin(CourseModel, CourseModel.id == PaymentModel.course_id)
            .outerjoin(BundleModel, BundleModel.id == PaymentModel.bundle_id)
            .where(_bucket_filter(bucket), PaymentModel.created_at >= since)
        )
        if method is not None:
            stmt = stmt.where(PaymentModel.method == method.value)
        stmt = stmt.order_by(PaymentModel.created_at.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return [
            PaymentView(
                payment=self._to_entity(model),
                user_name=user_name,
                user_email=user_email,
                course_title=course_title,
                bundle_title=bundle_title,
            )
            for model, user_name, user_email, course_title, bundle_title in result.all()
        ]

    async def count_by_bucket(self, since: datetime) -> dict[ReconciliationBucket, int]:
        counts = {bucket: 0 for bucket in ReconciliationBucket}
        result = await self.session.execute(
            select(PaymentModel.status, func.count(PaymentModel.id))
            .where(PaymentModel.created_at >= since)
            .group_by(PaymentModel.status)
        )
        for status, count in result.all():
            try:
                counts[ReconciliationBucket(status)] = count
            except ValueError:
                continue  # completed/refunded are not triage buckets

        unfulfilled = await self.session.execute(
            select(func.count(PaymentModel.id)).where(
                _bucket_filter(ReconciliationBucket.UNFULFILLED),
                PaymentModel.created_at >= since,
            )
        )
        counts[ReconciliationBucket.UNFULFILLED] = unfulfilled.scalar() or 0
        return counts

    async def list_stale_pending(self, older_than: datetime, limit: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.created_at < older_than,
            )
            .order_by(PaymentModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_unfulfilled(self, limit: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(_bucket_filter(ReconciliationBucket.UNFULFILLED))
            .order_by(PaymentModel.completed_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyPaymentAuditRepository(PaymentAuditRepository):
    """审计记录只追加，不修改"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentAuditLogModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            payment_id=model.payment_id,
            action=AuditAction(model.action),
            from_status=PaymentStatus(model.from_status) if model.from_status else None,
            to_status=PaymentStatus(model.to_status) if model.to_status else None,
            actor_id=model.actor_id,
            reason=model.reason,
            details=model.details or {},
            created_at=model.created_at,
        )

    async def add(self, entry: AuditEntry) -> AuditEntry:
        db_entry = PaymentAuditLogModel(
            id=entry.id,
            payment_id=entry.payment_id,
            action=entry.action.value,
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value if entry.to_status else None,
            actor_id=entry.actor_id,
            reason=entry.reason,
            details=entry.details or None,
            created_at=entry.created_at,
        )
        self.session.add(db_entry)
        await self.session.flush()
        logger.info(
            "payment_audit_recorded",
            payment_id=entry.payment_id,
            action=entry.action.value,
            actor_id=entry.actor_id,
        )
        return self._to_entity(db_entry)

    async def list_for_payment(self, payment_id: str) -> List[AuditEntry]:
        result = await self.session.execute(
            select(PaymentAuditLogModel)
            .where(PaymentAuditLogModel.payment_id == payment_id)
            .order_by(PaymentAuditLogModel.created_at.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
