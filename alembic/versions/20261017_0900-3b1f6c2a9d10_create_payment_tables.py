"""create_payment_tables

Revision ID: 3b1f6c2a9d10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Read-only projections of users and catalog
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=32), nullable=False, comment='用户ID'),
        sa.Column('name', sa.String(length=100), nullable=True, comment='显示名称'),
        sa.Column('email', sa.String(length=255), nullable=True, comment='邮箱'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=False)

    op.create_table(
        'courses',
        sa.Column('id', sa.String(length=32), nullable=False, comment='课程ID'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='标题'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL slug'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0', comment='价格'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='THB', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft', comment='draft/published/archived'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_courses_status', 'courses', ['status'], unique=False)

    op.create_table(
        'bundles',
        sa.Column('id', sa.String(length=32), nullable=False, comment='课程包ID'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='标题'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL slug'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='打包价格'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='THB', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft', comment='draft/published/archived'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_bundles_status', 'bundles', ['status'], unique=False)

    op.create_table(
        'bundle_courses',
        sa.Column('bundle_id', sa.String(length=32), nullable=False, comment='课程包ID'),
        sa.Column('course_id', sa.String(length=32), nullable=False, comment='课程ID'),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0', comment='包内顺序'),
        sa.ForeignKeyConstraint(['bundle_id'], ['bundles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('bundle_id', 'course_id'),
    )
    op.create_index('ix_bundle_courses_bundle_order', 'bundle_courses', ['bundle_id', 'order_index'], unique=False)

    op.create_table(
        'enrollments',
        sa.Column('id', sa.String(length=32), nullable=False, comment='选课ID'),
        sa.Column('user_id', sa.String(length=32), nullable=False, comment='用户ID'),
        sa.Column('course_id', sa.String(length=32), nullable=False, comment='课程ID'),
        sa.Column('payment_id', sa.String(length=32), nullable=True, comment='来源支付ID，免费课程为空'),
        sa.Column('progress_percent', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0', comment='学习进度'),
        sa.Column('enrolled_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='选课时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'course_id', name='uq_enrollments_user_course'),
    )
    op.create_index('ix_enrollments_user', 'enrollments', ['user_id'], unique=False)
    op.create_index('ix_enrollments_course_id', 'enrollments', ['course_id'], unique=False)
    op.create_index('ix_enrollments_payment_id', 'enrollments', ['payment_id'], unique=False)

    op.create_table(
        'coupons',
        sa.Column('id', sa.String(length=32), nullable=False, comment='优惠券ID'),
        sa.Column('code', sa.String(length=50), nullable=False, comment='券码（大写）'),
        sa.Column('discount_kind', sa.String(length=10), nullable=False, comment='percent/fixed'),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False, comment='折扣值'),
        sa.Column('max_redemptions', sa.Integer(), nullable=True, comment='总可用次数，空表示不限'),
        sa.Column('redeemed_count', sa.Integer(), nullable=False, server_default='0', comment='已使用次数'),
        sa.Column('per_user_limit', sa.Integer(), nullable=True, comment='每用户可用次数'),
        sa.Column('min_purchase', sa.Numeric(precision=12, scale=2), nullable=True, comment='最低消费'),
        sa.Column('max_discount', sa.Numeric(precision=12, scale=2), nullable=True, comment='百分比折扣上限'),
        sa.Column('course_id', sa.String(length=32), nullable=True, comment='仅限该课程'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), comment='是否启用'),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True, comment='生效时间'),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True, comment='失效时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.CheckConstraint(
            'max_redemptions IS NULL OR redeemed_count <= max_redemptions',
            name='ck_coupons_redeemed_within_limit',
        ),
    )

    op.create_table(
        'coupon_usages',
        sa.Column('id', sa.String(length=32), nullable=False, comment='使用记录ID'),
        sa.Column('coupon_id', sa.String(length=32), nullable=False, comment='优惠券ID'),
        sa.Column('user_id', sa.String(length=32), nullable=False, comment='用户ID'),
        sa.Column('payment_id', sa.String(length=32), nullable=True, comment='关联支付ID，免费选课为空'),
        sa.Column('discount_amount', sa.Numeric(precision=12, scale=2), nullable=True, comment='本次抵扣金额'),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='使用时间'),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_coupon_usages_coupon_user', 'coupon_usages', ['coupon_id', 'user_id'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=32), nullable=False, comment='支付ID'),
        sa.Column('user_id', sa.String(length=32), nullable=False, comment='用户ID'),
        sa.Column('course_id', sa.String(length=32), nullable=True, comment='课程ID'),
        sa.Column('bundle_id', sa.String(length=32), nullable=True, comment='课程包ID'),
        sa.Column('item_title', sa.String(length=255), nullable=True, comment='下单时的商品标题'),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='THB', comment='货币代码 ISO-4217'),
        sa.Column('method', sa.String(length=20), nullable=False, comment='card_gateway/bank_transfer'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='支付状态: pending/verifying/completed/failed/refunded'),
        sa.Column('external_ref', sa.String(length=255), nullable=True, comment='网关会话ID或转账凭证引用'),
        sa.Column('coupon_id', sa.String(length=32), nullable=True, comment='使用的优惠券ID'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0', comment='人工处理次数'),
        sa.Column('last_retry_at', sa.DateTime(timezone=True), nullable=True, comment='最近人工处理时间'),
        sa.Column('resolution', sa.String(length=20), nullable=True, comment='人工结论: approved/rejected'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True, comment='失败时间'),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True, comment='选课授予完成时间'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            '(course_id IS NULL) <> (bundle_id IS NULL)',
            name='ck_payments_single_item',
        ),
    )
    op.create_index('ix_payments_course_id', 'payments', ['course_id'], unique=False)
    op.create_index('ix_payments_bundle_id', 'payments', ['bundle_id'], unique=False)
    op.create_index('ix_payments_external_ref', 'payments', ['external_ref'], unique=False)
    op.create_index('ix_payments_status_created', 'payments', ['status', 'created_at'], unique=False)
    op.create_index('ix_payments_user_status', 'payments', ['user_id', 'status'], unique=False)

    op.create_table(
        'payment_audit_logs',
        sa.Column('id', sa.String(length=32), nullable=False, comment='审计ID'),
        sa.Column('payment_id', sa.String(length=32), nullable=False, comment='支付ID'),
        sa.Column('action', sa.String(length=30), nullable=False, comment='操作类型'),
        sa.Column('from_status', sa.String(length=20), nullable=True, comment='原状态'),
        sa.Column('to_status', sa.String(length=20), nullable=True, comment='新状态'),
        sa.Column('actor_id', sa.String(length=32), nullable=False, server_default='system', comment='操作人，自动操作为 system'),
        sa.Column('reason', sa.Text(), nullable=True, comment='原因'),
        sa.Column('details', sa.JSON(), nullable=True, comment='附加信息'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_audit_logs_payment_id', 'payment_audit_logs', ['payment_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_audit_logs_payment_id', table_name='payment_audit_logs')
    op.drop_table('payment_audit_logs')

    for name in (
        'ix_payments_user_status',
        'ix_payments_status_created',
        'ix_payments_external_ref',
        'ix_payments_bundle_id',
        'ix_payments_course_id',
    ):
        op.drop_index(name, table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_coupon_usages_coupon_user', table_name='coupon_usages')
    op.drop_table('coupon_usages')
    op.drop_table('coupons')

    op.drop_index('ix_enrollments_payment_id', table_name='enrollments')
    op.drop_index('ix_enrollments_course_id', table_name='enrollments')
    op.drop_index('ix_enrollments_user', table_name='enrollments')
    op.drop_table('enrollments')

    op.drop_index('ix_bundle_courses_bundle_order', table_name='bundle_courses')
    op.drop_table('bundle_courses')
    op.drop_index('ix_bundles_status', table_name='bundles')
    op.drop_table('bundles')
    op.drop_index('ix_courses_status', table_name='courses')
    op.drop_table('courses')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
