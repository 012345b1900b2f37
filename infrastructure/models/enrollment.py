"""
选课记录数据库模型
"""
from sqlalchemy import Column, String, Numeric, DateTime, UniqueConstraint, Index
from datetime import datetime, timezone

from .base import Base


class EnrollmentModel(Base):
    """(user_id, course_id) 唯一，重复授予由唯一约束兜底"""
    __tablename__ = "enrollments"

    id = Column(String(32), primary_key=True, comment="选课ID")
    user_id = Column(String(32), nullable=False, comment="用户ID")
    course_id = Column(String(32), nullable=False, index=True, comment="课程ID")
    payment_id = Column(String(32), nullable=True, index=True, comment="来源支付ID，免费课程为空")

    # 学习进度由学习子系统维护
    progress_percent = Column(Numeric(precision=5, scale=2), nullable=False, default=0, comment="学习进度")
    enrolled_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="选课时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
        Index("ix_enrollments_user", "user_id"),
    )

    def __repr__(self):
        return f"<EnrollmentModel(user_id='{self.user_id}', course_id='{self.course_id}')>"
