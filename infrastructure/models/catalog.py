"""
课程目录数据库模型 - 课程、课程包及包内课程
注意：目录由内容管理端维护，支付核心只读
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Index
)
from datetime import datetime, timezone

from .base import Base


class CourseModel(Base):
    __tablename__ = "courses"

    id = Column(String(32), primary_key=True, comment="课程ID")
    title = Column(String(255), nullable=False, comment="标题")
    slug = Column(String(255), unique=True, nullable=False, comment="URL slug")
    price = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="价格")
    currency = Column(String(3), nullable=False, default="THB", comment="货币代码 ISO-4217")
    status = Column(String(20), nullable=False, default="draft", index=True, comment="draft/published/archived")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    def __repr__(self):
        return f"<CourseModel(id='{self.id}', slug='{self.slug}', price={self.price})>"


class BundleModel(Base):
    __tablename__ = "bundles"

    id = Column(String(32), primary_key=True, comment="课程包ID")
    title = Column(String(255), nullable=False, comment="标题")
    slug = Column(String(255), unique=True, nullable=False, comment="URL slug")
    price = Column(Numeric(precision=12, scale=2), nullable=False, comment="打包价格")
    currency = Column(String(3), nullable=False, default="THB", comment="货币代码 ISO-4217")
    status = Column(String(20), nullable=False, default="draft", index=True, comment="draft/published/archived")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    def __repr__(self):
        return f"<BundleModel(id='{self.id}', slug='{self.slug}', price={self.price})>"


class BundleCourseModel(Base):
    __tablename__ = "bundle_courses"

    bundle_id = Column(
        String(32),
        ForeignKey("bundles.id", ondelete="CASCADE"),
        primary_key=True,
        comment="课程包ID"
    )
    course_id = Column(
        String(32),
        ForeignKey("courses.id", ondelete="CASCADE"),
        primary_key=True,
        comment="课程ID"
    )
    order_index = Column(Integer, nullable=False, default=0, comment="包内顺序")

    __table_args__ = (
        Index("ix_bundle_courses_bundle_order", "bundle_id", "order_index"),
    )
