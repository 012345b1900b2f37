"""
用户数据库模型 - SQLAlchemy ORM模型
注意：用户由身份服务管理，这里只保留对账列表需要的展示字段
"""
from sqlalchemy import Column, String, DateTime
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """
    用户数据库模型（只读投影）
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, comment="用户ID")
    name = Column(String(100), nullable=True, comment="显示名称")
    email = Column(String(255), nullable=True, index=True, comment="邮箱")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    def __repr__(self):
        return f"<UserModel(id='{self.id}', email='{self.email}')>"
