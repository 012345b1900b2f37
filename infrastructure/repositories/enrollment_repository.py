"""
选课仓储实现

重复授予依赖 (user_id, course_id) 唯一约束：按方言使用 INSERT ... ON CONFLICT DO NOTHING
或 INSERT IGNORE，其余方言退回到 SAVEPOINT + IntegrityError。
"""
from datetime import datetime, timezone

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.enrollment.entity import Enrollment
from domain.enrollment.repository import EnrollmentRepository
from infrastructure.models.enrollment import EnrollmentModel


logger = get_logger(__name__)


class SQLAlchemyEnrollmentRepository(EnrollmentRepository):
    """选课仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _values(self, enrollment: Enrollment) -> dict:
        return {
            "id": enrollment.id,
            "user_id": enrollment.user_id,
            "course_id": enrollment.course_id,
            "payment_id": enrollment.payment_id,
            "enrolled_at": enrollment.enrolled_at or datetime.now(timezone.utc),
            "progress_percent": enrollment.progress_percent,
            "completed_at": enrollment.completed_at,
        }

    async def add_if_absent(self, enrollment: Enrollment) -> bool:
        values = self._values(enrollment)
        dialect = self.session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            builder = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = builder(EnrollmentModel).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "course_id"]
            )
            result = await self.session.execute(stmt)
            created = result.rowcount == 1
        elif dialect in ("mysql", "mariadb"):
            stmt = insert(EnrollmentModel).values(**values).prefix_with("IGNORE")
            result = await self.session.execute(stmt)
            created = result.rowcount == 1
        else:
            try:
                async with self.session.begin_nested():
                    await self.session.execute(insert(EnrollmentModel).values(**values))
                created = True
            except IntegrityError:
                created = False

        if created:
            logger.info(
                "enrollment_created",
                user_id=enrollment.user_id,
                course_id=enrollment.course_id,
                payment_id=enrollment.payment_id,
            )
        return created

    async def exists(self, user_id: str, course_id: str) -> bool:
        result = await self.session.execute(
            select(EnrollmentModel.id).where(
                EnrollmentModel.user_id == user_id,
                EnrollmentModel.course_id == course_id,
            )
        )
        return result.first() is not None

    async def owned_course_ids(self, user_id: str, course_ids: list[str]) -> set[str]:
        if not course_ids:
            return set()
        result = await self.session.execute(
            select(EnrollmentModel.course_id).where(
                EnrollmentModel.user_id == user_id,
                EnrollmentModel.course_id.in_(course_ids),
            )
        )
        return set(result.scalars().all())
