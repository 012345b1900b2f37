"""
目录仓储实现（只读）
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import CatalogItem, ItemKind, ItemRef
from domain.catalog.repository import CatalogRepository
from infrastructure.models.catalog import BundleCourseModel, BundleModel, CourseModel


PUBLISHED = "published"


class SQLAlchemyCatalogRepository(CatalogRepository):
    """目录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _bundle_courses(self, bundle_id: str) -> list[tuple[str, Decimal]]:
        result = await self.session.execute(
            select(CourseModel.id, CourseModel.price)
            .join(BundleCourseModel, BundleCourseModel.course_id == CourseModel.id)
            .where(BundleCourseModel.bundle_id == bundle_id)
            .order_by(BundleCourseModel.order_index.asc())
        )
        return [(course_id, Decimal(str(price))) for course_id, price in result.all()]

    async def resolve(self, ref: ItemRef) -> Optional[CatalogItem]:
        if ref.kind == ItemKind.COURSE:
            course = await self.session.get(CourseModel, ref.id)
            if course is None:
                return None
            return CatalogItem(
                ref=ref,
                title=course.title,
                price=Decimal(str(course.price)),
                currency=course.currency,
                course_ids=[course.id],
                slug=course.slug,
                is_published=course.status == PUBLISHED,
            )

        result = await self.session.execute(
            select(BundleModel).where(BundleModel.id == ref.id)
        )
        bundle = result.scalar_one_or_none()
        if bundle is None:
            return None
        courses = await self._bundle_courses(bundle.id)
        return CatalogItem(
            ref=ref,
            title=bundle.title,
            price=Decimal(str(bundle.price)),
            currency=bundle.currency,
            course_ids=[course_id for course_id, _ in courses],
            list_price=sum((price for _, price in courses), Decimal("0")),
            slug=bundle.slug,
            is_published=bundle.status == PUBLISHED,
        )

    async def get_course_ids(self, ref: ItemRef) -> list[str]:
        if ref.kind == ItemKind.COURSE:
            course = await self.session.get(CourseModel, ref.id)
            return [course.id] if course else []
        return [course_id for course_id, _ in await self._bundle_courses(ref.id)]
