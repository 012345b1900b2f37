"""
Catalog repository interface (read-only).
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import CatalogItem, ItemRef


class CatalogRepository(ABC):

    @abstractmethod
    async def resolve(self, ref: ItemRef) -> Optional[CatalogItem]:
        """Resolve an item reference with its price and ordered course ids"""
        pass

    @abstractmethod
    async def get_course_ids(self, ref: ItemRef) -> list[str]:
        """Course ids the item unlocks, read fresh"""
        pass
