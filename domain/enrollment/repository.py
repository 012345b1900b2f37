"""
Enrollment repository interface.
"""
from abc import ABC, abstractmethod

from .entity import Enrollment


class EnrollmentRepository(ABC):

    @abstractmethod
    async def add_if_absent(self, enrollment: Enrollment) -> bool:
        """Insert the row unless (user_id, course_id) already exists.

        Returns True when a new row was created.
        """
        pass

    @abstractmethod
    async def exists(self, user_id: str, course_id: str) -> bool:
        pass

    @abstractmethod
    async def owned_course_ids(self, user_id: str, course_ids: list[str]) -> set[str]:
        """Subset of `course_ids` the user is already enrolled in"""
        pass
