"""
Enrollment entity - a user's access to one course.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Enrollment:
    """Unique on (user_id, course_id). Progress fields belong to the learning side."""

    id: str
    user_id: str
    course_id: str
    payment_id: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    progress_percent: Decimal = Decimal("0")
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self.enrolled_at = _ensure_utc(self.enrolled_at)
        self.completed_at = _ensure_utc(self.completed_at)


@dataclass
class GrantResult:
    """Set-union outcome of a grant: which courses were new and which already owned."""

    user_id: str
    newly_granted: list[str] = field(default_factory=list)
    already_owned: list[str] = field(default_factory=list)

    @property
    def course_ids(self) -> list[str]:
        return self.newly_granted + self.already_owned
