"""Enrollment domain exports."""
from .entity import Enrollment, GrantResult
from .repository import EnrollmentRepository

__all__ = ["Enrollment", "GrantResult", "EnrollmentRepository"]
