"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .catalog import CourseModel, BundleModel, BundleCourseModel
from .coupon import CouponModel, CouponUsageModel
from .enrollment import EnrollmentModel
from .payment import PaymentModel, PaymentAuditLogModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "CourseModel",
    "BundleModel",
    "BundleCourseModel",
    "CouponModel",
    "CouponUsageModel",
    "EnrollmentModel",
    "PaymentModel",
    "PaymentAuditLogModel",
]
