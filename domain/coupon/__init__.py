"""Coupon domain exports."""
from .entity import Coupon, CouponRedemption, DiscountKind, normalize_code
from .repository import CouponRepository

__all__ = ["Coupon", "CouponRedemption", "DiscountKind", "normalize_code", "CouponRepository"]
