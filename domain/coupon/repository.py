"""
Coupon repository interface.
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Coupon, CouponRedemption


class CouponRepository(ABC):

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Coupon]:
        """Look up a coupon by its normalized code"""
        pass

    @abstractmethod
    async def get_by_id(self, coupon_id: str) -> Optional[Coupon]:
        pass

    @abstractmethod
    async def try_increment(self, coupon_id: str) -> bool:
        """Consume one redemption slot.

        Conditional on the stored count still being below the limit; returns
        False when the last slot was already taken.
        """
        pass

    @abstractmethod
    async def add_redemption(self, redemption: CouponRedemption) -> CouponRedemption:
        pass

    @abstractmethod
    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        pass
