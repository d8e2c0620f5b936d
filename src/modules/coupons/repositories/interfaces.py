"""Coupon repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from modules.coupons.models import Coupon


class ICouponRepository(ABC):
    """Repository contract for coupon usage accounting."""

    @abstractmethod
    def get_by_code(self, code: str) -> Optional[Coupon]:
        """Retrieve a coupon by its (case-insensitive) code."""

    @abstractmethod
    def increase_usage(self, coupon: Coupon, used_by: str) -> int:
        """Record one use by *used_by*; return the new usage count."""

    @abstractmethod
    def decrease_usage(self, coupon: Coupon, used_by: str) -> int:
        """Reverse one use by *used_by*; return the new usage count."""
