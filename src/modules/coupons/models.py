"""Coupon and CouponUsage models.

Business rules implemented:
- Coupon codes are unique and normalised to lowercase.
- ``usage_count`` is moved only with ``F()`` expressions and never drops
  below zero.
- Every recorded use keeps a ``CouponUsage`` row naming the paying
  identity (user id, or billing email for guests); reversing a use removes
  exactly one such row.
"""

from __future__ import annotations

import structlog
from django.db import models

from modules.core.models import BaseModel

logger = structlog.get_logger(__name__)


class Coupon(BaseModel):
    """Discount coupon with a cumulative usage counter."""

    code = models.CharField(max_length=100, unique=True)
    usage_count = models.PositiveIntegerField(default=0)
    usage_limit = models.PositiveIntegerField(null=True, blank=True, default=None)

    class Meta:
        db_table = "coupons"
        ordering = ["code"]

    def save(self, *args, **kwargs) -> None:
        if self.code:
            self.code = self.code.strip().lower()
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.code} (used {self.usage_count}x)"


class CouponUsage(BaseModel):
    """One recorded use of a coupon by a customer identity."""

    coupon = models.ForeignKey(
        "coupons.Coupon",
        on_delete=models.CASCADE,
        related_name="usages",
    )
    used_by = models.CharField(max_length=254)

    class Meta:
        db_table = "coupon_usages"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["coupon", "used_by"], name="coupon_usage_by_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.coupon_id} used by {self.used_by}"
