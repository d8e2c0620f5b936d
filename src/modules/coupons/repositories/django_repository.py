"""Django ORM implementation of the Coupon repository."""

from __future__ import annotations

from typing import Optional

import structlog
from django.db import transaction
from django.db.models import F

from modules.coupons.models import Coupon, CouponUsage
from modules.coupons.repositories.interfaces import ICouponRepository

logger = structlog.get_logger(__name__)


class CouponDjangoRepository(ICouponRepository):
    """Concrete Coupon repository backed by Django ORM."""

    def get_by_code(self, code: str) -> Optional[Coupon]:
        return Coupon.objects.filter(code=code.strip().lower()).first()

    @transaction.atomic
    def increase_usage(self, coupon: Coupon, used_by: str) -> int:
        Coupon.objects.filter(pk=coupon.pk).update(usage_count=F("usage_count") + 1)
        if used_by:
            CouponUsage.objects.create(coupon=coupon, used_by=str(used_by))
        coupon.refresh_from_db(fields=["usage_count"])
        logger.info(
            "coupon.usage_increased",
            code=coupon.code,
            usage_count=coupon.usage_count,
        )
        return coupon.usage_count

    @transaction.atomic
    def decrease_usage(self, coupon: Coupon, used_by: str) -> int:
        Coupon.objects.filter(pk=coupon.pk, usage_count__gt=0).update(
            usage_count=F("usage_count") - 1
        )
        if used_by:
            usage = (
                CouponUsage.objects.filter(coupon=coupon, used_by=str(used_by))
                .order_by("created_at")
                .first()
            )
            if usage:
                usage.delete()
        coupon.refresh_from_db(fields=["usage_count"])
        logger.info(
            "coupon.usage_decreased",
            code=coupon.code,
            usage_count=coupon.usage_count,
        )
        return coupon.usage_count
