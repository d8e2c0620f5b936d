"""Order transient invalidation.

Clears report caches, the customer's cached spend/count and every entry
under the versioned ``orders`` prefix after an order changes.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from modules.core.cache import VersionedCache
from modules.orders import signals
from modules.orders.config import OrderOptions
from modules.orders.models import Order

logger = structlog.get_logger(__name__)


def customer_cache_keys(user_id: Any) -> tuple[str, str]:
    return f"customer_{user_id}_money_spent", f"customer_{user_id}_order_count"


class OrderTransients:
    def __init__(
        self,
        cache: Optional[VersionedCache] = None,
        options: Callable[[], OrderOptions] = OrderOptions.from_settings,
    ) -> None:
        self._cache = cache or VersionedCache()
        self._options = options

    def delete(self, order_id: Any = 0) -> None:
        for key in self._options().report_cache_keys:
            self._cache.delete_raw(key)

        if order_id:
            user_id = (
                Order.objects.filter(id=order_id)
                .values_list("customer_user", flat=True)
                .first()
            )
            if user_id:
                for key in customer_cache_keys(user_id):
                    self._cache.delete_raw(key)

        self._cache.get_transient_version("orders", refresh=True)
        self._cache.bump_prefix("orders")

        logger.info("order.transients_cleared", order_id=order_id)
        signals.order_transients_cleared.send(sender=Order, order_id=order_id)
