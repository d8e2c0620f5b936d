"""Django ORM implementation of the line item ledger.

Item meta reads go through a cached ``item_meta_array_<id>`` entry under the
versioned ``orders`` prefix; every item meta write deletes that entry.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from django.db import transaction

from modules.core.cache import VersionedCache
from modules.orders.models import Order, OrderItem, OrderItemMeta
from modules.orders.repositories.interfaces import IOrderItemRepository
from modules.orders.repositories.metadata_repository import (
    ORDER_ITEM,
    MetadataDjangoRepository,
)

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "item_type",
        "product_id",
        "quantity",
        "subtotal",
        "subtotal_tax",
        "total",
        "total_tax",
        "taxes",
    }
)


class OrderItemDjangoRepository(IOrderItemRepository):
    """Concrete line item repository backed by Django ORM."""

    def __init__(
        self,
        cache: Optional[VersionedCache] = None,
        metadata: Optional[MetadataDjangoRepository] = None,
    ) -> None:
        self._cache = cache or VersionedCache()
        self._metadata = metadata or MetadataDjangoRepository()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    @transaction.atomic
    def add_item(
        self, order_id: Any, name: str, item_type: str, **fields: Any
    ) -> Optional[int]:
        if not order_id or not Order.objects.filter(id=order_id).exists():
            return None
        _check_fields(fields)
        item = OrderItem.objects.create(
            order_id=order_id, name=name, item_type=item_type, **fields
        )
        logger.info(
            "order_item.added",
            order_id=order_id,
            item_id=item.id,
            item_type=item_type,
        )
        return item.id

    @transaction.atomic
    def update_item(self, item_id: Any, **fields: Any) -> bool:
        _check_fields(fields)
        if not fields:
            return OrderItem.objects.filter(id=item_id).exists()
        updated = OrderItem.objects.filter(id=item_id).update(**fields)
        if updated:
            logger.info("order_item.updated", item_id=item_id, fields=sorted(fields))
        return updated > 0

    @transaction.atomic
    def delete_item(self, item_id: Any) -> bool:
        if not item_id:
            return False
        OrderItemMeta.objects.filter(item_id=item_id).delete()
        deleted, _ = OrderItem.objects.filter(id=item_id).delete()
        self._invalidate(item_id)
        if deleted:
            logger.info("order_item.deleted", item_id=item_id)
        return deleted > 0

    def get_items(
        self, order_id: Any, types: Optional[Sequence[str]] = None
    ) -> List[OrderItem]:
        queryset = OrderItem.objects.select_related("product").filter(
            order_id=order_id
        )
        if types:
            queryset = queryset.filter(item_type__in=types)
        return list(queryset)

    # ------------------------------------------------------------------
    # Item meta
    # ------------------------------------------------------------------

    def _cache_key(self, item_id: Any) -> str:
        return f"item_meta_array_{item_id}"

    def _invalidate(self, item_id: Any) -> None:
        self._cache.delete(self._cache_key(item_id), self._cache.get_prefix("orders"))

    def get_meta_array(self, item_id: Any) -> List[Tuple[int, str, str]]:
        """All ``(meta_id, key, value)`` rows of an item, cached."""
        namespace = self._cache.get_prefix("orders")
        rows = self._cache.get(self._cache_key(item_id), namespace)
        if rows is None:
            rows = list(
                OrderItemMeta.objects.filter(item_id=item_id)
                .order_by("id")
                .values_list("id", "key", "value")
            )
            self._cache.set(self._cache_key(item_id), rows, namespace)
        return rows

    def get_meta(self, item_id: Any, key: str = "", single: bool = True) -> Any:
        rows = self.get_meta_array(item_id)
        if not key:
            grouped: Dict[str, List[str]] = {}
            for _, row_key, value in rows:
                grouped.setdefault(row_key, []).append(value)
            return grouped
        values = [value for _, row_key, value in rows if row_key == key]
        if single:
            return values[0] if values else ""
        return values

    def add_meta(
        self, item_id: Any, key: str, value: Any, unique: bool = False
    ) -> Optional[int]:
        meta_id = self._metadata.add(ORDER_ITEM, item_id, key, value, unique=unique)
        self._invalidate(item_id)
        return meta_id

    def update_meta(
        self, item_id: Any, key: str, value: Any, prev_value: Optional[Any] = None
    ) -> bool:
        updated = self._metadata.update(
            ORDER_ITEM, item_id, key, value, prev_value=prev_value
        )
        self._invalidate(item_id)
        return updated

    def delete_meta(
        self,
        item_id: Any,
        key: str,
        value: Optional[Any] = None,
        delete_all: bool = False,
    ) -> bool:
        deleted = self._metadata.delete(
            ORDER_ITEM, item_id, key, value=value, delete_all=delete_all
        )
        if delete_all:
            # Other items lost rows too.
            self._cache.bump_prefix("orders")
        else:
            self._invalidate(item_id)
        return deleted


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown order item fields: {', '.join(sorted(unknown))}")
