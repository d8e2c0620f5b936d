"""Django ORM implementation of the order/item metadata repository.

Values are stored as text: ``None`` becomes ``""``, booleans ``"1"``/``""``.
Keys may repeat for one object; ``single`` reads return the first row.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type

import structlog
from django.db import models, transaction

from modules.orders.models import OrderItemMeta, OrderMeta
from modules.orders.repositories.interfaces import IMetadataRepository

logger = structlog.get_logger(__name__)

ORDER = "order"
ORDER_ITEM = "order_item"

_TABLES: Dict[str, Tuple[Type[models.Model], str]] = {
    ORDER: (OrderMeta, "order_id"),
    ORDER_ITEM: (OrderItemMeta, "item_id"),
}


def to_meta_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    return str(value)


class MetadataDjangoRepository(IMetadataRepository):
    """Concrete metadata repository for the ``order`` and ``order_item`` kinds."""

    @staticmethod
    def _table(kind: str) -> Tuple[Type[models.Model], str]:
        try:
            return _TABLES[kind]
        except KeyError:
            raise ValueError(f"Unknown metadata kind: {kind!r}") from None

    def _rows(self, kind: str, object_id: Any) -> models.QuerySet:
        model, fk = self._table(kind)
        return model.objects.filter(**{fk: object_id}).order_by("id")

    def get(
        self, kind: str, object_id: Any, key: str = "", single: bool = True
    ) -> Any:
        rows = self._rows(kind, object_id)
        if not key:
            grouped: Dict[str, List[str]] = {}
            for row_key, value in rows.values_list("key", "value"):
                grouped.setdefault(row_key, []).append(value)
            return grouped

        values = list(rows.filter(key=key).values_list("value", flat=True))
        if single:
            return values[0] if values else ""
        return values

    @transaction.atomic
    def add(
        self, kind: str, object_id: Any, key: str, value: Any, unique: bool = False
    ) -> Optional[int]:
        model, fk = self._table(kind)
        if unique and self._rows(kind, object_id).filter(key=key).exists():
            return None
        row = model.objects.create(
            **{fk: object_id, "key": key, "value": to_meta_text(value)}
        )
        return row.id

    @transaction.atomic
    def update(
        self,
        kind: str,
        object_id: Any,
        key: str,
        value: Any,
        prev_value: Optional[Any] = None,
    ) -> bool:
        rows = self._rows(kind, object_id).filter(key=key)
        if not rows.exists():
            return self.add(kind, object_id, key, value) is not None
        if prev_value is not None and prev_value != "":
            rows = rows.filter(value=to_meta_text(prev_value))
        return rows.update(value=to_meta_text(value)) > 0

    @transaction.atomic
    def delete(
        self,
        kind: str,
        object_id: Any,
        key: str,
        value: Optional[Any] = None,
        delete_all: bool = False,
    ) -> bool:
        model, fk = self._table(kind)
        rows = model.objects.filter(key=key)
        if not delete_all:
            rows = rows.filter(**{fk: object_id})
        if value is not None and value != "":
            rows = rows.filter(value=to_meta_text(value))
        deleted, _ = rows.delete()
        if deleted:
            logger.debug("meta.deleted", kind=kind, object_id=object_id, key=key)
        return deleted > 0
