"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
All write operations are wrapped in ``transaction.atomic()`` to ensure
the Order aggregate (Order + OrderItems + OrderMeta) is persisted atomically.

Concurrency control on status updates and effect markers uses
``select_for_update()`` (the order row is the per-order lock).
"""

from __future__ import annotations

import json
import operator
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from functools import reduce
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import transaction
from django.db.models import Q, Sum

from modules.core.cache import VersionedCache
from modules.core.models import OutboxEvent
from modules.orders.constants import MetaKey, OrderStatus, OrderType
from modules.orders.dtos import OrderQueryDTO
from modules.orders.models import (
    DownloadPermission,
    Order,
    OrderItem,
    OrderItemMeta,
    OrderMeta,
    OrderNote,
)
from modules.orders.repositories.interfaces import IOrderRepository
from modules.orders.repositories.metadata_repository import to_meta_text

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")

_ORDERBY_FIELDS = {
    "date": "created_at",
    "modified": "updated_at",
    "id": "id",
    "total": "total",
}


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    def __init__(self, cache: Optional[VersionedCache] = None) -> None:
        self._cache = cache or VersionedCache()

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items and meta atomically.

        ``data`` keys:
        - any ``Order`` field (``status``, ``order_type``, ``parent_id``...)
        - ``items`` (optional): list of ``OrderItem`` field dicts, each with
          an optional ``meta`` dict
        - ``meta`` (optional): dict of order meta
        """
        fields = dict(data)
        items = fields.pop("items", [])
        meta = fields.pop("meta", {})

        order = Order(**fields)
        order.save()

        for item_data in items:
            item_fields = dict(item_data)
            item_meta = item_fields.pop("meta", {})
            item = OrderItem.objects.create(order=order, **item_fields)
            OrderItemMeta.objects.bulk_create(
                OrderItemMeta(item=item, key=key, value=to_meta_text(value))
                for key, value in item_meta.items()
            )

        OrderMeta.objects.bulk_create(
            OrderMeta(order=order, key=key, value=to_meta_text(value))
            for key, value in meta.items()
        )

        logger.info(
            "order.created",
            order_id=order.id,
            order_type=order.order_type,
            item_count=len(items),
        )
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: Any) -> Optional[Order]:
        """Retrieve an order with eager-loaded items.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.prefetch_related("items__product")
                .filter(id=id)
                .first()
            )
        except (ValueError, TypeError, ValidationError):
            return None

    def get_for_update(self, id: Any) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Must run inside a transaction.  Returns ``None`` for non-existent or
        invalid IDs.
        """
        try:
            return Order.objects.select_for_update().filter(id=id).first()
        except (ValueError, TypeError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
        """List orders with optional Django ORM look-ups."""
        queryset = Order.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def find(self, query: OrderQueryDTO) -> Tuple[List[Order], int]:
        """Run a resolved ``OrderQueryDTO``.

        ``query.type`` and ``query.limit`` are expected to be resolved by the
        caller.  The total is only counted when ``query.paginate`` is set.
        """
        queryset = Order.objects.all()
        if query.type:
            queryset = queryset.filter(order_type__in=query.type)
        if query.status is not None:
            queryset = queryset.filter(status__in=query.status)
        if query.parent is not None:
            queryset = queryset.filter(parent_id=abs(query.parent))
        if query.customer:
            queryset = queryset.filter(_customer_condition(query.customer))
        if query.exclude:
            queryset = queryset.exclude(id__in=[abs(pk) for pk in query.exclude])

        if query.orderby == "rand":
            queryset = queryset.order_by("?")
        else:
            prefix = "-" if query.order == "DESC" else ""
            field = _ORDERBY_FIELDS[query.orderby]
            queryset = queryset.order_by(f"{prefix}{field}", f"{prefix}id")

        total = queryset.count() if query.paginate else 0

        limit = query.limit if query.limit is not None else -1
        if query.offset is not None:
            start = query.offset
        elif limit > 0:
            start = (query.page - 1) * limit
        else:
            start = 0
        page = queryset[start:] if limit < 0 else queryset[start : start + limit]
        return list(page), total

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return (
            Order.objects.prefetch_related("items__product")
            .filter(idempotency_key=key)
            .first()
        )

    def get_order_id_by_order_key(self, order_key: str) -> int:
        order_id = (
            OrderMeta.objects.filter(key=MetaKey.ORDER_KEY, value=order_key)
            .values_list("order_id", flat=True)
            .first()
        )
        return order_id or 0

    def get_total_refunded(self, order_id: Any, cached: bool = True) -> Decimal:
        """Positive sum of every refund of *order_id*.

        Cached under the versioned ``orders`` prefix; creating a refund bumps
        the prefix.  Pass ``cached=False`` to read through.
        """
        key = f"total_refunded_{order_id}"
        namespace = self._cache.get_prefix("orders")
        if cached:
            value = self._cache.get(key, namespace)
            if value is not None:
                return Decimal(value)

        result = Order.objects.filter(
            parent_id=order_id, order_type=OrderType.REFUND
        ).aggregate(value=Sum("total"))["value"]
        total_refunded = ZERO - (result or ZERO)
        if cached:
            self._cache.set(key, str(total_refunded), namespace)
        return total_refunded

    @transaction.atomic
    def grant_download_permission(
        self, data: Dict[str, Any]
    ) -> Tuple[DownloadPermission, bool]:
        fields = dict(data)
        permission, created = DownloadPermission.objects.get_or_create(
            download_id=fields.pop("download_id"),
            product_id=fields.pop("product_id"),
            order_id=fields.pop("order_id"),
            defaults=fields,
        )
        if created:
            logger.info(
                "order.download_permission_granted",
                order_id=permission.order_id,
                product_id=str(permission.product_id),
                download_id=permission.download_id,
            )
        return permission, created

    def count(self, order_types: Sequence[str], status: str) -> int:
        return Order.objects.filter(order_type__in=order_types, status=status).count()

    def find_unpaid_ids(
        self, order_types: Sequence[str], modified_before: datetime
    ) -> List[int]:
        return list(
            Order.objects.filter(
                order_type__in=order_types,
                status=OrderStatus.PENDING,
                updated_at__lt=modified_before,
            )
            .order_by("id")
            .values_list("id", flat=True)
        )

    # ------------------------------------------------------------------
    # Save / Delete (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist an order and write its pending domain events to the outbox."""
        entity.save()

        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=_serialize_event_payload(event),
                topic="orders",
            )
        entity.clear_domain_events()

        logger.info("order.saved", order_id=entity.id, event_count=len(events))
        return entity

    @transaction.atomic
    def delete(self, id: Any) -> bool:
        """Delete an order with its items, meta, notes and refunds."""
        order = self.get_by_id(id)
        if not order:
            return False
        order.delete()
        logger.info("order.deleted", order_id=id)
        return True

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def add_note(
        self,
        order_id: Any,
        note: str,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        is_customer_note: bool = False,
        added_by: str = "",
    ) -> OrderNote:
        """Record a note in the order's audit trail."""
        order_note = OrderNote.objects.create(
            order_id=order_id,
            note=note,
            old_status=old_status,
            new_status=new_status,
            is_customer_note=is_customer_note,
            added_by=added_by,
        )
        logger.info(
            "order.note_added",
            order_id=order_id,
            old_status=old_status,
            new_status=new_status,
        )
        return order_note


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_email(value: Any) -> bool:
    if not isinstance(value, str) or "@" not in value:
        return False
    try:
        validate_email(value)
    except ValidationError:
        return False
    return True


def _customer_condition(values: Sequence[Any], connector: str = "OR") -> Q:
    """Customer filter: ids and billing emails, OR'ed; nested lists AND'ed.

    Values that are neither a numeric id nor an email are ignored; when
    nothing usable is left the condition matches no order.
    """
    ids: List[int] = []
    emails: List[str] = []
    conditions: List[Q] = []

    for value in values:
        if isinstance(value, (list, tuple)):
            conditions.append(_customer_condition(value, "AND"))
        elif _is_email(value):
            emails.append(value.strip().lower())
        elif str(value).strip().lstrip("-").isdigit():
            ids.append(abs(int(value)))

    if emails:
        matching = OrderMeta.objects.filter(
            key=MetaKey.BILLING_EMAIL, value__in=emails
        ).values("order_id")
        conditions.insert(0, Q(id__in=matching))
    if ids:
        conditions.insert(0, Q(customer_user__in=ids))
    if not conditions:
        return Q(pk__in=[])

    combine = operator.and_ if connector == "AND" else operator.or_
    return reduce(combine, conditions)


def _serialize_event_payload(event: Any) -> Dict[str, Any]:
    data = asdict(event)
    normalized = _normalize_for_json(data)
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, list):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value
