"""Refund settlement engine.

A refund is an ``Order`` row of type ``shop_order_refund`` whose parent is
the refunded order.  Its ``total`` is the negated refund amount and its
items are negative clones of the refunded items.

Business rules enforced:
- Negative amounts are clamped to zero (``CreateRefundDTO``).
- ``total_refunded`` never exceeds the order total.
- Only ``line_item``, ``fee`` and ``shipping`` items are refundable.
- Creation is all-or-nothing: any failure rolls back and raises
  ``RefundCreationFailed``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

import structlog
from django.db import DatabaseError, transaction

from modules.core.cache import VersionedCache
from modules.orders import signals
from modules.orders.constants import REFUNDABLE_ITEM_TYPES, OrderStatus, OrderType
from modules.orders.events import RefundCreated
from modules.orders.exceptions import (
    InvalidOrder,
    InvalidRefundAmount,
    OrderError,
    RefundCreationFailed,
)
from modules.orders.ledger import Ledger, clone_for_refund, negate
from modules.orders.models import Order
from shared.infrastructure.bus import event_bus

if TYPE_CHECKING:
    from modules.orders.dtos import CreateRefundDTO
    from modules.orders.repositories.interfaces import (
        IOrderItemRepository,
        IOrderRepository,
    )

logger = structlog.get_logger(__name__)

SYSTEM_USER = "1"


class RefundService:
    """Application service creating refunds against orders."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        item_repository: IOrderItemRepository,
        cache: VersionedCache | None = None,
    ) -> None:
        self._order_repo = order_repository
        self._item_repo = item_repository
        self._ledger = Ledger(item_repository)
        self._cache = cache or VersionedCache()

    def create_refund(self, dto: CreateRefundDTO) -> Order:
        """Create a refund for ``dto.order_id``.

        Raises:
            RefundCreationFailed: the order is unknown, the amount exceeds
                what is left to refund, or the store rejected a write.
                Nothing is persisted in that case.
        """
        log = logger.bind(order_id=dto.order_id, amount=str(dto.amount))
        try:
            with transaction.atomic():
                refund = self._create(dto)
        except (OrderError, DatabaseError) as exc:
            log.warning("order.refund_failed", error=str(exc))
            raise RefundCreationFailed(str(exc)) from exc

        log.info("order.refund_created", refund_id=refund.id)
        return refund

    def _create(self, dto: CreateRefundDTO) -> Order:
        order = self._order_repo.get_for_update(dto.order_id)
        if order is None or order.is_refund:
            raise InvalidOrder("Invalid order ID.")

        refunded = self._order_repo.get_total_refunded(order.id, cached=False)
        remaining = order.total - refunded
        if dto.amount > remaining:
            raise InvalidRefundAmount(
                f"Refund amount {dto.amount} exceeds the remaining {remaining}."
            )

        refund = self._order_repo.create(
            {
                "order_type": OrderType.REFUND,
                "status": OrderStatus.COMPLETED,
                "parent_id": order.id,
                "customer_user": order.customer_user,
                "refund_reason": dto.reason or "",
                "refunded_by": dto.refunded_by or SYSTEM_USER,
                "items": self._refund_items(order, dto),
            }
        )

        self._ledger.update_taxes(refund)
        self._ledger.calculate_totals(refund, and_taxes=False)
        refund.total = negate(dto.amount)
        event = RefundCreated(
            aggregate_id=order.id, refund_id=refund.id, amount=dto.amount
        )
        refund.add_domain_event(event)
        self._order_repo.save(refund)
        event_bus.publish(event)

        self._cache.bump_prefix("orders")
        signals.refund_created.send(sender=Order, order=order, refund=refund)
        return refund

    def _refund_items(
        self, order: Order, dto: CreateRefundDTO
    ) -> List[Dict[str, Any]]:
        if not dto.line_items:
            return []
        items = []
        for item in self._item_repo.get_items(order.id, REFUNDABLE_ITEM_TYPES):
            line = dto.line_items.get(item.id)
            if line is None or line.is_empty:
                continue
            items.append(clone_for_refund(item, line))
        return items
