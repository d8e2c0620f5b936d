"""Event handlers for Orders domain events."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from modules.orders.constants import PAYMENT_COMPLETE_EVENT
from modules.orders.events import (
    OrderCreated,
    OrderStatusChanged,
    PaymentCompleted,
    RefundCreated,
)
from shared.domain.bus import IEventHandler

if TYPE_CHECKING:
    from modules.orders.effects import EffectRegistry

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info("order.created_event_handled", order_id=event.aggregate_id)


class RefundCreatedHandler(IEventHandler[RefundCreated]):
    def handle(self, event: RefundCreated) -> None:
        logger.info(
            "order.refund_event_handled",
            order_id=event.aggregate_id,
            refund_id=event.refund_id,
            amount=str(event.amount),
        )


class StatusChangedEffectsHandler(IEventHandler[OrderStatusChanged]):
    """Runs the effects registered for the order's new status."""

    def __init__(self, registry: EffectRegistry) -> None:
        self._registry = registry

    def handle(self, event: OrderStatusChanged) -> None:
        self._registry.dispatch(event.new_status, event.aggregate_id)


class PaymentCompletedEffectsHandler(IEventHandler[PaymentCompleted]):
    def __init__(self, registry: EffectRegistry) -> None:
        self._registry = registry

    def handle(self, event: PaymentCompleted) -> None:
        self._registry.dispatch(PAYMENT_COMPLETE_EVENT, event.aggregate_id)


order_created_handler = OrderCreatedHandler()
refund_created_handler = RefundCreatedHandler()
