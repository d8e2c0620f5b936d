"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when an order is created."""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised when an order status changes.

    ``new_status`` doubles as the lifecycle event name dispatched to the
    effect registry.
    """

    old_status: Optional[str] = None
    new_status: str = ""


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    """Raised once when a gateway confirms payment for an order."""

    transaction_id: str = ""


@dataclass(frozen=True)
class RefundCreated(DomainEvent):
    """Raised when a refund row is persisted for an order."""

    refund_id: Optional[int] = None
    amount: Decimal = Decimal("0.00")
