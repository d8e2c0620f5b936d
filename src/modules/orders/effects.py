"""Idempotent order effects.

An effect is a side effect attached to an order lifecycle event (a status
name such as ``completed`` or the synthetic ``payment_complete`` event).
``EffectRegistry.dispatch`` runs every effect registered for the event, each
inside its own transaction holding the order row lock, as:

    applied = marker is set
    if effect.is_due(order, applied):
        effect.apply(order)
        effect.mark(order)

Markers are order meta rows, so replaying an event is a no-op once the
marker is set.  A failing effect rolls back alone (its marker included) and
the remaining effects still run.

Effects:
- ``GrantDownloadPermissions``  completed, processing
- ``RecordSales``               completed, processing, on-hold
- ``UpdateCouponUsageCounts``   completed, processing, on-hold, cancelled
- ``ReduceOrderStock``          payment_complete
- ``SettleRemainingRefund``     refunded
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import structlog
from django.db import DatabaseError, transaction
from django.utils import timezone

from modules.orders import signals
from modules.orders.config import OrderHooks, OrderOptions
from modules.orders.constants import (
    FULL_REFUND_REASON,
    PAYMENT_COMPLETE_EVENT,
    ItemType,
    MetaKey,
    OrderStatus,
)
from modules.orders.dtos import CreateRefundDTO
from modules.orders.exceptions import OrderError
from modules.orders.models import Order
from modules.orders.repositories.metadata_repository import ORDER

if TYPE_CHECKING:
    from modules.coupons.repositories.interfaces import ICouponRepository
    from modules.orders.refunds import RefundService
    from modules.orders.repositories.interfaces import (
        IMetadataRepository,
        IOrderItemRepository,
        IOrderRepository,
    )
    from modules.orders.transients import OrderTransients
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)

OptionsProvider = Callable[[], OrderOptions]


class Effect(ABC):
    """Base class of an idempotent order effect.

    ``marker`` is the order meta key recording that the effect ran; effects
    without a marker are guarded by ``is_due`` alone.
    """

    name: str = ""
    marker: Optional[str] = None
    marker_value: str = "yes"

    def __init__(self, metadata: IMetadataRepository) -> None:
        self._metadata = metadata

    def is_applied(self, order: Order) -> bool:
        if not self.marker:
            return False
        return bool(self._metadata.get(ORDER, order.id, self.marker))

    def is_due(self, order: Order, applied: bool) -> bool:
        return not applied

    @abstractmethod
    def apply(self, order: Order) -> None:
        """Perform the side effect."""

    def mark(self, order: Order) -> None:
        if self.marker:
            self._metadata.set(ORDER, order.id, self.marker, self.marker_value)


class GrantDownloadPermissions(Effect):
    """One download permission per asset of each downloadable line item.

    Permissions expire ``download_expiry`` days after completion and allow
    ``download_limit * quantity`` downloads (unlimited when unset).
    """

    name = "grant_download_permissions"
    marker = MetaKey.DOWNLOAD_PERMISSIONS_GRANTED
    marker_value = "1"

    def __init__(
        self,
        metadata: IMetadataRepository,
        orders: IOrderRepository,
        items: IOrderItemRepository,
        products: IProductRepository,
        options: OptionsProvider = OrderOptions.from_settings,
    ) -> None:
        super().__init__(metadata)
        self._orders = orders
        self._items = items
        self._products = products
        self._options = options

    def is_due(self, order: Order, applied: bool) -> bool:
        if applied:
            return False
        if (
            order.has_status(OrderStatus.PROCESSING)
            and not self._options().downloads_grant_access_after_payment
        ):
            return False
        return True

    def apply(self, order: Order) -> None:
        completed_on = (order.date_completed or timezone.now()).date()
        for item in self._items.get_items(order.id, [ItemType.LINE_ITEM]):
            product = item.product
            if product is None or not product.downloadable:
                continue
            limit = (
                product.download_limit * item.quantity
                if product.download_limit
                else None
            )
            expires = (
                completed_on + timedelta(days=product.download_expiry)
                if product.download_expiry
                else None
            )
            for download in self._products.get_downloads(product.id):
                self._orders.grant_download_permission(
                    {
                        "download_id": download.download_id,
                        "product_id": product.id,
                        "order_id": order.id,
                        "user_id": order.customer_user,
                        "user_email": order.billing_email,
                        "order_key": order.order_key,
                        "downloads_remaining": limit,
                        "access_granted": timezone.now(),
                        "access_expires": expires,
                    }
                )

    def mark(self, order: Order) -> None:
        super().mark(order)
        signals.download_permissions_granted.send(sender=Order, order=order)


class RecordSales(Effect):
    """Add each line item quantity to its product's ``total_sales``."""

    name = "record_sales"
    marker = MetaKey.RECORDED_SALES

    def __init__(
        self,
        metadata: IMetadataRepository,
        items: IOrderItemRepository,
        products: IProductRepository,
    ) -> None:
        super().__init__(metadata)
        self._items = items
        self._products = products

    def apply(self, order: Order) -> None:
        for item in self._items.get_items(order.id, [ItemType.LINE_ITEM]):
            if item.product_id:
                self._products.increase_total_sales(item.product_id, abs(item.quantity))

    def mark(self, order: Order) -> None:
        super().mark(order)
        signals.sales_recorded.send(sender=Order, order=order)


class UpdateCouponUsageCounts(Effect):
    """Keep coupon usage counts in step with the order status.

    Entering a non-cancelled status counts one use per coupon and sets the
    marker; entering ``cancelled`` with the marker set reverses those uses
    and clears it.  Uses are attributed to the customer id, or to the
    billing email for guest orders.
    """

    name = "update_coupon_usage_counts"
    marker = MetaKey.RECORDED_COUPON_USAGE

    def __init__(
        self,
        metadata: IMetadataRepository,
        items: IOrderItemRepository,
        coupons: ICouponRepository,
    ) -> None:
        super().__init__(metadata)
        self._items = items
        self._coupons = coupons

    def is_due(self, order: Order, applied: bool) -> bool:
        cancelled = order.has_status(OrderStatus.CANCELLED)
        return applied if cancelled else not applied

    def apply(self, order: Order) -> None:
        cancelled = order.has_status(OrderStatus.CANCELLED)
        used_by = (
            str(order.customer_user) if order.customer_user else order.billing_email
        )
        for item in self._items.get_items(order.id, [ItemType.COUPON]):
            if not item.name:
                continue
            coupon = self._coupons.get_by_code(item.name)
            if coupon is None:
                logger.warning("coupon.not_found", order_id=order.id, code=item.name)
                continue
            if cancelled:
                self._coupons.decrease_usage(coupon, used_by)
            else:
                self._coupons.increase_usage(coupon, used_by)
        signals.coupon_usage_updated.send(
            sender=Order,
            order=order,
            used_by=used_by,
            action="decrease" if cancelled else "increase",
        )

    def mark(self, order: Order) -> None:
        if order.has_status(OrderStatus.CANCELLED):
            self._metadata.delete(ORDER, order.id, self.marker)
        else:
            super().mark(order)


class ReduceOrderStock(Effect):
    """Deduct stock for every stock-managed line item once payment completes.

    The marker is set after the pass even when store policy skipped the
    reduction, matching the "reduce once per order" contract.
    """

    name = "reduce_order_stock"
    marker = MetaKey.STOCK_REDUCED
    marker_value = "1"

    def __init__(
        self,
        metadata: IMetadataRepository,
        orders: IOrderRepository,
        items: IOrderItemRepository,
        products: IProductRepository,
        hooks: Optional[OrderHooks] = None,
        options: OptionsProvider = OrderOptions.from_settings,
    ) -> None:
        super().__init__(metadata)
        self._orders = orders
        self._items = items
        self._products = products
        self._hooks = hooks or OrderHooks()
        self._options = options

    def is_due(self, order: Order, applied: bool) -> bool:
        return bool(self._hooks.reduce_stock_due(order, applied))

    def apply(self, order: Order) -> None:
        if not self._options().manage_stock or not self._hooks.can_reduce_stock(order):
            logger.info("order.stock_reduction_skipped", order_id=order.id)
            return

        items = self._items.get_items(order.id, [ItemType.LINE_ITEM])
        if not items:
            return
        for item in items:
            product = item.product
            if product is None or not product.managing_stock:
                continue
            quantity = self._hooks.order_item_quantity(order, item, item.quantity)
            new_stock = self._products.reduce_stock(product.id, quantity)
            if new_stock is None:
                continue
            label = product.sku or product.id
            old_stock = new_stock + quantity
            self._orders.add_note(
                order.id,
                f"Item {label} stock reduced from {old_stock} to {new_stock}.",
            )
            if new_stock < 0:
                signals.product_on_backorder.send(
                    sender=type(product),
                    product=product,
                    order=order,
                    quantity=quantity,
                )
        signals.order_stock_reduced.send(sender=Order, order=order)


class SettleRemainingRefund(Effect):
    """Refund whatever is left of the total when an order becomes refunded."""

    name = "settle_remaining_refund"

    def __init__(
        self,
        metadata: IMetadataRepository,
        orders: IOrderRepository,
        refunds: RefundService,
        transients: OrderTransients,
    ) -> None:
        super().__init__(metadata)
        self._orders = orders
        self._refunds = refunds
        self._transients = transients

    def apply(self, order: Order) -> None:
        refunded = self._orders.get_total_refunded(order.id, cached=False)
        remaining = order.total - refunded
        if not remaining:
            return
        if remaining < 0:
            logger.warning(
                "order.over_refunded", order_id=order.id, remaining=str(remaining)
            )
            return
        self._refunds.create_refund(
            CreateRefundDTO(
                order_id=order.id, amount=remaining, reason=FULL_REFUND_REASON
            )
        )
        self._transients.delete(order.id)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class EffectRegistry:
    """Event name → effects, run exactly once per order and marker."""

    def __init__(self, orders: IOrderRepository) -> None:
        self._orders = orders
        self._effects: Dict[str, List[Effect]] = {}

    def register(self, event_name: str, effect: Effect) -> None:
        effects = self._effects.setdefault(event_name, [])
        if effect not in effects:
            effects.append(effect)

    def effects_for(self, event_name: str) -> List[Effect]:
        return list(self._effects.get(event_name, []))

    def dispatch(self, event_name: str, order_id: int) -> List[str]:
        """Run the effects of *event_name* for *order_id*.

        Returns the names of the effects that were applied.
        """
        applied: List[str] = []
        log = logger.bind(event=event_name, order_id=order_id)

        for effect in self.effects_for(event_name):
            try:
                with transaction.atomic():
                    order = self._orders.get_for_update(order_id)
                    if order is None:
                        log.warning("order.effect_order_missing", effect=effect.name)
                        return applied
                    if order.is_refund:
                        log.warning("order.effect_refund_skipped", effect=effect.name)
                        return applied
                    if not effect.is_due(order, effect.is_applied(order)):
                        continue
                    effect.apply(order)
                    effect.mark(order)
            except (OrderError, DatabaseError):
                log.exception("order.effect_failed", effect=effect.name)
                continue
            applied.append(effect.name)
            log.info("order.effect_applied", effect=effect.name)

        return applied


def build_default_registry(
    orders: IOrderRepository,
    items: IOrderItemRepository,
    metadata: IMetadataRepository,
    products: IProductRepository,
    coupons: ICouponRepository,
    refunds: RefundService,
    transients: OrderTransients,
    hooks: Optional[OrderHooks] = None,
    options: OptionsProvider = OrderOptions.from_settings,
) -> EffectRegistry:
    """Registry wired with the standard order effects."""
    registry = EffectRegistry(orders)

    downloads = GrantDownloadPermissions(metadata, orders, items, products, options)
    sales = RecordSales(metadata, items, products)
    coupon_usage = UpdateCouponUsageCounts(metadata, items, coupons)
    stock = ReduceOrderStock(metadata, orders, items, products, hooks, options)
    settle = SettleRemainingRefund(metadata, orders, refunds, transients)

    for status in (OrderStatus.COMPLETED, OrderStatus.PROCESSING):
        registry.register(status, downloads)
    for status in (OrderStatus.COMPLETED, OrderStatus.PROCESSING, OrderStatus.ON_HOLD):
        registry.register(status, sales)
    for status in (
        OrderStatus.COMPLETED,
        OrderStatus.PROCESSING,
        OrderStatus.ON_HOLD,
        OrderStatus.CANCELLED,
    ):
        registry.register(status, coupon_usage)
    registry.register(PAYMENT_COMPLETE_EVENT, stock)
    registry.register(OrderStatus.REFUNDED, settle)
    return registry
