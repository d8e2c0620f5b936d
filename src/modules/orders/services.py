"""Order service layer (Use Cases).

Orchestrates order creation, status transitions, payment completion and
the order query surface.  All write operations are atomic: the service
defines the unit-of-work boundary.

Business rules enforced:
- Status names are validated; the legacy ``wc-`` prefix is accepted.
- Transitions follow ``VALID_TRANSITIONS`` unless the store disables
  ``ENFORCE_STATUS_TRANSITIONS``.
- Every transition writes an audit note and publishes ``OrderStatusChanged``
  (outbox + in-process bus); the effect registry reacts to the new status.
- ``payment_complete`` is accepted from ``PAYABLE_STATUSES`` only.
"""

from __future__ import annotations

from math import ceil
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Union

import structlog
from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string

from modules.core.cache import VersionedCache
from modules.orders import signals
from modules.orders.config import OrderOptions, OrdersConfiguration, build_configuration
from modules.orders.constants import (
    ORDER_KEY_PREFIX,
    PAYABLE_STATUSES,
    VALID_TRANSITIONS,
    ItemType,
    MetaKey,
    OrderStatus,
    OrderType,
)
from modules.orders.dtos import OrderPage, OrderQueryDTO, strip_status_prefix
from modules.orders.events import OrderCreated, OrderStatusChanged, PaymentCompleted
from modules.orders.exceptions import InvalidOrder, InvalidStatus
from modules.orders.ledger import Ledger, money, taxes_json
from modules.orders.models import Order
from modules.orders.repositories.metadata_repository import (
    ORDER,
    MetadataDjangoRepository,
)
from modules.orders.transients import OrderTransients
from modules.products.exceptions import ProductNotFound
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.orders.dtos import CreateOrderDTO
    from modules.orders.repositories.interfaces import (
        IMetadataRepository,
        IOrderItemRepository,
        IOrderRepository,
    )
    from modules.products.repositories.interfaces import IProductRepository
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)

ZERO = money(0)


def normalise_status(status: str) -> str:
    """Return the registered status name for *status*.

    Raises:
        InvalidStatus: *status* is not a registered order status.
    """
    name = strip_status_prefix(str(status or ""))
    if name not in OrderStatus.values:
        raise InvalidStatus(f"Invalid order status: {status!r}.")
    return name


class OrderService:
    """Application service for Order use-cases.

    Receives repositories via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        item_repository: IOrderItemRepository,
        product_repository: IProductRepository,
        metadata_repository: Optional[IMetadataRepository] = None,
        configuration: Optional[OrdersConfiguration] = None,
        transients: Optional[OrderTransients] = None,
        cache: Optional[VersionedCache] = None,
        event_bus: Optional[IEventBus] = None,
        options: Callable[[], OrderOptions] = OrderOptions.from_settings,
    ) -> None:
        self._order_repo = order_repository
        self._item_repo = item_repository
        self._product_repo = product_repository
        self._meta_repo = metadata_repository or MetadataDjangoRepository()
        self._config = configuration or build_configuration()
        self._cache = cache or VersionedCache()
        self._transients = transients or OrderTransients(self._cache, options)
        self._bus = event_bus or default_event_bus
        self._options = options
        self._ledger = Ledger(item_repository)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_order(self, dto: CreateOrderDTO) -> Order:
        """Create a pending order with its items, contact meta and order key.

        Product lines without explicit amounts are priced from the catalog.
        Coupon codes become ``coupon`` items.

        Raises:
            ProductNotFound: a referenced product does not exist.
        """
        log = logger.bind(customer_user=dto.customer_user)
        log.info("order.creation_started")

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_id=existing.id,
                    key=dto.idempotency_key,
                )
                return existing

        items = []
        for item_dto in dto.items:
            product = None
            if item_dto.product_id is not None:
                product = self._product_repo.get_by_id(str(item_dto.product_id))
                if product is None:
                    raise ProductNotFound(f"Product {item_dto.product_id} not found.")

            if item_dto.subtotal is not None:
                subtotal = money(item_dto.subtotal)
            elif product is not None:
                subtotal = money(product.price * item_dto.quantity)
            else:
                subtotal = ZERO
            total = money(item_dto.total) if item_dto.total is not None else subtotal
            tax = money(sum(item_dto.taxes.values(), ZERO))

            items.append(
                {
                    "item_type": item_dto.item_type,
                    "name": item_dto.name or (product.name if product else ""),
                    "product_id": product.id if product else None,
                    "quantity": item_dto.quantity,
                    "subtotal": subtotal,
                    "subtotal_tax": tax,
                    "total": total,
                    "total_tax": tax,
                    "taxes": taxes_json(item_dto.taxes),
                }
            )
        items.extend(
            {"item_type": ItemType.COUPON, "name": code} for code in dto.coupon_codes
        )

        meta = {
            MetaKey.ORDER_KEY: ORDER_KEY_PREFIX + get_random_string(13),
            MetaKey.CREATED_VIA: dto.created_via,
        }
        for field, value in dto.billing.items():
            meta[f"_billing_{field}"] = value.strip()
        for field, value in dto.shipping.items():
            meta[f"_shipping_{field}"] = value.strip()
        if meta.get(MetaKey.BILLING_EMAIL):
            meta[MetaKey.BILLING_EMAIL] = meta[MetaKey.BILLING_EMAIL].lower()

        order = self._order_repo.create(
            {
                "status": OrderStatus.PENDING,
                "order_type": OrderType.ORDER,
                "customer_user": dto.customer_user,
                "idempotency_key": dto.idempotency_key,
                "items": items,
                "meta": meta,
            }
        )
        self._ledger.calculate_totals(order)

        order.add_domain_event(OrderCreated(aggregate_id=order.id))
        self._order_repo.save(order)
        self._order_repo.add_note(
            order.id, "Order created.", new_status=OrderStatus.PENDING
        )

        log.info("order.created", order_id=order.id, total=str(order.total))
        return self._order_repo.get_by_id(order.id) or order

    @transaction.atomic
    def update_status(
        self,
        order_id: Any,
        new_status: str,
        note: str = "",
        manual: bool = False,
    ) -> Order:
        """Transition an order to *new_status*.

        Acquires a row-level lock (``SELECT FOR UPDATE``) before validating
        the transition.  Writing the current status again only adds a note.

        Raises:
            InvalidOrder: order does not exist or is a refund.
            InvalidStatus: unknown status or forbidden transition.
        """
        new_status = normalise_status(new_status)
        order = self._order_repo.get_for_update(order_id)
        if order is None:
            raise InvalidOrder(f"Order {order_id} not found.")
        if order.is_refund:
            raise InvalidOrder(f"Refund {order_id} cannot change status.")

        enforce = self._options().enforce_status_transitions
        self._change_status(order, new_status, note, manual=manual, enforce=enforce)
        return self._order_repo.get_by_id(order.id) or order

    @transaction.atomic
    def payment_complete(self, order_id: Any, transaction_id: str = "") -> bool:
        """Record a gateway payment confirmation.

        Returns ``False`` (and changes nothing) when the order is not in a
        payable status.  Otherwise stores the transaction id, stamps
        ``date_paid``, moves the order to ``processing`` (``completed`` when
        no item needs processing) and raises the ``payment_complete`` event.

        Raises:
            InvalidOrder: order does not exist or is a refund.
        """
        order = self._order_repo.get_for_update(order_id)
        if order is None:
            raise InvalidOrder(f"Order {order_id} not found.")
        if order.is_refund:
            raise InvalidOrder(f"Refund {order_id} cannot be paid.")

        log = logger.bind(order_id=order.id, status=order.status)
        if order.status not in PAYABLE_STATUSES:
            log.info("order.payment_complete_ignored")
            return False

        if transaction_id:
            self._meta_repo.set(ORDER, order.id, MetaKey.TRANSACTION_ID, transaction_id)
        if not order.date_paid:
            order.date_paid = timezone.now()

        if self._needs_processing(order):
            target = OrderStatus.PROCESSING
        else:
            target = OrderStatus.COMPLETED
        self._change_status(order, target, "", manual=False, enforce=False)

        event = PaymentCompleted(aggregate_id=order.id, transaction_id=transaction_id)
        order.add_domain_event(event)
        self._order_repo.save(order)
        self._bus.publish(event)
        signals.payment_completed.send(sender=Order, order=order)

        log.info("order.payment_completed", transaction_id=transaction_id)
        return True

    def delete_order_transients(self, order_id: Any = 0) -> None:
        """Clear report caches and cached order data after *order_id* changed."""
        self._transients.delete(order_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: Any) -> Order:
        """Retrieve a single order by ID.

        Raises:
            InvalidOrder: if the order does not exist.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise InvalidOrder(f"Order {order_id} not found.")
        return order

    def get_orders(
        self, query: Optional[OrderQueryDTO] = None, **args: Any
    ) -> Union[List[Any], OrderPage]:
        """Query orders.

        Accepts an ``OrderQueryDTO`` or loose keyword arguments (legacy names
        included).  Returns orders or ids (``return="ids"``), wrapped in an
        ``OrderPage`` when ``paginate`` is set.
        """
        if query is None:
            query = OrderQueryDTO.from_args(args, self._config.legacy_arg_map)

        limit = query.limit
        if limit is None:
            limit = self._options().posts_per_page
        resolved = query.model_copy(
            update={
                "type": query.type or self._config.order_types.types("view-orders"),
                "limit": limit,
            }
        )
        orders, total = self._order_repo.find(resolved)
        results: List[Any] = (
            [order.id for order in orders] if resolved.return_as == "ids" else orders
        )

        if not resolved.paginate:
            return results
        if resolved.limit > 0:
            pages = ceil(total / resolved.limit)
        else:
            pages = 1 if total else 0
        return OrderPage(orders=results, total=total, max_num_pages=pages)

    def get_order_id_by_order_key(self, order_key: str) -> int:
        return self._order_repo.get_order_id_by_order_key(order_key)

    @staticmethod
    def get_status_name(status: str) -> str:
        """Display label of *status*; unknown names are returned as given."""
        name = strip_status_prefix(str(status))
        if name in OrderStatus.values:
            return str(OrderStatus(name).label)
        return status

    def orders_count(self, status: str) -> int:
        """Number of orders (of ``order-count`` types) in *status*, cached."""
        name = strip_status_prefix(str(status))
        if name not in OrderStatus.values:
            return 0

        key = f"{self._cache.get_prefix('orders')}{name}"
        cached = self._cache.get(key, "counts")
        if cached is not None:
            return cached

        order_types = self._config.order_types.types("order-count")
        count = self._order_repo.count(order_types, name)
        self._cache.set(key, count, "counts")
        return count

    def processing_order_count(self) -> int:
        return self.orders_count(OrderStatus.PROCESSING)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _change_status(
        self,
        order: Order,
        new_status: str,
        note: str,
        manual: bool,
        enforce: bool,
    ) -> None:
        old_status = order.status
        added_by = "user" if manual else ""
        log = logger.bind(
            order_id=order.id, current_status=old_status, new_status=new_status
        )

        if old_status == new_status:
            label = self.get_status_name(new_status)
            self._order_repo.add_note(
                order.id, note or f"Order status is already {label}.", added_by=added_by
            )
            log.info("order.status_unchanged")
            return

        if enforce and new_status not in VALID_TRANSITIONS.get(old_status, set()):
            log.warning("order.invalid_transition")
            raise InvalidStatus(f"Cannot transition from {old_status} to {new_status}.")

        now = timezone.now()
        if new_status == OrderStatus.COMPLETED:
            order.date_completed = now
        paid = new_status in (OrderStatus.PROCESSING, OrderStatus.COMPLETED)
        if paid and not order.date_paid:
            order.date_paid = now

        order.status = new_status
        event = OrderStatusChanged(
            aggregate_id=order.id, old_status=old_status, new_status=new_status
        )
        order.add_domain_event(event)
        self._order_repo.save(order)

        transition = (
            f"Order status changed from {self.get_status_name(old_status)} "
            f"to {self.get_status_name(new_status)}."
        )
        self._order_repo.add_note(
            order.id,
            f"{note} {transition}".strip(),
            old_status=old_status,
            new_status=new_status,
            added_by=added_by,
        )

        log.info("order.status_updated")
        self._bus.publish(event)
        signals.order_status_changed.send(
            sender=Order, order=order, old_status=old_status, new_status=new_status
        )
        self._transients.delete(order.id)

    def _needs_processing(self, order: Order) -> bool:
        """``False`` when every line item is a virtual downloadable product."""
        for item in self._item_repo.get_items(order.id, [ItemType.LINE_ITEM]):
            product = item.product
            if product is None or not (product.virtual and product.downloadable):
                return True
        return False
