"""Order aggregate models.

- ``Order``: aggregate root for both orders and refunds (``order_type``
  discriminator; refunds point at their order through ``parent``).
- ``OrderMeta``: open key/value side table.  Holds contact fields, the
  order key and the effect-applied markers.
- ``OrderItem`` / ``OrderItemMeta``: the line item ledger.
- ``OrderNote``: append-only audit trail (status changes, stock notes).
- ``DownloadPermission``: access granted to a downloadable asset.

Business rules implemented:
- ``total_refunded <= total`` (enforced by the refund service).
- Totals are ``Decimal`` with two places; refund totals are negative.
- Refund line items reference the refunded item through meta only.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

import structlog
from django.db import models

from modules.core.models import BaseModel, TimestampedModel
from modules.orders.constants import ItemType, MetaKey, OrderStatus, OrderType
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def _money(**kwargs: Any) -> models.DecimalField:
    return models.DecimalField(max_digits=12, decimal_places=2, default=ZERO, **kwargs)


class Order(DomainEventMixin, TimestampedModel):
    """Order aggregate root.

    ``updated_at`` is the "last modified" timestamp the unpaid-order reaper
    compares against.  Contact details live in ``OrderMeta`` so the set of
    searchable fields stays open.
    """

    status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    order_type: models.CharField = models.CharField(
        max_length=20, default=OrderType.ORDER, db_index=True
    )
    parent: models.ForeignKey = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="refunds",
    )
    customer_user: models.PositiveBigIntegerField = models.PositiveBigIntegerField(
        null=True, blank=True, db_index=True
    )
    discount_total: models.DecimalField = _money()
    shipping_total: models.DecimalField = _money()
    shipping_tax: models.DecimalField = _money()
    cart_tax: models.DecimalField = _money()
    total: models.DecimalField = _money()
    refund_reason: models.TextField = models.TextField(blank=True, default="")
    refunded_by: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    idempotency_key: models.CharField = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )
    date_completed: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    date_paid: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
            models.Index(
                fields=["order_type", "status", "updated_at"],
                name="orders_type_status_mod_idx",
            ),
        ]

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def has_status(self, *statuses: str) -> bool:
        return self.status in statuses

    @property
    def is_refund(self) -> bool:
        return self.order_type == OrderType.REFUND

    # ------------------------------------------------------------------
    # Meta access
    # ------------------------------------------------------------------

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return a single meta value (first row for *key*)."""
        if self.pk is None:
            return default
        value = (
            OrderMeta.objects.filter(order_id=self.pk, key=key)
            .values_list("value", flat=True)
            .first()
        )
        return default if value is None else value

    @property
    def billing_email(self) -> str:
        return self.get_meta(MetaKey.BILLING_EMAIL, "") or ""

    @property
    def order_key(self) -> str:
        return self.get_meta(MetaKey.ORDER_KEY, "") or ""

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    @property
    def total_tax(self) -> Decimal:
        return self.cart_tax + self.shipping_tax

    @property
    def subtotal(self) -> Decimal:
        result = self.items.filter(item_type=ItemType.LINE_ITEM).aggregate(
            value=models.Sum("subtotal")
        )["value"]
        return result or ZERO

    @property
    def refund_amount(self) -> Decimal:
        """Positive amount settled by this refund row."""
        return -self.total if self.is_refund else ZERO

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"#{self.pk} ({self.status})"


class OrderMeta(models.Model):
    """Key/value metadata of an order."""

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="meta",
    )
    key = models.CharField(max_length=255)
    value = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_meta"
        indexes = [
            models.Index(fields=["order", "key"], name="order_meta_order_key_idx"),
            models.Index(fields=["key"], name="order_meta_key_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.order_id}:{self.key}={self.value}"


class OrderItem(TimestampedModel):
    """Priced component of an order (product, fee, shipping, tax, coupon).

    ``taxes`` holds per-rate amounts as strings:
    ``{"total": {"<rate_id>": "1.50"}, "subtotal": {...}}``.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    item_type = models.CharField(
        max_length=20, choices=ItemType.choices, default=ItemType.LINE_ITEM
    )
    name = models.CharField(max_length=255, blank=True, default="")
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_items",
    )
    quantity = models.IntegerField(default=0)
    subtotal = _money()
    subtotal_tax = _money()
    total = _money()
    total_tax = _money()
    taxes = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]
        indexes = [
            models.Index(fields=["order", "item_type"], name="order_items_type_idx"),
        ]

    def is_type(self, *types: str) -> bool:
        return self.item_type in types

    def __str__(self) -> str:
        return f"{self.item_type}:{self.name} x{self.quantity} ({self.total})"


class OrderItemMeta(models.Model):
    """Key/value metadata of a line item (keys may repeat)."""

    item = models.ForeignKey(
        "orders.OrderItem",
        on_delete=models.CASCADE,
        related_name="meta",
    )
    key = models.CharField(max_length=255)
    value = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_item_meta"
        ordering = ["id"]
        indexes = [
            models.Index(fields=["item", "key"], name="order_item_meta_key_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.item_id}:{self.key}={self.value}"


class OrderNote(BaseModel):
    """Append-only audit note.

    Status-change notes carry ``old_status`` / ``new_status``; other notes
    (stock reductions, reaper cancellations) leave them empty.  ``added_by``
    empty means the note was written by the system.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="notes",
    )
    note = models.TextField()
    old_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    is_customer_note = models.BooleanField(default=False)
    added_by = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "order_notes"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="order_notes_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_id}: {self.note[:40]}"


class DownloadPermission(BaseModel):
    """Access to one downloadable asset granted by one order.

    ``downloads_remaining`` ``None`` means unlimited; ``access_expires``
    ``None`` means the grant never expires.
    """

    download_id = models.CharField(max_length=64)
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="download_permissions",
    )
    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="download_permissions",
    )
    user_id = models.PositiveBigIntegerField(null=True, blank=True)
    user_email = models.EmailField(blank=True, default="")
    order_key = models.CharField(max_length=64, blank=True, default="")
    downloads_remaining = models.PositiveIntegerField(null=True, blank=True)
    access_granted = models.DateTimeField()
    access_expires = models.DateField(null=True, blank=True)
    download_count = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "download_permissions"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["download_id", "product", "order"],
                name="download_permissions_unique_grant",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.download_id} ({self.product_id}) for order {self.order_id}"
