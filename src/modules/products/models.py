"""Product and ProductDownload models.

Business rules implemented:
- SKU must be unique in the system (normalised to uppercase).
- Price must be greater than zero.
- ``stock_quantity`` is signed: paid orders may push a product into
  backorder (negative stock) and the order flow reports it.
- ``total_sales`` is a cumulative counter only ever moved with ``F()``
  expressions.
- Downloadable products expose one or more ``ProductDownload`` assets;
  ``download_limit`` / ``download_expiry`` empty means unlimited.
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel

logger = structlog.get_logger(__name__)


class Product(BaseModel):
    """Product aggregate root.

    ``sku`` is normalised to uppercase on save to prevent visual duplicates
    (e.g. "sku-01" vs "SKU-01").
    """

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    manage_stock = models.BooleanField(default=False)
    stock_quantity = models.IntegerField(null=True, blank=True, default=None)
    total_sales = models.PositiveIntegerField(default=0)
    virtual = models.BooleanField(default=False)
    downloadable = models.BooleanField(default=False)
    download_limit = models.PositiveIntegerField(null=True, blank=True, default=None)
    download_expiry = models.PositiveIntegerField(
        null=True, blank=True, default=None, help_text="Days after completion."
    )

    class Meta:
        db_table = "products"
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="products_price_positive",
            ),
        ]

    # ------------------------------------------------------------------
    # Stock helpers
    # ------------------------------------------------------------------

    @property
    def managing_stock(self) -> bool:
        """``True`` when stock is tracked for this product."""
        return self.manage_stock and self.stock_quantity is not None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.price is not None and self.price <= 0:
            raise ValidationError({"price": "Price must be greater than zero."})

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info(
                "product_created",
                product_id=str(self.id),
                sku=self.sku,
                name=self.name,
            )

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"


class ProductDownload(BaseModel):
    """A downloadable asset attached to a product.

    ``download_id`` is the stable identifier referenced by download
    permissions; it survives file URL changes.
    """

    product = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="downloads",
    )
    download_id = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    file_url = models.URLField(max_length=500)

    class Meta:
        db_table = "product_downloads"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "download_id"],
                name="product_downloads_unique_id",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product_id}:{self.download_id}"
