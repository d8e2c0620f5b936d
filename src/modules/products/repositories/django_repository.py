"""Django ORM implementation of the Product repository.

Satisfies ``IProductRepository`` using Django's QuerySet API.
Error handling follows the Null Object pattern: methods return ``None``
instead of raising; the Service Layer decides how to translate a missing
entity.

Counter updates (stock, total sales) are single ``UPDATE ... SET x = x - n``
statements built with ``F()`` so concurrent writers never lose an update.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F

from modules.products.models import Product, ProductDownload
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def get_by_id(self, id: str) -> Optional[Product]:
        """Retrieve a product by primary key.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return Product.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Product]:
        """List products with optional Django ORM look-ups.

        Examples of valid filters::

            {"manage_stock": True}
            {"name__icontains": "ebook"}
        """
        queryset = Product.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    @transaction.atomic
    def save(self, entity: Product) -> Product:
        """Persist (create or update) a product."""
        entity.save()
        logger.info(
            "product.saved",
            product_id=str(entity.id),
            sku=entity.sku,
        )
        return entity

    @transaction.atomic
    def delete(self, id: str) -> bool:
        """Delete a product by ID.

        Returns ``True`` if the product was found and deleted,
        ``False`` if no product exists with the given ID.
        """
        product = self.get_by_id(id)
        if not product:
            return False
        product.delete()
        logger.info("product.deleted", product_id=str(id))
        return True

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    @transaction.atomic
    def reduce_stock(self, id: str, quantity: int) -> Optional[int]:
        """Decrement stock in a single UPDATE and return the new level."""
        updated = Product.objects.filter(id=id).update(
            stock_quantity=F("stock_quantity") - quantity
        )
        if not updated:
            return None
        new_stock = (
            Product.objects.filter(id=id)
            .values_list("stock_quantity", flat=True)
            .first()
        )
        logger.info(
            "product.stock_reduced",
            product_id=str(id),
            quantity=quantity,
            new_stock=new_stock,
        )
        return new_stock

    def increase_total_sales(self, id: str, quantity: int) -> None:
        Product.objects.filter(id=id).update(
            total_sales=F("total_sales") + quantity
        )
        logger.info(
            "product.total_sales_increased", product_id=str(id), quantity=quantity
        )

    def get_downloads(self, id: str) -> List[ProductDownload]:
        return list(ProductDownload.objects.filter(product_id=id))
