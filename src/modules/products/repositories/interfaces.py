"""Product repository interface.

Extends ``IRepository[Product]`` with the atomic counter updates the
order flow relies on (stock reduction, cumulative sales) and the
downloadable-asset look-up used when granting download permissions.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.models import Product, ProductDownload


class IProductRepository(IRepository["Product"]):
    """Repository contract for the Product aggregate."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Product]:
        """List products with optional filters."""

    @abstractmethod
    def reduce_stock(self, id: str, quantity: int) -> Optional[int]:
        """Atomically decrement stock by *quantity*.

        Returns the stock level after the update, or ``None`` when the
        product does not exist.
        """

    @abstractmethod
    def increase_total_sales(self, id: str, quantity: int) -> None:
        """Atomically add *quantity* to the cumulative sales counter."""

    @abstractmethod
    def get_downloads(self, id: str) -> List[ProductDownload]:
        """Return the downloadable assets of a product."""
