"""Order repository interfaces.

Extends ``IRepository[Order]`` with the methods the order flow needs:
atomic creation with items and meta, row-locked reads, the audit trail,
cached refund totals and the queries behind ``OrderService.get_orders``.

``IMetadataRepository`` covers the two key/value side tables (order meta
and order item meta); ``IOrderItemRepository`` is the line item ledger.

The Service Layer depends exclusively on these contracts (DIP).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.dtos import OrderQueryDTO
    from modules.orders.models import (
        DownloadPermission,
        Order,
        OrderItem,
        OrderNote,
    )


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root (orders and refunds)."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items and meta atomically.

        ``data`` holds model fields plus optional ``items`` (list of dicts of
        ``OrderItem`` fields, each with an optional ``meta`` dict) and
        ``meta`` (dict of order meta).
        """

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[Order]:
        """Retrieve an order with prefetched items."""

    @abstractmethod
    def get_for_update(self, id: Any) -> Optional[Order]:
        """Retrieve an order holding a row-level lock."""

    @abstractmethod
    def find(self, query: OrderQueryDTO) -> Tuple[List[Order], int]:
        """Return one page of orders and the total number of matches."""

    @abstractmethod
    def add_note(
        self,
        order_id: Any,
        note: str,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        is_customer_note: bool = False,
        added_by: str = "",
    ) -> OrderNote:
        """Append a note to the order audit trail."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
    def get_order_id_by_order_key(self, order_key: str) -> int:
        """Return the id of the order owning *order_key* (``0`` if none)."""

    @abstractmethod
    def get_total_refunded(self, order_id: Any, cached: bool = True) -> Decimal:
        """Sum of the amounts of every refund of *order_id*."""

    @abstractmethod
    def grant_download_permission(
        self, data: Dict[str, Any]
    ) -> Tuple[DownloadPermission, bool]:
        """Create a download permission unless the same grant exists.

        Returns the permission and whether it was created.
        """

    @abstractmethod
    def count(self, order_types: Sequence[str], status: str) -> int:
        """Count orders of *order_types* in *status*."""

    @abstractmethod
    def find_unpaid_ids(
        self, order_types: Sequence[str], modified_before: datetime
    ) -> List[int]:
        """Ids of pending orders last modified strictly before the cutoff."""


class IMetadataRepository(ABC):
    """Key/value metadata of orders (``order``) and items (``order_item``)."""

    @abstractmethod
    def get(
        self, kind: str, object_id: Any, key: str = "", single: bool = True
    ) -> Any:
        """Return one value (``single``) or every value for *key*.

        An empty *key* returns ``{key: [values]}`` for the object.
        """

    @abstractmethod
    def add(
        self, kind: str, object_id: Any, key: str, value: Any, unique: bool = False
    ) -> Optional[int]:
        """Add a row; ``None`` when ``unique`` and the key already exists."""

    @abstractmethod
    def update(
        self,
        kind: str,
        object_id: Any,
        key: str,
        value: Any,
        prev_value: Optional[Any] = None,
    ) -> bool:
        """Update rows for *key* (only those equal to *prev_value* if given).

        Adds the row when the key is absent.
        """

    @abstractmethod
    def delete(
        self,
        kind: str,
        object_id: Any,
        key: str,
        value: Optional[Any] = None,
        delete_all: bool = False,
    ) -> bool:
        """Delete rows for *key*; ``delete_all`` ignores *object_id*."""

    def set(self, kind: str, object_id: Any, key: str, value: Any) -> bool:
        """Store *value* as the only value of *key*."""
        return self.update(kind, object_id, key, value)


class IOrderItemRepository(ABC):
    """Line item ledger contract."""

    @abstractmethod
    def add_item(
        self, order_id: Any, name: str, item_type: str, **fields: Any
    ) -> Optional[int]:
        """Append an item; ``None`` when the order id is falsy or unknown."""

    @abstractmethod
    def update_item(self, item_id: Any, **fields: Any) -> bool:
        """Update item fields; ``False`` for an unknown item."""

    @abstractmethod
    def delete_item(self, item_id: Any) -> bool:
        """Delete an item and its meta."""

    @abstractmethod
    def get_items(
        self, order_id: Any, types: Optional[Sequence[str]] = None
    ) -> List[OrderItem]:
        """Items of *order_id*, optionally restricted to *types*."""

    @abstractmethod
    def get_meta(self, item_id: Any, key: str = "", single: bool = True) -> Any:
        """Item meta value(s) for *key*."""

    @abstractmethod
    def add_meta(
        self, item_id: Any, key: str, value: Any, unique: bool = False
    ) -> Optional[int]:
        """Add an item meta row."""

    @abstractmethod
    def update_meta(
        self, item_id: Any, key: str, value: Any, prev_value: Optional[Any] = None
    ) -> bool:
        """Update (or add) an item meta row."""

    @abstractmethod
    def delete_meta(
        self,
        item_id: Any,
        key: str,
        value: Optional[Any] = None,
        delete_all: bool = False,
    ) -> bool:
        """Delete item meta rows."""
