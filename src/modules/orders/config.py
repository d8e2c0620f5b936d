"""Order policy configuration.

- ``OrderOptions``: store policy read from ``settings.ORDERS`` (pydantic,
  immutable).  Re-read per use case so overrides take effect immediately.
- ``OrderTypeRegistry``: order type name → capability flags.  Filled once
  at start-up, read-only afterwards.
- ``OrderHooks``: the enumerated extension points of the order flow.  Each
  field is a plain callable with a fixed signature; replace them with
  ``dataclasses.replace`` to customise behaviour.
- ``OrdersConfiguration``: the bundle built by ``OrdersConfig.ready()`` and
  passed explicitly to services, the reaper and the search query.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from modules.orders.constants import (
    DEFAULT_SEARCH_FIELDS,
    LEGACY_QUERY_ARGS,
    MetaKey,
    OrderType,
)

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderItem

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Store options
# ---------------------------------------------------------------------------


class OrderOptions(BaseModel):
    """Immutable snapshot of the store's order policy."""

    model_config = ConfigDict(frozen=True)

    manage_stock: bool = True
    hold_stock_minutes: int = 60
    downloads_grant_access_after_payment: bool = True
    posts_per_page: int = 10
    enforce_status_transitions: bool = True
    search_fields: tuple[str, ...] = DEFAULT_SEARCH_FIELDS
    search_case_sensitive: bool = False
    search_escape_wildcards: bool = False
    report_cache_keys: tuple[str, ...] = ("wc_admin_report",)
    reaper_lock_timeout: int = 300

    @field_validator("hold_stock_minutes")
    @classmethod
    def hold_minutes_not_negative(cls, v: int) -> int:
        return max(v, 0)

    @classmethod
    def from_settings(cls, source: Optional[Mapping[str, Any]] = None) -> OrderOptions:
        """Build options from ``settings.ORDERS`` (upper-case keys)."""
        if source is None:
            from django.conf import settings

            source = getattr(settings, "ORDERS", {})
        values = {key.lower(): value for key, value in source.items()}
        known = {name: values[name] for name in cls.model_fields if name in values}
        return cls(**known)


# ---------------------------------------------------------------------------
# Order type registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderTypeConfig:
    """Capability flags of one order type."""

    name: str
    exclude_from_orders_screen: bool = False
    add_order_meta_boxes: bool = True
    exclude_from_order_count: bool = False
    exclude_from_order_views: bool = False
    exclude_from_order_webhooks: bool = False
    exclude_from_order_reports: bool = False
    exclude_from_order_sales_reports: bool = False
    class_name: str = "Order"


_CAPABILITY_FILTERS: Dict[str, Callable[[OrderTypeConfig], bool]] = {
    "order-count": lambda t: not t.exclude_from_order_count,
    "order-meta-boxes": lambda t: t.add_order_meta_boxes,
    "view-orders": lambda t: not t.exclude_from_order_views,
    "reports": lambda t: not t.exclude_from_order_reports,
    "sales-reports": lambda t: not t.exclude_from_order_sales_reports,
    "order-webhooks": lambda t: not t.exclude_from_order_webhooks,
}


class OrderTypeRegistry:
    """Registry of order-like aggregate types and what they take part in."""

    def __init__(self) -> None:
        self._types: Dict[str, OrderTypeConfig] = {}

    def register(self, name: str, **flags: Any) -> bool:
        """Register *name*; return ``False`` if it is already registered.

        Unknown flag names are ignored.
        """
        if not name or name in self._types:
            logger.warning("order_type.register_rejected", order_type=name)
            return False
        allowed = {f.name for f in fields(OrderTypeConfig)} - {"name"}
        config = OrderTypeConfig(
            name=name, **{k: v for k, v in flags.items() if k in allowed}
        )
        self._types[name] = config
        return True

    def get(self, name: str) -> Optional[OrderTypeConfig]:
        return self._types.get(name)

    def types(self, capability: str = "") -> List[str]:
        """Return type names taking part in *capability* (all when empty)."""
        check = _CAPABILITY_FILTERS.get(capability)
        if check is None:
            return list(self._types)
        return [name for name, config in self._types.items() if check(config)]

    def __contains__(self, name: object) -> bool:
        return name in self._types


DEFAULT_ORDER_TYPES: Dict[str, Dict[str, Any]] = {
    OrderType.ORDER: {},
    OrderType.REFUND: {
        "exclude_from_orders_screen": True,
        "add_order_meta_boxes": False,
        "exclude_from_order_count": True,
        "exclude_from_order_views": True,
        "exclude_from_order_webhooks": True,
        "exclude_from_order_sales_reports": True,
        "class_name": "Refund",
    },
}


# ---------------------------------------------------------------------------
# Extension points
# ---------------------------------------------------------------------------


def _reduce_stock_unless_reduced(order: Order, already_reduced: bool) -> bool:
    return not already_reduced


def _always(order: Order) -> bool:
    return True


def _item_quantity(order: Order, item: OrderItem, quantity: int) -> int:
    return quantity


def _created_via_checkout(order: Order) -> bool:
    return order.get_meta(MetaKey.CREATED_VIA) == "checkout"


@dataclass(frozen=True)
class OrderHooks:
    """Extension points of the order flow.

    ``reduce_stock_due(order, already_reduced) -> bool``
        Whether the payment-complete stock reduction should run.
    ``can_reduce_stock(order) -> bool``
        Final veto on touching stock for *order*.
    ``order_item_quantity(order, item, quantity) -> int``
        Quantity to deduct for a line item.
    ``cancel_unpaid_order(order) -> bool``
        Whether the reaper may cancel a stale pending order.
    """

    reduce_stock_due: Callable[[Order, bool], bool] = _reduce_stock_unless_reduced
    can_reduce_stock: Callable[[Order], bool] = _always
    order_item_quantity: Callable[[Order, OrderItem, int], int] = _item_quantity
    cancel_unpaid_order: Callable[[Order], bool] = _created_via_checkout


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrdersConfiguration:
    """Process-wide order configuration, built once and passed explicitly."""

    order_types: OrderTypeRegistry
    hooks: OrderHooks = field(default_factory=OrderHooks)
    legacy_arg_map: Mapping[str, str] = field(
        default_factory=lambda: dict(LEGACY_QUERY_ARGS)
    )


def build_configuration(
    order_types: Optional[Mapping[str, Mapping[str, Any]]] = None,
    hooks: Optional[OrderHooks] = None,
) -> OrdersConfiguration:
    """Build the configuration bundle, registering the given order types."""
    registry = OrderTypeRegistry()
    for name, flags in (order_types or DEFAULT_ORDER_TYPES).items():
        registry.register(name, **flags)
    return OrdersConfiguration(order_types=registry, hooks=hooks or OrderHooks())
