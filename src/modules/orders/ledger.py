"""Line item ledger arithmetic.

- ``money``: two-place ``Decimal`` quantisation used for every amount.
- ``Ledger.update_taxes``: regenerate the ``tax`` items of an order from
  the per-rate taxes of its priced items.
- ``Ledger.calculate_totals``: recompute the order totals from its items.
- ``REFUND_CLONERS``: one cloner per refundable item type.  A cloner turns
  an original item plus a ``RefundLineItemDTO`` into the field dict of the
  negative refund item.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Mapping

import structlog

from modules.orders.constants import ItemType, MetaKey
from modules.orders.exceptions import OrderError

if TYPE_CHECKING:
    from modules.orders.dtos import RefundLineItemDTO
    from modules.orders.models import Order, OrderItem
    from modules.orders.repositories.interfaces import IOrderItemRepository

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

CART_ITEM_TYPES = (ItemType.LINE_ITEM, ItemType.FEE)


def money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def negate(value: Any) -> Decimal:
    """Negated amount without producing ``-0.00``."""
    return ZERO - money(value)


def _sum(values: Iterable[Any]) -> Decimal:
    return sum((money(value) for value in values), ZERO)


def tax_lines(taxes: Mapping[str, Any], which: str = "total") -> Dict[str, Decimal]:
    """Per-rate amounts stored in an item's ``taxes`` JSON."""
    lines = (taxes or {}).get(which, {})
    return {rate: money(amount) for rate, amount in lines.items()}


def taxes_json(per_rate: Mapping[str, Decimal]) -> Dict[str, Dict[str, str]]:
    lines = {str(rate): str(money(amount)) for rate, amount in per_rate.items()}
    return {"total": lines, "subtotal": dict(lines)}


class Ledger:
    """Tax and total calculations over an order's line items."""

    def __init__(self, items: IOrderItemRepository) -> None:
        self._items = items

    def update_taxes(self, order: Order) -> None:
        """Replace the order's tax items with one item per tax rate.

        Cart taxes come from line items and fees, shipping taxes from
        shipping items.  The rate totals are written to ``cart_tax`` and
        ``shipping_tax``.
        """
        cart: Dict[str, Decimal] = {}
        shipping: Dict[str, Decimal] = {}
        for item in self._items.get_items(
            order.id, CART_ITEM_TYPES + (ItemType.SHIPPING,)
        ):
            target = shipping if item.is_type(ItemType.SHIPPING) else cart
            for rate, amount in tax_lines(item.taxes).items():
                target[rate] = target.get(rate, ZERO) + amount

        for item in self._items.get_items(order.id, [ItemType.TAX]):
            self._items.delete_item(item.id)

        for rate in sorted(set(cart) | set(shipping)):
            tax_amount = cart.get(rate, ZERO)
            shipping_tax_amount = shipping.get(rate, ZERO)
            item_id = self._items.add_item(
                order.id,
                f"Tax rate {rate}",
                ItemType.TAX,
                total=tax_amount,
                total_tax=shipping_tax_amount,
            )
            self._items.add_meta(item_id, MetaKey.TAX_RATE_ID, rate, unique=True)
            self._items.add_meta(item_id, "tax_amount", tax_amount, unique=True)
            self._items.add_meta(
                item_id, "shipping_tax_amount", shipping_tax_amount, unique=True
            )

        order.cart_tax = _sum(cart.values())
        order.shipping_tax = _sum(shipping.values())
        order.save(update_fields=["cart_tax", "shipping_tax"])

    def calculate_totals(self, order: Order, and_taxes: bool = True) -> Decimal:
        """Recompute discount, shipping and grand totals; returns ``total``.

        With ``and_taxes`` the tax items are regenerated first; otherwise the
        stored ``cart_tax``/``shipping_tax`` are used as they are.
        """
        if and_taxes:
            self.update_taxes(order)

        items = self._items.get_items(
            order.id, CART_ITEM_TYPES + (ItemType.SHIPPING,)
        )
        line_items = [item for item in items if item.is_type(ItemType.LINE_ITEM)]
        fees = [item for item in items if item.is_type(ItemType.FEE)]
        shipping = [item for item in items if item.is_type(ItemType.SHIPPING)]

        cart_subtotal = _sum(item.subtotal for item in line_items)
        cart_total = _sum(item.total for item in line_items)

        order.discount_total = money(cart_subtotal - cart_total)
        order.shipping_total = _sum(item.total for item in shipping)
        order.total = money(
            cart_total
            + _sum(item.total for item in fees)
            + order.shipping_total
            + money(order.cart_tax)
            + money(order.shipping_tax)
        )
        order.save(update_fields=["discount_total", "shipping_total", "total"])
        logger.debug(
            "order.totals_calculated", order_id=order.id, total=str(order.total)
        )
        return order.total


# ---------------------------------------------------------------------------
# Refund clones
# ---------------------------------------------------------------------------

RefundCloner = Callable[["OrderItem", "RefundLineItemDTO"], Dict[str, Any]]


def _clone_common(item: OrderItem, line: RefundLineItemDTO) -> Dict[str, Any]:
    refund_tax = {rate: negate(amount) for rate, amount in line.refund_tax.items()}
    return {
        "item_type": item.item_type,
        "name": item.name,
        "total": negate(line.refund_total),
        "total_tax": _sum(refund_tax.values()),
        "taxes": taxes_json(refund_tax),
        "meta": {MetaKey.REFUNDED_ITEM_ID: item.id},
    }


def _clone_product_line(item: OrderItem, line: RefundLineItemDTO) -> Dict[str, Any]:
    fields = _clone_common(item, line)
    fields.update(
        product_id=item.product_id,
        quantity=-abs(line.qty),
        subtotal=fields["total"],
        subtotal_tax=fields["total_tax"],
    )
    return fields


def _clone_fee(item: OrderItem, line: RefundLineItemDTO) -> Dict[str, Any]:
    return _clone_common(item, line)


def _clone_shipping(item: OrderItem, line: RefundLineItemDTO) -> Dict[str, Any]:
    return _clone_common(item, line)


REFUND_CLONERS: Dict[str, RefundCloner] = {
    ItemType.LINE_ITEM: _clone_product_line,
    ItemType.FEE: _clone_fee,
    ItemType.SHIPPING: _clone_shipping,
}


def clone_for_refund(item: OrderItem, line: RefundLineItemDTO) -> Dict[str, Any]:
    """Field dict of the refund counterpart of *item*."""
    cloner = REFUND_CLONERS.get(item.item_type)
    if cloner is None:
        raise OrderError(f"Items of type {item.item_type!r} cannot be refunded.")
    return cloner(item, line)
