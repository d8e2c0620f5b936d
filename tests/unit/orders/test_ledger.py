"""Unit tests for ledger arithmetic and the refund item cloners."""

from __future__ import annotations

from decimal import Decimal

import pytest

from modules.orders.constants import ItemType, MetaKey
from modules.orders.dtos import RefundLineItemDTO
from modules.orders.exceptions import OrderError
from modules.orders.ledger import (
    Ledger,
    clone_for_refund,
    money,
    negate,
    tax_lines,
    taxes_json,
)
from modules.orders.models import OrderItem
from modules.orders.repositories import OrderDjangoRepository, OrderItemDjangoRepository

pytestmark = pytest.mark.unit


@pytest.fixture()
def items():
    return OrderItemDjangoRepository()


@pytest.fixture()
def ledger(items):
    return Ledger(items)


@pytest.fixture()
def bare_order():
    return OrderDjangoRepository().create({"status": "pending"})


class TestMoney:
    @pytest.mark.parametrize(
        "value,expected",
        [(None, "0.00"), (0, "0.00"), ("1.005", "1.01"), (2.5, "2.50"), (3, "3.00")],
    )
    def test_money(self, value, expected):
        assert money(value) == Decimal(expected)

    def test_negate_never_produces_negative_zero(self):
        assert str(negate(0)) == "0.00"
        assert negate("4.5") == Decimal("-4.50")

    def test_taxes_json_round_trip(self):
        stored = taxes_json({"1": Decimal("1.5"), 2: Decimal("0.25")})
        assert stored == {
            "total": {"1": "1.50", "2": "0.25"},
            "subtotal": {"1": "1.50", "2": "0.25"},
        }
        assert tax_lines(stored) == {"1": Decimal("1.50"), "2": Decimal("0.25")}
        assert tax_lines({}) == {}


class TestLedger:
    def test_totals_from_items(self, ledger, items, bare_order):
        items.add_item(
            bare_order.id,
            "Widget",
            ItemType.LINE_ITEM,
            quantity=2,
            subtotal=Decimal("40.00"),
            total=Decimal("36.00"),
            taxes=taxes_json({"1": Decimal("3.60")}),
        )
        items.add_item(
            bare_order.id,
            "Express",
            ItemType.SHIPPING,
            total=Decimal("8.00"),
            taxes=taxes_json({"1": Decimal("0.80"), "2": Decimal("0.40")}),
        )
        items.add_item(bare_order.id, "Handling", ItemType.FEE, total=Decimal("2.00"))

        total = ledger.calculate_totals(bare_order)

        assert total == Decimal("50.80")
        bare_order.refresh_from_db()
        assert bare_order.discount_total == Decimal("4.00")
        assert bare_order.shipping_total == Decimal("8.00")
        assert bare_order.cart_tax == Decimal("3.60")
        assert bare_order.shipping_tax == Decimal("1.20")
        assert bare_order.total == Decimal("50.80")

    def test_tax_items_are_regenerated_per_rate(self, ledger, items, bare_order):
        item_id = items.add_item(
            bare_order.id,
            "Widget",
            ItemType.LINE_ITEM,
            total=Decimal("10.00"),
            taxes=taxes_json({"1": Decimal("1.00")}),
        )
        ledger.update_taxes(bare_order)
        items.update_item(item_id, taxes=taxes_json({"2": Decimal("0.50")}))
        ledger.update_taxes(bare_order)

        (tax,) = items.get_items(bare_order.id, [ItemType.TAX])
        assert tax.name == "Tax rate 2"
        assert items.get_meta(tax.id, MetaKey.TAX_RATE_ID) == "2"
        assert items.get_meta(tax.id, "tax_amount") == "0.50"
        assert bare_order.cart_tax == Decimal("0.50")

    def test_without_taxes_uses_stored_tax_totals(self, ledger, items, bare_order):
        items.add_item(
            bare_order.id,
            "Widget",
            ItemType.LINE_ITEM,
            subtotal=Decimal("10.00"),
            total=Decimal("10.00"),
        )
        bare_order.cart_tax = Decimal("1.25")
        bare_order.save()

        assert ledger.calculate_totals(bare_order, and_taxes=False) == Decimal("11.25")
        assert items.get_items(bare_order.id, [ItemType.TAX]) == []

    def test_empty_order_totals_zero(self, ledger, bare_order):
        assert ledger.calculate_totals(bare_order) == Decimal("0.00")


class TestRefundCloners:
    def test_product_line_clone(self, items, bare_order, make_product):
        product = make_product()
        item_id = items.add_item(
            bare_order.id,
            "Widget",
            ItemType.LINE_ITEM,
            product_id=product.id,
            quantity=3,
            total=Decimal("30.00"),
        )
        item = OrderItem.objects.get(id=item_id)

        fields = clone_for_refund(
            item, RefundLineItemDTO(qty=2, refund_total=Decimal("20"))
        )

        assert fields["item_type"] == ItemType.LINE_ITEM
        assert fields["product_id"] == product.id
        assert fields["quantity"] == -2
        assert fields["total"] == Decimal("-20.00")
        assert fields["subtotal"] == Decimal("-20.00")
        assert fields["meta"] == {MetaKey.REFUNDED_ITEM_ID: item.id}

    def test_fee_clone_carries_no_quantity(self, items, bare_order):
        item_id = items.add_item(
            bare_order.id, "Handling", ItemType.FEE, total=Decimal("5.00")
        )
        item = OrderItem.objects.get(id=item_id)

        fields = clone_for_refund(
            item,
            RefundLineItemDTO(
                refund_total=Decimal("5"), refund_tax={"1": Decimal("0.50")}
            ),
        )

        assert "quantity" not in fields
        assert fields["total_tax"] == Decimal("-0.50")
        assert fields["taxes"]["total"] == {"1": "-0.50"}

    @pytest.mark.parametrize("item_type", [ItemType.TAX, ItemType.COUPON])
    def test_unrefundable_types(self, items, bare_order, item_type):
        item_id = items.add_item(bare_order.id, "Other", item_type)
        item = OrderItem.objects.get(id=item_id)

        with pytest.raises(OrderError):
            clone_for_refund(item, RefundLineItemDTO(refund_total=Decimal("1")))
