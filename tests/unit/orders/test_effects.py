"""Unit tests for the idempotent order effects and the effect registry."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from modules.coupons.models import CouponUsage
from modules.orders import signals
from modules.orders.config import OrderHooks, build_configuration
from modules.orders.constants import (
    FULL_REFUND_REASON,
    PAYMENT_COMPLETE_EVENT,
    MetaKey,
    OrderStatus,
    OrderType,
)
from modules.orders.dtos import CreateRefundDTO
from modules.orders.effects import Effect, EffectRegistry
from modules.orders.exceptions import OrderError
from modules.orders.models import DownloadPermission, Order, OrderNote
from modules.orders.providers import build_effect_registry
from modules.orders.repositories import (
    MetadataDjangoRepository,
    OrderDjangoRepository,
)

pytestmark = pytest.mark.unit


def _orders_setting(settings, **values):
    settings.ORDERS = {**settings.ORDERS, **values}


# ---------------------------------------------------------------------------
# Registry mechanics
# ---------------------------------------------------------------------------


class _Counting(Effect):
    name = "counting"
    marker = "_counting_applied"

    def __init__(self, metadata):
        super().__init__(metadata)
        self.calls = 0

    def apply(self, order):
        self.calls += 1


class _Failing(Effect):
    name = "failing"
    marker = "_failing_applied"

    def apply(self, order):
        raise OrderError("boom")


class TestEffectRegistry:
    @pytest.fixture()
    def metadata(self):
        return MetadataDjangoRepository()

    def test_effect_runs_once_per_marker(self, make_order, metadata):
        order = make_order()
        registry = EffectRegistry(OrderDjangoRepository())
        counting = _Counting(metadata)
        registry.register("custom", counting)

        assert registry.dispatch("custom", order.id) == ["counting"]
        assert registry.dispatch("custom", order.id) == []
        assert counting.calls == 1
        assert order.get_meta("_counting_applied") == "yes"

    def test_registering_twice_keeps_one_entry(self, metadata):
        registry = EffectRegistry(OrderDjangoRepository())
        counting = _Counting(metadata)
        registry.register("custom", counting)
        registry.register("custom", counting)
        assert registry.effects_for("custom") == [counting]

    def test_failing_effect_does_not_stop_the_others(self, make_order, metadata):
        order = make_order()
        registry = EffectRegistry(OrderDjangoRepository())
        counting = _Counting(metadata)
        registry.register("custom", _Failing(metadata))
        registry.register("custom", counting)

        assert registry.dispatch("custom", order.id) == ["counting"]
        assert order.get_meta("_failing_applied") is None
        assert counting.calls == 1

    def test_missing_order_applies_nothing(self, metadata):
        registry = EffectRegistry(OrderDjangoRepository())
        counting = _Counting(metadata)
        registry.register("custom", counting)

        assert registry.dispatch("custom", 999_999) == []
        assert counting.calls == 0

    def test_refunds_are_skipped(self, make_order, refund_service, metadata):
        order = make_order()
        refund = refund_service.create_refund(
            CreateRefundDTO(order_id=order.id, amount=Decimal("5.00"))
        )
        registry = EffectRegistry(OrderDjangoRepository())
        counting = _Counting(metadata)
        registry.register("custom", counting)

        assert registry.dispatch("custom", refund.id) == []
        assert counting.calls == 0

    def test_unknown_event_is_a_no_op(self, registry, make_order):
        assert registry.dispatch("no-such-event", make_order().id) == []


# ---------------------------------------------------------------------------
# Download permissions
# ---------------------------------------------------------------------------


class TestGrantDownloadPermissions:
    def test_granted_on_completion(
        self, order_service, make_order, downloadable_product
    ):
        order = make_order(products=[(downloadable_product, 2)])
        order = order_service.update_status(order.id, OrderStatus.COMPLETED)

        permission = DownloadPermission.objects.get(order_id=order.id)
        assert permission.download_id == "ebook-pdf"
        assert permission.downloads_remaining == 6
        assert permission.user_email == "ada@example.com"
        assert permission.order_key == order.order_key
        assert permission.access_expires == (
            order.date_completed.date() + timedelta(days=30)
        )
        assert order.get_meta(MetaKey.DOWNLOAD_PERMISSIONS_GRANTED) == "1"

    def test_replaying_the_status_grants_nothing_new(
        self, order_service, make_order, downloadable_product
    ):
        order = make_order(products=[(downloadable_product, 1)])
        order_service.update_status(order.id, OrderStatus.COMPLETED)
        order_service.update_status(order.id, OrderStatus.PROCESSING)
        order_service.update_status(order.id, OrderStatus.COMPLETED)

        assert DownloadPermission.objects.filter(order_id=order.id).count() == 1

    def test_unlimited_when_product_sets_no_limits(
        self, order_service, make_order, downloadable_product
    ):
        downloadable_product.download_limit = None
        downloadable_product.download_expiry = None
        downloadable_product.save()
        order = make_order(products=[(downloadable_product, 1)])
        order_service.update_status(order.id, OrderStatus.COMPLETED)

        permission = DownloadPermission.objects.get(order_id=order.id)
        assert permission.downloads_remaining is None
        assert permission.access_expires is None

    def test_processing_waits_for_completion_when_store_says_so(
        self, settings, order_service, make_order, downloadable_product
    ):
        _orders_setting(settings, DOWNLOADS_GRANT_ACCESS_AFTER_PAYMENT=False)
        order = make_order(products=[(downloadable_product, 1)])

        order_service.update_status(order.id, OrderStatus.PROCESSING)
        assert not DownloadPermission.objects.filter(order_id=order.id).exists()

        order_service.update_status(order.id, OrderStatus.COMPLETED)
        assert DownloadPermission.objects.filter(order_id=order.id).exists()

    def test_virtual_downloadable_order_completes_on_payment(
        self, order_service, make_order, downloadable_product
    ):
        order = make_order(products=[(downloadable_product, 1)])
        assert order_service.payment_complete(order.id, "txn-42") is True

        order.refresh_from_db()
        assert order.status == OrderStatus.COMPLETED
        assert DownloadPermission.objects.filter(order_id=order.id).count() == 1


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


class TestRecordSales:
    def test_sales_recorded_once_across_statuses(
        self, order_service, make_order, stocked_product
    ):
        order = make_order(products=[(stocked_product, 3)])
        for status in (
            OrderStatus.ON_HOLD,
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
        ):
            order_service.update_status(order.id, status)

        stocked_product.refresh_from_db()
        assert stocked_product.total_sales == 3
        assert order.get_meta(MetaKey.RECORDED_SALES) == "yes"

    def test_pending_order_records_nothing(self, make_order, stocked_product):
        make_order(products=[(stocked_product, 3)])
        stocked_product.refresh_from_db()
        assert stocked_product.total_sales == 0


# ---------------------------------------------------------------------------
# Coupon usage
# ---------------------------------------------------------------------------


class TestUpdateCouponUsageCounts:
    def test_guest_use_attributed_to_billing_email(
        self, order_service, make_order, coupon
    ):
        order = make_order(coupon_codes=["SAVE10"])
        order_service.update_status(order.id, OrderStatus.PROCESSING)

        coupon.refresh_from_db()
        assert coupon.usage_count == 1
        assert CouponUsage.objects.get(coupon=coupon).used_by == "ada@example.com"

    def test_customer_use_attributed_to_user_id(
        self, order_service, make_order, coupon
    ):
        order = make_order(coupon_codes=["save10"], customer_user=42)
        order_service.update_status(order.id, OrderStatus.ON_HOLD)

        assert CouponUsage.objects.get(coupon=coupon).used_by == "42"

    def test_cancel_reverses_and_reactivation_counts_again(
        self, order_service, make_order, coupon
    ):
        order = make_order(coupon_codes=["SAVE10"])
        order_service.update_status(order.id, OrderStatus.PROCESSING)
        order_service.update_status(order.id, OrderStatus.COMPLETED)
        coupon.refresh_from_db()
        assert coupon.usage_count == 1

        order_service.update_status(order.id, OrderStatus.PROCESSING)
        order_service.update_status(order.id, OrderStatus.CANCELLED)
        coupon.refresh_from_db()
        assert coupon.usage_count == 0
        assert not CouponUsage.objects.filter(coupon=coupon).exists()
        assert order.get_meta(MetaKey.RECORDED_COUPON_USAGE) is None

        order_service.update_status(order.id, OrderStatus.PROCESSING)
        coupon.refresh_from_db()
        assert coupon.usage_count == 1

    def test_cancelling_an_uncounted_order_changes_nothing(
        self, order_service, make_order, coupon
    ):
        order = make_order(coupon_codes=["SAVE10"])
        order_service.update_status(order.id, OrderStatus.CANCELLED)

        coupon.refresh_from_db()
        assert coupon.usage_count == 0

    def test_unknown_coupon_code_is_skipped(self, order_service, make_order):
        order = make_order(coupon_codes=["GHOST"])
        order_service.update_status(order.id, OrderStatus.PROCESSING)

        assert order.get_meta(MetaKey.RECORDED_COUPON_USAGE) == "yes"


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


class TestReduceOrderStock:
    def test_payment_reduces_stock_and_writes_a_note(
        self, order_service, make_order, stocked_product
    ):
        order = make_order(products=[(stocked_product, 3)])
        assert order_service.payment_complete(order.id, "txn-1") is True

        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == 7
        assert order.get_meta(MetaKey.STOCK_REDUCED) == "1"
        assert OrderNote.objects.filter(
            order_id=order.id, note="Item STOCKED-1 stock reduced from 10 to 7."
        ).exists()

    def test_replayed_payment_event_reduces_once(
        self, registry, order_service, make_order, stocked_product
    ):
        order = make_order(products=[(stocked_product, 3)])
        order_service.payment_complete(order.id)

        assert registry.dispatch(PAYMENT_COMPLETE_EVENT, order.id) == []
        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == 7

    def test_backorder_is_reported(self, order_service, make_order, stocked_product):
        received = []

        def receiver(sender, product, order, quantity, **kwargs):
            received.append((product.sku, quantity))

        signals.product_on_backorder.connect(receiver)
        try:
            order = make_order(products=[(stocked_product, 12)])
            order_service.payment_complete(order.id)
        finally:
            signals.product_on_backorder.disconnect(receiver)

        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == -2
        assert received == [("STOCKED-1", 12)]

    def test_unmanaged_products_are_left_alone(
        self, order_service, make_order, make_product
    ):
        product = make_product(stock_quantity=5)
        order = make_order(products=[(product, 2)])
        order_service.payment_complete(order.id)

        product.refresh_from_db()
        assert product.stock_quantity == 5

    def test_marker_set_even_when_store_does_not_manage_stock(
        self, settings, order_service, make_order, stocked_product
    ):
        _orders_setting(settings, MANAGE_STOCK=False)
        order = make_order(products=[(stocked_product, 3)])
        order_service.payment_complete(order.id)

        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == 10
        assert order.get_meta(MetaKey.STOCK_REDUCED) == "1"

    def test_quantity_hook_decides_the_deduction(self, make_order, stocked_product):
        configuration = build_configuration(
            hooks=OrderHooks(order_item_quantity=lambda order, item, quantity: 1)
        )
        registry = build_effect_registry(configuration)
        order = make_order(products=[(stocked_product, 4)])

        assert registry.dispatch(PAYMENT_COMPLETE_EVENT, order.id) == [
            "reduce_order_stock"
        ]
        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == 9

    def test_veto_hook_skips_the_reduction(self, make_order, stocked_product):
        configuration = build_configuration(
            hooks=OrderHooks(can_reduce_stock=lambda order: False)
        )
        registry = build_effect_registry(configuration)
        order = make_order(products=[(stocked_product, 4)])

        registry.dispatch(PAYMENT_COMPLETE_EVENT, order.id)
        stocked_product.refresh_from_db()
        assert stocked_product.stock_quantity == 10


# ---------------------------------------------------------------------------
# Refund settlement
# ---------------------------------------------------------------------------


class TestSettleRemainingRefund:
    def test_refunded_status_settles_the_remainder(
        self, order_service, refund_service, make_order
    ):
        order = make_order()
        order_service.update_status(order.id, OrderStatus.PROCESSING)
        refund_service.create_refund(
            CreateRefundDTO(order_id=order.id, amount=Decimal("30.00"))
        )

        order_service.update_status(order.id, OrderStatus.REFUNDED)

        refunds = Order.objects.filter(parent_id=order.id, order_type=OrderType.REFUND)
        assert refunds.count() == 2
        settlement = refunds.get(refund_reason=FULL_REFUND_REASON)
        assert settlement.total == Decimal("-70.00")
        assert OrderDjangoRepository().get_total_refunded(order.id) == Decimal(
            "100.00"
        )

    def test_fully_refunded_order_gets_no_extra_refund(
        self, order_service, refund_service, make_order
    ):
        order = make_order()
        order_service.update_status(order.id, OrderStatus.PROCESSING)
        refund_service.create_refund(
            CreateRefundDTO(order_id=order.id, amount=Decimal("100.00"))
        )

        order_service.update_status(order.id, OrderStatus.REFUNDED)

        assert Order.objects.filter(parent_id=order.id).count() == 1
