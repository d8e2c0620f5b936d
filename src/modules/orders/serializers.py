"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import ItemType
from modules.orders.models import Order, OrderItem, OrderNote

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------

CONTACT_FIELDS = (
    "first_name",
    "last_name",
    "company",
    "address_1",
    "address_2",
    "city",
    "state",
    "postcode",
    "country",
    "email",
    "phone",
)


class AddressSerializer(serializers.Serializer):
    first_name = serializers.CharField(required=False, allow_blank=True)
    last_name = serializers.CharField(required=False, allow_blank=True)
    company = serializers.CharField(required=False, allow_blank=True)
    address_1 = serializers.CharField(required=False, allow_blank=True)
    address_2 = serializers.CharField(required=False, allow_blank=True)
    city = serializers.CharField(required=False, allow_blank=True)
    state = serializers.CharField(required=False, allow_blank=True)
    postcode = serializers.CharField(required=False, allow_blank=True)
    country = serializers.CharField(required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True)


class CreateOrderItemSerializer(serializers.Serializer):
    """Validates a single item in an order creation request."""

    item_type = serializers.ChoiceField(
        choices=[ItemType.LINE_ITEM, ItemType.FEE, ItemType.SHIPPING],
        default=ItemType.LINE_ITEM,
    )
    product_id = serializers.UUIDField(required=False, allow_null=True)
    name = serializers.CharField(required=False, default="", allow_blank=True)
    quantity = serializers.IntegerField(min_value=1, default=1)
    subtotal = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )
    total = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )
    taxes = serializers.DictField(
        child=serializers.DecimalField(max_digits=12, decimal_places=2),
        required=False,
        default=dict,
    )


class CreateOrderSerializer(serializers.Serializer):
    """Validates the order creation request payload."""

    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    customer_user = serializers.IntegerField(
        min_value=1, required=False, allow_null=True
    )
    created_via = serializers.CharField(required=False, default="api")
    billing = AddressSerializer(required=False, default=dict)
    shipping = AddressSerializer(required=False, default=dict)
    coupon_codes = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )


class UpdateStatusSerializer(serializers.Serializer):
    status = serializers.CharField()
    note = serializers.CharField(required=False, default="", allow_blank=True)


class PaymentCompleteSerializer(serializers.Serializer):
    transaction_id = serializers.CharField(
        required=False, default="", allow_blank=True
    )


class RefundLineItemSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(min_value=1)
    qty = serializers.IntegerField(min_value=0, default=0)
    refund_total = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0, default=0
    )
    refund_tax = serializers.DictField(
        child=serializers.DecimalField(max_digits=12, decimal_places=2),
        required=False,
        default=dict,
    )


class CreateRefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    line_items = RefundLineItemSerializer(many=True, required=False, default=list)


class OrderQuerySerializer(serializers.Serializer):
    """Query string of the order listing."""

    status = serializers.ListField(child=serializers.CharField(), required=False)
    customer = serializers.ListField(child=serializers.CharField(), required=False)
    parent = serializers.IntegerField(required=False)
    limit = serializers.IntegerField(min_value=-1, required=False)
    offset = serializers.IntegerField(required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    exclude = serializers.ListField(child=serializers.IntegerField(), required=False)
    orderby = serializers.ChoiceField(
        choices=["date", "modified", "id", "total", "rand"], required=False
    )
    order = serializers.CharField(required=False)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for order items with product snapshot."""

    product_sku = serializers.CharField(
        source="product.sku", read_only=True, default=None
    )

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "item_type",
            "name",
            "product_id",
            "product_sku",
            "quantity",
            "subtotal",
            "subtotal_tax",
            "total",
            "total_tax",
            "taxes",
        ]
        read_only_fields = fields


class OrderNoteSerializer(serializers.ModelSerializer):
    """Read serializer for order notes."""

    class Meta:
        model = OrderNote
        fields = [
            "id",
            "note",
            "old_status",
            "new_status",
            "is_customer_note",
            "added_by",
            "created_at",
        ]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    amount = serializers.DecimalField(
        source="refund_amount", max_digits=12, decimal_places=2, read_only=True
    )
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "parent_id",
            "amount",
            "total",
            "refund_reason",
            "refunded_by",
            "created_at",
            "items",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items and contact details."""

    items = OrderItemSerializer(many=True, read_only=True)
    order_key = serializers.CharField(read_only=True)
    billing = serializers.SerializerMethodField()
    shipping = serializers.SerializerMethodField()
    total_tax = serializers.DecimalField(
        max_digits=12, decimal_places=2, read_only=True
    )

    class Meta:
        model = Order
        fields = [
            "id",
            "order_key",
            "order_type",
            "status",
            "customer_user",
            "discount_total",
            "shipping_total",
            "shipping_tax",
            "cart_tax",
            "total_tax",
            "total",
            "date_paid",
            "date_completed",
            "created_at",
            "updated_at",
            "billing",
            "shipping",
            "items",
        ]
        read_only_fields = fields

    @staticmethod
    def _contact(order: Order, prefix: str) -> dict:
        keys = {f"{prefix}{field}": field for field in CONTACT_FIELDS}
        rows = order.meta.filter(key__in=keys).values_list("key", "value")
        return {keys[key]: value for key, value in rows}

    def get_billing(self, order: Order) -> dict:
        return self._contact(order, "_billing_")

    def get_shipping(self, order: Order) -> dict:
        return self._contact(order, "_shipping_")


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    billing_email = serializers.CharField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_type",
            "status",
            "customer_user",
            "billing_email",
            "total",
            "created_at",
        ]
        read_only_fields = fields
