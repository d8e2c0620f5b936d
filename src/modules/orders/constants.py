"""Order domain constants.

Defines status choices, the explicit status transition graph, order type
names, line item types and the meta keys used as effect-applied markers.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending payment"
    PROCESSING = "processing", "Processing"
    ON_HOLD = "on-hold", "On hold"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


LEGACY_STATUS_PREFIX = "wc-"

VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.ON_HOLD,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.ON_HOLD,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
        OrderStatus.FAILED,
    },
    OrderStatus.ON_HOLD: {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
        OrderStatus.FAILED,
    },
    OrderStatus.COMPLETED: {OrderStatus.PROCESSING, OrderStatus.REFUNDED},
    OrderStatus.FAILED: {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.ON_HOLD,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CANCELLED: {OrderStatus.PENDING, OrderStatus.PROCESSING},
    OrderStatus.REFUNDED: set(),
}

# Statuses from which a gateway confirmation is accepted.
PAYABLE_STATUSES: set[str] = {
    OrderStatus.ON_HOLD,
    OrderStatus.PENDING,
    OrderStatus.FAILED,
    OrderStatus.CANCELLED,
}

PAYMENT_COMPLETE_EVENT = "payment_complete"


class OrderType:
    ORDER = "shop_order"
    REFUND = "shop_order_refund"


class ItemType(models.TextChoices):
    LINE_ITEM = "line_item", "Line item"
    FEE = "fee", "Fee"
    SHIPPING = "shipping", "Shipping"
    TAX = "tax", "Tax"
    COUPON = "coupon", "Coupon"


REFUNDABLE_ITEM_TYPES: tuple[str, ...] = (
    ItemType.LINE_ITEM,
    ItemType.FEE,
    ItemType.SHIPPING,
)


class MetaKey:
    """Well-known order meta keys."""

    ORDER_KEY = "_order_key"
    CREATED_VIA = "_created_via"
    TRANSACTION_ID = "_transaction_id"
    BILLING_EMAIL = "_billing_email"
    BILLING_FIRST_NAME = "_billing_first_name"
    BILLING_LAST_NAME = "_billing_last_name"
    SHIPPING_FIRST_NAME = "_shipping_first_name"
    SHIPPING_LAST_NAME = "_shipping_last_name"
    REFUNDED_ITEM_ID = "_refunded_item_id"
    TAX_RATE_ID = "rate_id"

    # Effect-applied markers
    DOWNLOAD_PERMISSIONS_GRANTED = "_download_permissions_granted"
    RECORDED_SALES = "_recorded_sales"
    RECORDED_COUPON_USAGE = "_recorded_coupon_usage_counts"
    STOCK_REDUCED = "_order_stock_reduced"


DEFAULT_SEARCH_FIELDS: tuple[str, ...] = (
    "_billing_company",
    "_billing_address_1",
    "_billing_address_2",
    "_billing_city",
    "_billing_postcode",
    "_billing_country",
    "_billing_state",
    "_billing_email",
    "_billing_phone",
    "_shipping_address_1",
    "_shipping_address_2",
    "_shipping_city",
    "_shipping_postcode",
    "_shipping_country",
    "_shipping_state",
)

LEGACY_QUERY_ARGS: dict[str, str] = {
    "numberposts": "limit",
    "post_type": "type",
    "post_status": "status",
    "post_parent": "parent",
    "author": "customer",
    "posts_per_page": "limit",
    "paged": "page",
}

ORDER_KEY_PREFIX = "wc_order_"
UNPAID_ORDER_NOTE = "Unpaid order cancelled - time limit reached."
FULL_REFUND_REASON = "Order Fully Refunded"
