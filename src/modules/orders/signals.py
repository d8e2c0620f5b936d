"""Django signals sent by the order flow.

Notifications only: receivers cannot alter behaviour (use ``OrderHooks``
for that).  Every signal is sent with ``sender=Order`` (or ``Product``) and
the keyword arguments listed next to it.
"""

from __future__ import annotations

from django.dispatch import Signal

# order, old_status, new_status
order_status_changed = Signal()

# order
payment_completed = Signal()

# order
order_stock_reduced = Signal()

# product, order, quantity
product_on_backorder = Signal()

# order
sales_recorded = Signal()

# order
download_permissions_granted = Signal()

# order, used_by, action ("increase" | "decrease")
coupon_usage_updated = Signal()

# order, refund
refund_created = Signal()

# order_id
order_transients_cleared = Signal()
