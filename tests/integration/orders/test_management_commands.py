from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from modules.orders.constants import OrderStatus
from modules.orders.models import Order

pytestmark = pytest.mark.integration


def _run(*args):
    out = StringIO()
    call_command("cancel_unpaid_orders", *args, stdout=out)
    return out.getvalue()


class TestCancelUnpaidOrdersCommand:
    def test_cancels_stale_orders(self, make_order):
        order = make_order(created_via="checkout")
        Order.objects.filter(id=order.id).update(
            updated_at=timezone.now() - timedelta(hours=2)
        )

        output = _run()

        assert "cancelled=1, skipped=0, failed=0" in output
        order.refresh_from_db()
        assert order.status == OrderStatus.CANCELLED

    def test_disabled_policy(self, settings):
        settings.ORDERS = {**settings.ORDERS, "MANAGE_STOCK": False}

        assert "disabled" in _run()

    def test_queue(self, settings):
        settings.CELERY_TASK_ALWAYS_EAGER = True

        assert "Queued unpaid order reaper" in _run("--queue")
