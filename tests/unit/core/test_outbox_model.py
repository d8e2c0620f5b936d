"""Unit tests for the OutboxEvent model and its relay task.

Covers:
- Default status is PENDING.
- mark_as_published() / mark_as_failed(error) transitions.
- relay_outbox_events delivers through the ``outbox_event_ready`` signal,
  marking rows published or failed, and retries failed rows up to
  ``MAX_RETRIES`` times.
"""

from __future__ import annotations

import pytest

from modules.core.models import EventStatus, OutboxEvent
from modules.core.signals import outbox_event_ready
from modules.core.tasks import MAX_RETRIES, relay_outbox_events

pytestmark = pytest.mark.unit


def _make_event(**overrides) -> OutboxEvent:
    defaults = {
        "event_type": "OrderStatusChanged",
        "payload": {"aggregate_id": 7, "new_status": "completed"},
        "aggregate_id": "7",
        "topic": "orders",
    }
    defaults.update(overrides)
    return OutboxEvent.objects.create(**defaults)


@pytest.fixture()
def receiver():
    received = []

    def _receiver(sender, event, **kwargs):
        received.append(event.event_type)

    outbox_event_ready.connect(_receiver, weak=False)
    yield received
    outbox_event_ready.disconnect(_receiver)


@pytest.fixture()
def failing_receiver():
    def _receiver(sender, event, **kwargs):
        raise RuntimeError("webhook endpoint unreachable")

    outbox_event_ready.connect(_receiver, weak=False)
    yield
    outbox_event_ready.disconnect(_receiver)


class TestOutboxEventModel:
    def test_default_status_is_pending(self):
        event = _make_event()
        assert event.status == EventStatus.PENDING
        assert event.retry_count == 0

    def test_payload_round_trip(self):
        event = _make_event(payload={"refund_id": 3, "amount": "30.00"})
        event.refresh_from_db()
        assert event.payload == {"refund_id": 3, "amount": "30.00"}

    def test_mark_as_published(self):
        event = _make_event()
        event.mark_as_published()
        event.refresh_from_db()
        assert event.status == EventStatus.PUBLISHED
        assert event.processed_at is not None

    def test_mark_as_failed_increments_retry(self):
        event = _make_event()
        event.mark_as_failed("Error 1")
        event.mark_as_failed("Error 2")
        event.refresh_from_db()
        assert event.status == EventStatus.FAILED
        assert event.retry_count == 2
        assert event.error_message == "Error 2"

    def test_str_representation(self):
        result = str(_make_event(aggregate_id="42"))
        assert "OrderStatusChanged" in result
        assert "PENDING" in result
        assert "42" in result


class TestRelayOutboxEvents:
    def test_pending_events_are_delivered_and_published(self, receiver):
        _make_event()
        _make_event(event_type="RefundCreated")

        result = relay_outbox_events()

        assert result == {"published": 2, "failed": 0}
        assert receiver == ["OrderStatusChanged", "RefundCreated"]
        assert not OutboxEvent.objects.filter(status=EventStatus.PENDING).exists()

    def test_published_events_are_not_delivered_again(self, receiver):
        _make_event()
        relay_outbox_events()
        relay_outbox_events()
        assert receiver == ["OrderStatusChanged"]

    def test_receiver_error_marks_event_failed(self, failing_receiver):
        event = _make_event()

        result = relay_outbox_events()

        event.refresh_from_db()
        assert result == {"published": 0, "failed": 1}
        assert event.status == EventStatus.FAILED
        assert "unreachable" in event.error_message

    def test_failed_events_stop_after_max_retries(self, failing_receiver):
        event = _make_event()
        for _ in range(MAX_RETRIES + 2):
            relay_outbox_events()
        event.refresh_from_db()
        assert event.retry_count == MAX_RETRIES

    def test_batch_size_limits_delivery(self, receiver):
        for _ in range(3):
            _make_event()
        assert relay_outbox_events(batch_size=2)["published"] == 2
