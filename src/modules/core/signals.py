"""Signals of the core module."""

from django.dispatch import Signal

# Sent once per outbox row by the relay; kwargs: ``event`` (OutboxEvent).
outbox_event_ready = Signal()
