"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.
"""

from __future__ import annotations


class OrderError(Exception):
    """Base class for order domain errors."""


class InvalidOrder(OrderError):
    """The referenced order does not exist."""


class InvalidStatus(OrderError):
    """An unregistered status name or a forbidden transition."""


class InvalidRefundAmount(OrderError):
    """The refund would push ``total_refunded`` above the order total."""


class PolicyDisabled(OrderError):
    """A feature switched off by store policy (no-op, not a failure)."""


class PersistenceFailure(OrderError):
    """The underlying store rejected a write.

    Carries a machine-readable ``code`` next to the message so callers can
    report the failure without parsing text.
    """

    def __init__(self, message: str, code: str = "persistence_failure") -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RefundCreationFailed(PersistenceFailure):
    """Refund creation failed and nothing was persisted."""

    def __init__(self, message: str, code: str = "refund_failed") -> None:
        super().__init__(message, code=code)
