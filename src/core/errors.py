"""
Exceptions raised by the workshop tracker.

The duration engine itself never raises on bad numeric or label data; these
cover caller mistakes (opt-in precondition checks) and log-store lookups.
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""


class PreconditionViolation(TrackerError, ValueError):
    """Raised by opt-in validation when events are unsorted or the window is inverted."""


class OrderNotFound(TrackerError, LookupError):
    """Raised when an order id is not present in the log store."""

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id
