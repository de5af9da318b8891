"""
Exception hierarchy for the billing action engine.

None of these escape the public entry points: the engine, dispatcher and
generators turn them into high-risk `error` billing actions.
"""

from typing import Any, Dict, Optional


class DimelyError(Exception):
    """Base class for all billing engine errors."""


class InvalidDateError(DimelyError, ValueError):
    """A date string could not be parsed as YYYY-MM-DD."""

    def __init__(self, field_name: str, value: Any):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid {field_name}: {value!r} (expected YYYY-MM-DD)")


class ProrationError(DimelyError):
    """Proration could not be computed for the requested period."""


class InvalidDateRange(ProrationError):
    pass


class NoRemainingPeriod(ProrationError):
    pass


class UnsupportedOrderTypeError(DimelyError):
    def __init__(self, order_type: Any):
        self.order_type = order_type
        super().__init__(f"Unsupported opportunity type: {order_type}")


class RecurlyApiError(DimelyError):
    """A billing provider call failed."""

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"Failed to {operation}: {message}")
