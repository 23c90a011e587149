"""
Order Engine Errors

Every failure raised by the order engine is an ``OrderError`` carrying a
stable machine-readable ``code`` and the HTTP status the API boundary
answers with. Clients treat VERSION_CONFLICT as retryable after a refetch
and every other code as final for that request.
"""

from typing import Any, Optional


class OrderError(Exception):
    """
    Base class for order engine failures.

    Attributes:
        code: Stable error code (e.g. "VERSION_CONFLICT")
        message: Human-readable description
        http_status: Status code used by the HTTP layer
        details: Extra structured data for the client
    """

    code = "ORDER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API error body."""
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInputError(OrderError):
    code = "INVALID_INPUT"
    http_status = 400


class TableNotFoundError(OrderError):
    code = "TABLE_NOT_FOUND"
    http_status = 404


class TableDeletedError(OrderError):
    code = "TABLE_DELETED"
    http_status = 404


class TableOccupiedError(OrderError):
    code = "TABLE_OCCUPIED"
    http_status = 409


class TableCodeExistsError(OrderError):
    code = "TABLE_CODE_EXISTS"
    http_status = 409


class MenuItemNotFoundError(OrderError):
    code = "MENU_ITEM_NOT_FOUND"
    http_status = 404

    def __init__(self, missing_ids: list[str]):
        super().__init__(
            f"Menu items not found: {', '.join(missing_ids)}",
            details={"missingIds": missing_ids},
        )
        self.missing_ids = missing_ids


class MenuItemUnavailableError(OrderError):
    code = "MENU_ITEM_UNAVAILABLE"
    http_status = 400

    def __init__(self, message: str, item_ids: list[str]):
        super().__init__(message, details={"menuItemIds": item_ids})
        self.item_ids = item_ids


class OrderNotFoundError(OrderError):
    code = "ORDER_NOT_FOUND"
    http_status = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class OrderItemNotFoundError(OrderError):
    code = "ORDER_ITEM_NOT_FOUND"
    http_status = 404

    def __init__(self, item_id: str):
        super().__init__(f"Order item {item_id} not found")
        self.item_id = item_id


class OrderClosedError(OrderError):
    code = "ORDER_CLOSED"
    http_status = 400


class VersionConflictError(OrderError):
    """Optimistic lock failure. The caller must refetch and retry."""

    code = "VERSION_CONFLICT"
    http_status = 409

    def __init__(
        self,
        order_id: str,
        expected_version: Optional[int],
        current_version: Optional[int] = None,
    ):
        details = {"expectedVersion": expected_version}
        if current_version is not None:
            details["currentVersion"] = current_version
        super().__init__(
            "Order was modified by another user. Please refresh.",
            details=details,
        )
        self.order_id = order_id
        self.expected_version = expected_version
        self.current_version = current_version


class InvalidTransitionError(OrderError):
    code = "INVALID_TRANSITION"
    http_status = 400

    def __init__(self, from_status, to_status):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot transition from {from_value} to {to_value}",
            details={"from": from_value, "to": to_value},
        )
        self.from_status = from_status
        self.to_status = to_status


class CreationFailedError(OrderError):
    code = "CREATION_FAILED"
    http_status = 500
