"""
Order Errors
============
Typed failures raised by the order transaction engine.

Every error carries an HTTP status, a stable machine-readable code and a
details dict, so the API layer can render it without inspecting types.
"""

from typing import Any, Dict, Optional


class OrderError(Exception):
    """Base class for all order engine failures."""

    status_code = 400
    code = "ORDER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Error payload for the response envelope."""
        return {
            "code": self.code,
            "message": self.message,
            **self.details
        }


class EmptyOrder(OrderError):
    """No line items supplied."""

    code = "EMPTY_ORDER"

    def __init__(self):
        super().__init__("Order must contain at least one item")


class InvalidLineItem(OrderError):
    """Line item without a product id or with a non-positive quantity."""

    code = "INVALID_LINE_ITEM"

    def __init__(self, product_id: Any, quantity: Any):
        super().__init__(
            f"Invalid line item: product={product_id!r} quantity={quantity!r}",
            {"product_id": product_id, "quantity": quantity}
        )
        self.product_id = product_id
        self.quantity = quantity


class ProductNotFound(OrderError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        super().__init__(
            f"Product with ID {product_id} not found",
            {"product_id": product_id}
        )
        self.product_id = product_id


class InsufficientStock(OrderError):
    """Requested quantity exceeds what the ledger holds."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Not enough stock for product {product_id}. "
            f"Requested: {requested}, available: {available}",
            {
                "product_id": product_id,
                "requested": requested,
                "available": available
            }
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class AddressNotFound(OrderError):
    status_code = 404
    code = "ADDRESS_NOT_FOUND"

    def __init__(self, address_id: str):
        super().__init__(
            "Shipping address not found",
            {"address_id": address_id}
        )
        self.address_id = address_id


class DuplicateOrderNumber(OrderError):
    """Order number generation kept colliding with existing orders."""

    status_code = 500
    code = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_number: str, attempts: int):
        super().__init__(
            f"Could not allocate a unique order number after {attempts} attempts",
            {"order_number": order_number, "attempts": attempts}
        )
        self.order_number = order_number
        self.attempts = attempts


class OrderNotFound(OrderError):
    status_code = 404
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_ref: str):
        super().__init__("Order not found", {"order": order_ref})
        self.order_ref = order_ref


class InvalidOrderState(OrderError):
    """Status change not permitted from the order's current status."""

    code = "INVALID_ORDER_STATE"

    def __init__(self, current_status: str, requested_status: Optional[str] = None):
        if requested_status:
            message = (
                f"Order cannot move from {current_status.lower()} "
                f"to {requested_status.lower()}"
            )
        else:
            message = (
                f"Order cannot be cancelled because it is already "
                f"{current_status.lower()}"
            )
        super().__init__(
            message,
            {"current_status": current_status, "requested_status": requested_status}
        )
        self.current_status = current_status
        self.requested_status = requested_status


class InvalidPagination(OrderError):
    code = "INVALID_PAGINATION"

    def __init__(self, page: int, limit: int, max_limit: int):
        super().__init__(
            f"page must be >= 1 and limit between 1 and {max_limit}",
            {"page": page, "limit": limit}
        )
