"""
Order State Machine
===================
Formal status transitions for the order lifecycle.

State invariants:
- PENDING is the only initial state
- DELIVERED and CANCELLED are terminal
- Every status write outside the administrative override is validated here
"""

import logging
from enum import Enum
from typing import Optional

from errors import InvalidOrderState

logger = logging.getLogger(__name__)


class OrderStatus(Enum):
    """
    Order lifecycle states.

    State flow:
        PENDING -> PROCESSING -> SHIPPED -> DELIVERED
        (any non-terminal) -> CANCELLED
    """
    PENDING = "PENDING"         # Placed, stock reserved
    PROCESSING = "PROCESSING"   # Being picked and packed
    SHIPPED = "SHIPPED"         # Handed to carrier
    DELIVERED = "DELIVERED"     # Terminal
    CANCELLED = "CANCELLED"     # Terminal, stock released


class PaymentStatus(Enum):
    """Passive payment state, written by external collaborators."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Define valid state transitions
VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),  # Terminal state
    OrderStatus.CANCELLED: set()   # Terminal state
}

TERMINAL_STATES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


def is_terminal(status: OrderStatus) -> bool:
    """Check if status is terminal."""
    return status in TERMINAL_STATES


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """
    Check if transition from current to target status is valid.

    Args:
        current: Status the order is in now
        target: Desired next status

    Returns:
        True if transition is valid
    """
    return target in VALID_TRANSITIONS.get(current, set())


def check_transition(
    order_id: str,
    current: OrderStatus,
    target: OrderStatus,
    force: bool = False,
    reason: Optional[str] = None
) -> bool:
    """
    Validate a status change before it is written.

    Args:
        order_id: Order being changed (for logging)
        current: Status the order is in now
        target: Desired next status
        force: Administrative override, skips validation
        reason: Optional reason for the change

    Returns:
        True if the status actually changes, False for a same-status write

    Raises:
        InvalidOrderState: If transition is invalid and not forced
    """
    if current == target:
        return False

    if force:
        logger.warning(
            f"FORCED status change: {current.value} -> {target.value}",
            extra={
                "order_id": order_id,
                "from_state": current.value,
                "to_state": target.value,
                "reason": reason
            }
        )
        return True

    if not can_transition(current, target):
        logger.info(
            f"Rejected status change: {current.value} -> {target.value}",
            extra={
                "order_id": order_id,
                "from_state": current.value,
                "to_state": target.value
            }
        )
        raise InvalidOrderState(current.value, target.value)

    return True
