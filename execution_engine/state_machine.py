"""
Execution Engine - Order State Machine.

============================================================
PURPOSE
============================================================
Manages order lifecycle with strict state transitions.

STATE MACHINE:

    PENDING ──────► FAILED
       │
       ▼
     OPEN ──┬──► CLOSED
            └──► CANCELLED

INVARIANTS:
- Terminal states (CLOSED, CANCELLED, FAILED) are final
- Each transition has a guard
- All transitions are logged

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple

from core.clock import ClockProtocol, SystemClock
from storage.models import Order

from .types import OrderStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

# Valid transitions from each state
VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.OPEN,
        OrderStatus.FAILED,
    },
    OrderStatus.OPEN: {
        OrderStatus.CLOSED,
        OrderStatus.CANCELLED,
    },
    # Terminal states - no transitions out
    OrderStatus.CLOSED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Transition rejected by the guard."""

    def __init__(self, order_id: Any, from_state: OrderStatus, to_state: OrderStatus, reason: str):
        super().__init__(
            f"Cannot transition {order_id} from {from_state.value} to {to_state.value}: {reason}"
        )
        self.order_id = order_id
        self.from_state = from_state
        self.to_state = to_state


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a state transition."""

    order_id: str
    """Order ID."""

    from_state: OrderStatus
    """Previous state."""

    to_state: OrderStatus
    """New state."""

    timestamp: datetime
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional details."""


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: OrderStatus,
        to_state: OrderStatus,
    ) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            Tuple of (allowed, reason)
        """
        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"


# ============================================================
# ORDER STATE MACHINE
# ============================================================

class OrderStateMachine:
    """
    State machine for one persisted order row.

    Mutates the ORM object in place; persisting it is the
    caller's transaction.
    """

    def __init__(self, order: Order, clock: Optional[ClockProtocol] = None):
        """
        Initialize state machine.

        Args:
            order: Order row to manage
            clock: Time source for timestamps
        """
        self._order = order
        self._clock = clock or SystemClock()

    @property
    def current_state(self) -> OrderStatus:
        return OrderStatus(self._order.status)

    @property
    def order(self) -> Order:
        return self._order

    def can_transition_to(self, target_state: OrderStatus) -> Tuple[bool, str]:
        return TransitionGuard.can_transition(self.current_state, target_state)

    def transition_to(
        self,
        target_state: OrderStatus,
        reason: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> StateTransitionEvent:
        """
        Transition to a new state.

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        allowed, validation_reason = self.can_transition_to(target_state)
        if not allowed:
            raise InvalidTransitionError(
                self._order.id, self.current_state, target_state, validation_reason
            )

        event = StateTransitionEvent(
            order_id=str(self._order.id),
            from_state=self.current_state,
            to_state=target_state,
            timestamp=self._clock.now(),
            reason=reason,
            details=details or {},
        )

        self._order.status = target_state.value
        self._order.updated_at = event.timestamp

        logger.info(
            f"Order {event.order_id}: "
            f"{event.from_state.value} -> {event.to_state.value} "
            f"({reason})"
        )
        return event

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def mark_open(
        self,
        exchange_order_id: Optional[str],
        reason: str = "Accepted by exchange",
    ) -> StateTransitionEvent:
        """PENDING -> OPEN with exchange id and execution time."""
        event = self.transition_to(OrderStatus.OPEN, reason)
        self._order.exchange_order_id = exchange_order_id
        self._order.executed_at = event.timestamp
        return event

    def mark_failed(self, error: Optional[str], reason: str = "Placement failed") -> StateTransitionEvent:
        event = self.transition_to(OrderStatus.FAILED, reason, details={"error": error})
        self._order.error_message = error
        return event

    def mark_closed(self, reason: str = "Closed by inverse signal", error: Optional[str] = None) -> StateTransitionEvent:
        event = self.transition_to(OrderStatus.CLOSED, reason)
        if error:
            self._order.error_message = error
        return event

    def mark_cancelled(self, reason: str = "Force-closed", error: Optional[str] = None) -> StateTransitionEvent:
        event = self.transition_to(OrderStatus.CANCELLED, reason)
        if error:
            self._order.error_message = error
        return event

    def is_terminal(self) -> bool:
        return self.current_state.is_terminal()
