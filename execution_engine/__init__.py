"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Turns trading signals into exchange orders and owns the order
lifecycle.

CRITICAL PRINCIPLE:
    "Exactly one order row per accepted or attempted signal."

AUTHORITY BOUNDARIES:
    CAN:
        - Submit orders to the exchange
        - Cancel orders (best-effort)
        - Query orders

    MUST NOT:
        - Retry exchange calls
        - Accept signals for accounts with trading disabled

============================================================
MODULES
============================================================
- types: Order states, signals, results
- config: Exchange and execution configuration
- state_machine: Order lifecycle transitions
- adapters: Exchange client (Kraken Futures)
- order_manager: Signal processing and force-close

============================================================
"""

from .types import (
    OrderSide,
    OrderStatus,
    SignalAction,
    SignalStatus,
    TradingSignal,
    SignalResult,
    CancelOutcome,
    PYRAMID_REJECTION_REASON,
)
from .config import (
    TimeoutConfig,
    ExchangeConfig,
    ExecutionConfig,
)
from .state_machine import (
    OrderStateMachine,
    InvalidTransitionError,
    StateTransitionEvent,
    TransitionGuard,
    VALID_TRANSITIONS,
)
from .order_manager import (
    OrderManager,
    order_to_dict,
    credentials_for,
    DEMO_ORDER_PREFIX,
)


__all__ = [
    # Types
    "OrderSide",
    "OrderStatus",
    "SignalAction",
    "SignalStatus",
    "TradingSignal",
    "SignalResult",
    "CancelOutcome",
    "PYRAMID_REJECTION_REASON",
    # Config
    "TimeoutConfig",
    "ExchangeConfig",
    "ExecutionConfig",
    # State machine
    "OrderStateMachine",
    "InvalidTransitionError",
    "StateTransitionEvent",
    "TransitionGuard",
    "VALID_TRANSITIONS",
    # Order manager
    "OrderManager",
    "order_to_dict",
    "credentials_for",
    "DEMO_ORDER_PREFIX",
]
