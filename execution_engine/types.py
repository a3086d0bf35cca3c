"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Order Lifecycle Manager.

CRITICAL PRINCIPLE:
    "Exactly one order row per accepted or attempted signal."
    "A strategy-rule rejection is a result, not an error."

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from core.exceptions import ValidationError


# ============================================================
# ORDER TYPES
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def from_action(cls, action: str) -> "OrderSide":
        """'buy' (any case) is BUY, every other action is SELL."""
        return cls.BUY if action.strip().lower() == "buy" else cls.SELL


class SignalAction(Enum):
    """Action requested by an inbound signal."""

    BUY = "buy"
    SELL = "sell"
    CLOSE = "close"


# ============================================================
# ORDER LIFECYCLE STATES
# ============================================================

class OrderStatus(Enum):
    """
    Order lifecycle state.

    State Machine:

        PENDING ──────► FAILED
           │
           ▼
         OPEN ──┬──► CLOSED
                └──► CANCELLED

    CLOSED, CANCELLED and FAILED are terminal.
    """

    PENDING = "PENDING"
    """Persisted, exchange placement not yet acknowledged."""

    OPEN = "OPEN"
    """Accepted by the exchange."""

    CLOSED = "CLOSED"
    """Closed by an inverse signal."""

    CANCELLED = "CANCELLED"
    """Force-closed (administrative or risk breach)."""

    FAILED = "FAILED"
    """Exchange placement failed."""

    def is_terminal(self) -> bool:
        return self in (OrderStatus.CLOSED, OrderStatus.CANCELLED, OrderStatus.FAILED)


class SignalStatus(Enum):
    """Outcome of signal processing."""

    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


PYRAMID_REJECTION_REASON = "Pyramid disabled - same side order already exists"


# ============================================================
# TRADING SIGNAL
# ============================================================

def _to_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field_name} must be a number", field=field_name) from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


@dataclass
class TradingSignal:
    """
    Inbound instruction to open, add to, or close a position.

    Validated on construction.
    """

    client_id: str
    """Target account."""

    symbol: str
    """Exchange symbol."""

    strategy: str
    """Free-form grouping key for pyramid/inverse rules."""

    action: str
    """buy, sell or close."""

    quantity: Decimal
    """Order size, strictly positive."""

    inverse: bool = False
    """Close existing OPEN orders of the triple first."""

    pyramid: bool = False
    """Allow same-side orders to accumulate."""

    stop_loss_percentage: Optional[Decimal] = None
    """Carried to the order row and sent as stop price."""

    max_risk_per_day_percentage: Optional[Decimal] = None
    """Carried to the order row, not evaluated."""

    def __post_init__(self) -> None:
        self.validate()

    @property
    def side(self) -> OrderSide:
        return OrderSide.from_action(self.action)

    def validate(self) -> None:
        """
        Validate required fields.

        Raises:
            ValidationError: On the first invalid field
        """
        for name in ("client_id", "symbol", "strategy", "action"):
            value = getattr(self, name)
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} is required", field=name)

        valid_actions = {a.value for a in SignalAction}
        if self.action.strip().lower() not in valid_actions:
            raise ValidationError(
                f"action must be one of {sorted(valid_actions)}",
                field="action",
            )

        if self.quantity is None or self.quantity <= 0:
            raise ValidationError("orderQty must be positive", field="orderQty")

        if self.stop_loss_percentage is not None and self.stop_loss_percentage < 0:
            raise ValidationError("stopLoss% must not be negative", field="stopLoss%")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TradingSignal":
        """
        Build a signal from the webhook JSON payload.

        Keys: clientId, symbol, strategy, maxriskperday%, action,
        orderQty, inverse, pyramid, stopLoss%.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Signal payload must be an object")

        quantity = _to_decimal(payload.get("orderQty"), "orderQty")
        if quantity is None:
            raise ValidationError("orderQty is required", field="orderQty")

        return cls(
            client_id=str(payload.get("clientId") or ""),
            symbol=str(payload.get("symbol") or ""),
            strategy=str(payload.get("strategy") or ""),
            action=str(payload.get("action") or ""),
            quantity=quantity,
            inverse=_to_bool(payload.get("inverse", False)),
            pyramid=_to_bool(payload.get("pyramid", False)),
            stop_loss_percentage=_to_decimal(payload.get("stopLoss%"), "stopLoss%"),
            max_risk_per_day_percentage=_to_decimal(
                payload.get("maxriskperday%"), "maxriskperday%"
            ),
        )


# ============================================================
# RESULTS
# ============================================================

@dataclass
class SignalResult:
    """Result of processing one signal."""

    status: SignalStatus
    """success, failed or rejected."""

    order_id: Optional[str] = None
    """Local order id (absent for rejections)."""

    exchange_order_id: Optional[str] = None
    """Exchange order id when accepted."""

    message: str = ""
    """Human-readable outcome."""

    reason: Optional[str] = None
    """Rejection reason."""

    existing_orders: Optional[int] = None
    """Number of same-side OPEN orders behind a rejection."""

    closed_order_ids: List[str] = field(default_factory=list)
    """Orders closed by the inverse rule before placement."""

    @property
    def is_rejected(self) -> bool:
        return self.status == SignalStatus.REJECTED

    def to_dict(self) -> Dict[str, Any]:
        if self.is_rejected:
            return {
                "status": self.status.value,
                "reason": self.reason,
                "existing_orders": self.existing_orders,
            }
        return {
            "status": self.status.value,
            "order_id": self.order_id,
            "exchange_order_id": self.exchange_order_id,
            "message": self.message,
            "closed_orders": list(self.closed_order_ids),
        }


@dataclass
class CancelOutcome:
    """Outcome of one best-effort exchange cancel."""

    order_id: str
    exchange_order_id: Optional[str]
    cancelled_at_exchange: bool
    error: Optional[str] = None
