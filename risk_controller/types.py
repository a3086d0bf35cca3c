"""
Risk Controller - Types.

============================================================
PURPOSE
============================================================
Type definitions for the Risk Evaluation Engine and the
Monitor Loop.

RISK STATES (derived per check, never persisted):

    SAFE ──► AT_LIMIT ──► EXCEEDED

- SAFE: loss below every configured limit
- AT_LIMIT: loss equals a configured limit exactly
- EXCEEDED: loss strictly above a configured limit

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import to_iso8601


# ============================================================
# ENUMS
# ============================================================

class RiskStatus(str, Enum):
    """Risk state of one account at check time."""

    SAFE = "SAFE"
    """Loss below every limit."""

    AT_LIMIT = "AT_LIMIT"
    """Loss equals a limit exactly."""

    EXCEEDED = "EXCEEDED"
    """Loss above a limit; trading gets disabled."""

    ERROR = "ERROR"
    """Evaluation failed for this account."""


class RiskEventType(str, Enum):
    """Risk event types written to the audit trail."""

    DAILY_RISK_EXCEEDED = "DAILY_RISK_EXCEEDED"


class ThresholdKind(str, Enum):
    """Which configured limit was breached."""

    ABSOLUTE = "absolute"
    PERCENTAGE = "percentage"


ACTION_TRADING_DISABLED = "trading_disabled_positions_closed"

MESSAGE_EXCEEDED = "Risk threshold exceeded - Trading disabled"
MESSAGE_AT_LIMIT = "Risk check completed - At risk limit"
MESSAGE_COMPLETED = "Risk check completed"
MESSAGE_BASELINE = "Initial balance established"


# ============================================================
# LOSS MATH
# ============================================================

FOUR_PLACES = Decimal("0.0001")


def compute_loss(initial_balance: Decimal, current_balance: Decimal) -> Decimal:
    """Drawdown: initial minus current."""
    return initial_balance - current_balance


def compute_loss_percentage(loss_amount: Decimal, initial_balance: Decimal) -> Decimal:
    """
    Loss as a percentage of the initial balance.

    The ratio is rounded to 4 fractional digits (half-up) before
    the x100 multiply. A non-positive initial balance yields zero.

    Args:
        loss_amount: initial - current
        initial_balance: Drawdown reference point

    Returns:
        Percentage (e.g. Decimal("3.0000") for a 3% loss)
    """
    if initial_balance is None or initial_balance <= 0:
        return Decimal("0")
    ratio = (loss_amount / initial_balance).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
    return ratio * 100


@dataclass
class ThresholdEvaluation:
    """Outcome of comparing a loss against the configured limits."""

    status: RiskStatus
    breached: Optional[ThresholdKind] = None
    threshold: Optional[Decimal] = None


def evaluate_thresholds(
    loss_amount: Decimal,
    loss_percentage: Decimal,
    absolute_limit: Optional[Decimal],
    percentage_limit: Optional[Decimal],
) -> ThresholdEvaluation:
    """
    Compare a loss against the limits.

    Strictly greater than a limit is EXCEEDED, the absolute
    limit is checked before the percentage limit. Exact equality
    with either limit is AT_LIMIT.
    """
    if absolute_limit is not None and loss_amount > absolute_limit:
        return ThresholdEvaluation(RiskStatus.EXCEEDED, ThresholdKind.ABSOLUTE, absolute_limit)
    if percentage_limit is not None and loss_percentage > percentage_limit:
        return ThresholdEvaluation(RiskStatus.EXCEEDED, ThresholdKind.PERCENTAGE, percentage_limit)

    if absolute_limit is not None and loss_amount == absolute_limit:
        return ThresholdEvaluation(RiskStatus.AT_LIMIT, ThresholdKind.ABSOLUTE, absolute_limit)
    if percentage_limit is not None and loss_percentage == percentage_limit:
        return ThresholdEvaluation(RiskStatus.AT_LIMIT, ThresholdKind.PERCENTAGE, percentage_limit)

    return ThresholdEvaluation(RiskStatus.SAFE)


# ============================================================
# RESULTS
# ============================================================

def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class RiskCheckResult:
    """
    Risk snapshot for one account.
    """

    client_id: str
    """Public client identifier."""

    user_id: Optional[str]
    """Internal account id."""

    risk_status: RiskStatus
    """Derived risk state."""

    message: str
    """Human-readable outcome."""

    timestamp: datetime
    """Check time (UTC)."""

    status: str = "success"
    """success, or error when the evaluation failed."""

    current_balance: Optional[Decimal] = None
    initial_balance: Optional[Decimal] = None
    daily_loss: Decimal = Decimal("0")
    daily_loss_percentage: Decimal = Decimal("0")
    risk_percentage_limit: Optional[Decimal] = None
    risk_absolute_limit: Optional[Decimal] = None

    action_taken: Optional[str] = None
    """Set when a breach disabled trading."""

    positions_closed: int = 0
    """Number of orders force-closed by a breach."""

    risk_events: List[str] = field(default_factory=list)
    """Actions taken during this check."""

    @property
    def is_exceeded(self) -> bool:
        return self.risk_status == RiskStatus.EXCEEDED

    @property
    def is_error(self) -> bool:
        return self.risk_status == RiskStatus.ERROR

    @classmethod
    def error(cls, client_id: str, user_id: Optional[str], message: str, timestamp: datetime) -> "RiskCheckResult":
        """Result recorded for an account whose evaluation failed."""
        return cls(
            client_id=client_id,
            user_id=user_id,
            risk_status=RiskStatus.ERROR,
            message=message,
            timestamp=timestamp,
            status="error",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "risk_status": self.risk_status.value,
            "current_balance": _money(self.current_balance),
            "initial_balance": _money(self.initial_balance),
            "daily_loss": _money(self.daily_loss),
            "daily_loss_percentage": _money(self.daily_loss_percentage),
            "risk_percentage_limit": _money(self.risk_percentage_limit),
            "risk_absolute_limit": _money(self.risk_absolute_limit),
            "action_taken": self.action_taken,
            "positions_closed": self.positions_closed,
            "timestamp": to_iso8601(self.timestamp),
            "client_id": self.client_id,
            "user_id": self.user_id,
            "risk_events": list(self.risk_events),
        }
