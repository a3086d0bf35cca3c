"""
Risk Controller Package.

============================================================
PURPOSE
============================================================
Daily drawdown enforcement per account.

CRITICAL PRINCIPLE:
    "When a daily limit is breached, stop trading first."

============================================================
MODULES
============================================================
- types: Risk states, loss math, check results
- config: Engine and monitor configuration
- engine: Risk Evaluation Engine
- monitor: Monitor Loop (interval sweep, daily reset)

============================================================
"""

from .types import (
    RiskStatus,
    RiskEventType,
    ThresholdKind,
    ThresholdEvaluation,
    RiskCheckResult,
    compute_loss,
    compute_loss_percentage,
    evaluate_thresholds,
)
from .config import RiskConfig, MonitorConfig
from .engine import RiskEvaluationEngine, risk_event_to_dict
from .monitor import RiskMonitor, SERVICE_NAME, SERVICE_VERSION


__all__ = [
    # Types
    "RiskStatus",
    "RiskEventType",
    "ThresholdKind",
    "ThresholdEvaluation",
    "RiskCheckResult",
    "compute_loss",
    "compute_loss_percentage",
    "evaluate_thresholds",
    # Config
    "RiskConfig",
    "MonitorConfig",
    # Engine
    "RiskEvaluationEngine",
    "risk_event_to_dict",
    # Monitor
    "RiskMonitor",
    "SERVICE_NAME",
    "SERVICE_VERSION",
]
