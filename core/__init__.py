"""
Core Module Package.

This package contains the infrastructure components that all
other modules depend on.

Components:
- clock: Unified UTC time abstraction
- locks: Per-account mutual exclusion
- exceptions: Custom exception hierarchy
"""

from .clock import (
    ClockProtocol,
    SystemClock,
    MockClock,
    ensure_utc,
    to_iso8601,
    next_day_at,
    next_occurrence,
)
from .locks import AccountLockRegistry
from .exceptions import (
    Severity,
    TradingException,
    ConfigurationError,
    MissingConfigError,
    InvalidConfigError,
    ValidationError,
    NotFoundError,
    AccountNotFoundError,
    OrderNotFoundError,
    TradingDisabledError,
    ExchangeOperationError,
    RiskCheckError,
    DatabaseError,
)


__all__ = [
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "to_iso8601",
    "next_day_at",
    "next_occurrence",
    # Locks
    "AccountLockRegistry",
    # Exceptions
    "Severity",
    "TradingException",
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "ValidationError",
    "NotFoundError",
    "AccountNotFoundError",
    "OrderNotFoundError",
    "TradingDisabledError",
    "ExchangeOperationError",
    "RiskCheckError",
    "DatabaseError",
]
