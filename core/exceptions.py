"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception taxonomy for the risk management service.

- Typed failures that propagate to the request boundary
  (validation, not-found, trading-disabled)
- Wrapped exchange failures that are converted into local
  order/account state by the callers
- Context for debugging and structured logging

Strategy-rule rejections (pyramid) are NOT exceptions; they are
returned as results.

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
│   ├── MissingConfigError
│   └── InvalidConfigError
├── ValidationError
├── NotFoundError
│   ├── AccountNotFoundError
│   └── OrderNotFoundError
├── TradingDisabledError
├── ExchangeOperationError
├── RiskCheckError
└── DatabaseError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all risk service errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Error in configuration."""

    default_severity = Severity.HIGH


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, source: str = "environment"):
        super().__init__(
            message=f"Missing required configuration: {key}",
            context={"config_key": key, "source": source},
        )
        self.key = key


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            context={
                "config_key": key,
                "actual_value": str(value)[:100],
                "reason": reason,
            },
        )
        self.key = key


# ============================================================
# REQUEST ERRORS
# ============================================================

class ValidationError(TradingException):
    """Missing or invalid input, rejected before any side effect."""

    default_severity = Severity.LOW

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        super().__init__(message, context=context, **kwargs)
        self.field = field


class NotFoundError(TradingException):
    """Requested entity does not exist."""

    default_severity = Severity.LOW
    entity_name: str = "Record"

    def __init__(self, identifier: Any):
        super().__init__(
            message=f"{self.entity_name} not found: {identifier}",
            context={"identifier": str(identifier)},
        )
        self.identifier = identifier


class AccountNotFoundError(NotFoundError):
    """Unknown account (client id or account id)."""

    entity_name = "Account"


class OrderNotFoundError(NotFoundError):
    """Unknown order id."""

    entity_name = "Order"


class TradingDisabledError(TradingException):
    """Signal received for an account whose trading is disabled."""

    default_severity = Severity.MEDIUM

    def __init__(self, client_id: str):
        super().__init__(
            message=f"Trading is disabled for account {client_id}",
            context={"client_id": client_id},
        )
        self.client_id = client_id


# ============================================================
# EXCHANGE ERRORS
# ============================================================

class ExchangeOperationError(TradingException):
    """
    Exchange call failed.

    Wraps transport errors, timeouts, non-2xx responses and
    undecodable bodies into a single error per operation.
    The exchange-reported error text is preserved when present.
    """

    default_severity = Severity.HIGH

    def __init__(
        self,
        operation: str,
        exchange_error: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        message = f"Failed to {operation}"
        if exchange_error:
            message = f"{message}: {exchange_error}"

        context: Dict[str, Any] = {"operation": operation}
        if status_code is not None:
            context["status_code"] = status_code

        super().__init__(message, context=context, cause=cause)
        self.operation = operation
        self.exchange_error = exchange_error
        self.status_code = status_code


# ============================================================
# RISK ERRORS
# ============================================================

class RiskCheckError(TradingException):
    """Risk evaluation for a single account failed."""

    default_severity = Severity.HIGH

    def __init__(self, client_id: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Error checking risk for account {client_id}: {reason}",
            context={"client_id": client_id},
            cause=cause,
        )
        self.client_id = client_id


# ============================================================
# SYSTEM ERRORS
# ============================================================

class DatabaseError(TradingException):
    """Database operation failed."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, **kwargs)
