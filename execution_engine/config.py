"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the exchange client and the Order
Lifecycle Manager.

CRITICAL CONSTRAINTS:
- No retries of exchange order operations
- Every exchange call bounded by a timeout

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from core.exceptions import InvalidConfigError


def env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigError(name, raw, "expected a number")


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigError(name, raw, "expected an integer")


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration.
    """

    connection_timeout_seconds: float = 10.0
    """Connection timeout."""

    read_timeout_seconds: float = 10.0
    """Total timeout per request, including the response body."""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """
    Kraken Futures REST configuration.
    """

    base_url: str = "https://futures.kraken.com"
    """Exchange base URL."""

    api_version: str = "v3"
    """Path segment in /derivatives/api/{version}/{endpoint}."""

    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    """Request timeouts."""

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise InvalidConfigError("KRAKEN_BASE_URL", self.base_url, "must be an http(s) URL")
        if self.timeouts.read_timeout_seconds <= 0:
            raise InvalidConfigError(
                "KRAKEN_TIMEOUT_SECONDS",
                self.timeouts.read_timeout_seconds,
                "must be positive",
            )

    @classmethod
    def from_env(cls) -> "ExchangeConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - KRAKEN_BASE_URL
        - KRAKEN_API_VERSION
        - KRAKEN_TIMEOUT_SECONDS
        """
        timeout = env_float("KRAKEN_TIMEOUT_SECONDS", 10.0)
        return cls(
            base_url=os.getenv("KRAKEN_BASE_URL") or cls.base_url,
            api_version=os.getenv("KRAKEN_API_VERSION") or cls.api_version,
            timeouts=TimeoutConfig(
                connection_timeout_seconds=timeout,
                read_timeout_seconds=timeout,
            ),
        )


# ============================================================
# EXECUTION CONFIGURATION
# ============================================================

@dataclass
class ExecutionConfig:
    """
    Order Lifecycle Manager configuration.
    """

    demo_mode: bool = False
    """Simulate order placement instead of calling the exchange."""

    demo_initial_balance: Decimal = Decimal("10000.00")
    """Registration balance used in demo mode."""

    default_order_type: str = "mkt"
    """Exchange order type for signal orders."""

    @classmethod
    def from_env(cls) -> "ExecutionConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - DEMO_MODE
        - DEMO_INITIAL_BALANCE
        """
        config = cls(demo_mode=env_bool("DEMO_MODE", False))
        raw_balance = os.getenv("DEMO_INITIAL_BALANCE")
        if raw_balance:
            try:
                config.demo_initial_balance = Decimal(raw_balance)
            except InvalidOperation:
                raise InvalidConfigError("DEMO_INITIAL_BALANCE", raw_balance, "expected a decimal")
        return config
