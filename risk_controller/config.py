"""
Risk Controller - Configuration.

============================================================
PURPOSE
============================================================
Configuration for the Risk Evaluation Engine and the Monitor
Loop. All times are UTC.

============================================================
"""

from dataclasses import dataclass

from core.exceptions import InvalidConfigError
from execution_engine.config import env_bool, env_float, env_int


def _check_time(prefix: str, hour: int, minute: int) -> None:
    if not 0 <= hour <= 23:
        raise InvalidConfigError(f"{prefix}_HOUR", hour, "must be between 0 and 23")
    if not 0 <= minute <= 59:
        raise InvalidConfigError(f"{prefix}_MINUTE", minute, "must be between 0 and 59")


@dataclass
class RiskConfig:
    """
    Risk Evaluation Engine configuration.
    """

    disable_until_hour: int = 0
    """Trading stays disabled until this hour on the next UTC day."""

    disable_until_minute: int = 1
    """Minute part of the disable-until time."""

    def __post_init__(self) -> None:
        _check_time("RISK_DISABLE_UNTIL", self.disable_until_hour, self.disable_until_minute)

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """
        Environment variables:
        - RISK_DISABLE_UNTIL_HOUR
        - RISK_DISABLE_UNTIL_MINUTE
        """
        return cls(
            disable_until_hour=env_int("RISK_DISABLE_UNTIL_HOUR", 0),
            disable_until_minute=env_int("RISK_DISABLE_UNTIL_MINUTE", 1),
        )


@dataclass
class MonitorConfig:
    """
    Monitor Loop configuration.
    """

    check_interval_seconds: float = 30.0
    """Delay between whole-account sweeps."""

    enabled: bool = True
    """Initial monitoring flag."""

    daily_reset_hour: int = 0
    """UTC hour of the daily reset sweep."""

    daily_reset_minute: int = 1
    """UTC minute of the daily reset sweep."""

    def __post_init__(self) -> None:
        if self.check_interval_seconds <= 0:
            raise InvalidConfigError(
                "RISK_MONITOR_INTERVAL_SECONDS",
                self.check_interval_seconds,
                "must be positive",
            )
        _check_time("RISK_DAILY_RESET", self.daily_reset_hour, self.daily_reset_minute)

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """
        Environment variables:
        - RISK_MONITOR_INTERVAL_SECONDS
        - RISK_MONITOR_ENABLED
        - RISK_DAILY_RESET_HOUR
        - RISK_DAILY_RESET_MINUTE
        """
        return cls(
            check_interval_seconds=env_float("RISK_MONITOR_INTERVAL_SECONDS", 30.0),
            enabled=env_bool("RISK_MONITOR_ENABLED", True),
            daily_reset_hour=env_int("RISK_DAILY_RESET_HOUR", 0),
            daily_reset_minute=env_int("RISK_DAILY_RESET_MINUTE", 1),
        )
