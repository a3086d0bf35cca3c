"""
Risk Controller - Monitor Loop.

============================================================
PURPOSE
============================================================
Cooperative scheduler driving the Risk Evaluation Engine.

TASKS:
- Interval sweep: check_all_accounts every N seconds
- Daily reset: reset_daily_trading once a day at a fixed
  UTC time (00:01 by default)

POLICIES:
- Monitoring can be toggled at runtime; while disabled, ticks
  are skipped, not queued
- At most one sweep in flight; a tick that fires while a sweep
  is running is dropped

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock, next_occurrence, to_iso8601

from .config import MonitorConfig
from .engine import RiskEvaluationEngine
from .types import RiskCheckResult


logger = logging.getLogger(__name__)


SERVICE_NAME = "Risk Management Service"
SERVICE_VERSION = "1.0.0"

# Seconds past the reset time before the reset runs
DAILY_RESET_MARGIN_SECONDS = 1.0


class RiskMonitor:
    """
    Monitor Loop.

    Usage:
    ```python
    monitor = RiskMonitor(engine, MonitorConfig.from_env())
    await monitor.start()
    ...
    await monitor.stop()
    ```
    """

    def __init__(
        self,
        engine: RiskEvaluationEngine,
        config: Optional[MonitorConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._engine = engine
        self._config = config or MonitorConfig()
        self._clock = clock or SystemClock()

        self._enabled = self._config.enabled
        self._running = False
        self._sweep_task: Optional[asyncio.Task] = None
        self._reset_task: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()

        # Statistics
        self._last_run: Optional[datetime] = None
        self._total_checked = 0
        self._total_events = 0

    # --------------------------------------------------------
    # STATE
    # --------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    def enable(self) -> None:
        self._enabled = True
        logger.info("Risk monitoring enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.info("Risk monitoring disabled")

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the interval sweep and the daily reset tasks."""
        if self._running:
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        self._reset_task = asyncio.create_task(self._daily_reset_loop())

        logger.info(
            f"Risk monitor started (interval {self._config.check_interval_seconds}s, "
            f"daily reset {self._config.daily_reset_hour:02d}:{self._config.daily_reset_minute:02d} UTC)"
        )

    async def stop(self) -> None:
        """Stop both tasks."""
        self._running = False

        for task in (self._sweep_task, self._reset_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._sweep_task = None
        self._reset_task = None
        logger.info("Risk monitor stopped")

    # --------------------------------------------------------
    # SWEEPS
    # --------------------------------------------------------

    async def run_sweep(self) -> Optional[List[RiskCheckResult]]:
        """
        Run one whole-account sweep.

        Returns:
            The results, or None when skipped (monitoring disabled
            or another sweep still in flight)
        """
        if not self._enabled:
            logger.debug("Risk monitoring disabled, sweep skipped")
            return None
        if self._sweep_lock.locked():
            logger.warning("Previous risk sweep still running, tick dropped")
            return None

        async with self._sweep_lock:
            results = await self._engine.check_all_accounts()
            self._last_run = self._clock.now()
            self._total_checked += len(results)
            self._total_events += sum(1 for r in results if r.is_exceeded)
            return results

    async def run_daily_reset(self) -> Optional[int]:
        """
        Run the daily trading reset.

        Returns:
            Number of accounts re-enabled, or None when monitoring
            is disabled
        """
        if not self._enabled:
            logger.debug("Risk monitoring disabled, daily reset skipped")
            return None
        return await self._engine.reset_daily_trading()

    def next_daily_reset(self) -> datetime:
        return next_occurrence(
            self._clock.now(),
            self._config.daily_reset_hour,
            self._config.daily_reset_minute,
        )

    def seconds_until_daily_reset(self) -> float:
        """
        Delay before the next daily reset run.

        Includes a margin past the reset time: the engine only
        re-enables accounts whose disable period has strictly ended.
        """
        delay = (self.next_daily_reset() - self._clock.now()).total_seconds()
        return max(delay, 0) + DAILY_RESET_MARGIN_SECONDS

    async def _sweep_loop(self) -> None:
        """Background interval loop."""
        interval = self._config.check_interval_seconds

        while self._running:
            try:
                await self.run_sweep()
            except Exception as e:
                logger.error(f"Risk monitoring loop error: {e}")

            await asyncio.sleep(interval)

    async def _daily_reset_loop(self) -> None:
        """Background loop sleeping until the next daily reset time."""
        while self._running:
            await asyncio.sleep(self.seconds_until_daily_reset())

            try:
                await self.run_daily_reset()
            except Exception as e:
                logger.error(f"Daily trading reset error: {e}")

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "monitoring_enabled": self._enabled,
            "last_monitoring_run": to_iso8601(self._last_run),
            "total_users_checked": self._total_checked,
            "total_risk_events_triggered": self._total_events,
            "check_interval_seconds": self._config.check_interval_seconds,
            "next_daily_reset": to_iso8601(self.next_daily_reset()),
            "current_time_utc": to_iso8601(self._clock.now()),
        }

    def get_health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "monitoring_enabled": self._enabled,
            "timestamp": to_iso8601(self._clock.now()),
        }
