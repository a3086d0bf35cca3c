#!/usr/bin/env python3
"""
Risk Management Service - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- Loads configuration (.env, environment, CLI overrides)
- Initializes the database
- Wires exchange client, order manager, risk engine, account
  service and monitor
- Runs the monitor loop until SIGINT/SIGTERM, or a single
  sweep with --check-once

============================================================
USAGE
============================================================
Direct execution:
    python app.py

Demo mode, faster sweeps:
    python app.py --demo --interval 10

One sweep, then exit:
    python app.py --check-once

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from accounts import AccountService
from core.clock import ClockProtocol, SystemClock
from core.exceptions import ConfigurationError
from core.locks import AccountLockRegistry
from execution_engine.adapters import ExchangeAdapter, KrakenFuturesClient
from execution_engine.config import ExchangeConfig, ExecutionConfig
from execution_engine.order_manager import OrderManager
from risk_controller import MonitorConfig, RiskConfig, RiskEvaluationEngine, RiskMonitor
from storage.database import Database, DatabaseConfig


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process-wide logging.

    Args:
        level: Log level name
        log_format: Output format (json or text)

    Returns:
        Application logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("risk_service")


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="risk-management-service",
        description="Multi-account daily risk monitor for Kraken Futures",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                            # Run the monitor loop
  %(prog)s --demo --interval 10       # Demo mode, 10 second sweeps
  %(prog)s --check-once               # One sweep, print results, exit
        """
    )

    parser.add_argument(
        "--demo",
        action="store_true",
        default=None,
        help="Simulate order placement and registration balances",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between risk sweeps (default: RISK_MONITOR_INTERVAL_SECONDS or 30)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Async SQLAlchemy URL (default: DATABASE_URL)",
    )
    parser.add_argument(
        "--check-once",
        action="store_true",
        help="Run a single risk sweep and exit",
    )

    return parser


# ============================================================
# SERVICE WIRING
# ============================================================

@dataclass
class ServiceContainer:
    """All wired services of one process."""

    database: Database
    exchange: ExchangeAdapter
    locks: AccountLockRegistry
    order_manager: OrderManager
    risk_engine: RiskEvaluationEngine
    accounts: AccountService
    monitor: RiskMonitor


def build_services(
    database: Database,
    exchange: ExchangeAdapter,
    execution_config: Optional[ExecutionConfig] = None,
    risk_config: Optional[RiskConfig] = None,
    monitor_config: Optional[MonitorConfig] = None,
    clock: Optional[ClockProtocol] = None,
) -> ServiceContainer:
    """
    Wire the services around one lock registry.

    The order manager, risk engine and account service must share
    the same registry for per-account serialization to hold.
    """
    clock = clock or SystemClock()
    execution_config = execution_config or ExecutionConfig()
    locks = AccountLockRegistry()

    order_manager = OrderManager(database, exchange, locks, execution_config, clock)
    risk_engine = RiskEvaluationEngine(database, exchange, order_manager, locks, risk_config, clock)
    accounts = AccountService(database, exchange, risk_engine, locks, execution_config, clock)
    monitor = RiskMonitor(risk_engine, monitor_config, clock)

    return ServiceContainer(
        database=database,
        exchange=exchange,
        locks=locks,
        order_manager=order_manager,
        risk_engine=risk_engine,
        accounts=accounts,
        monitor=monitor,
    )


# ============================================================
# MAIN FUNCTION
# ============================================================

def _install_signal_handlers(stop_event: asyncio.Event, logger: logging.Logger) -> None:
    def request_stop(signum=None, frame=None) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    if sys.platform == "win32":
        signal.signal(signal.SIGINT, request_stop)
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_stop, sig.name)


async def run_application(args: argparse.Namespace) -> int:
    """
    Run the risk service.

    Args:
        args: Parsed CLI arguments

    Returns:
        Exit code
    """
    logger = logging.getLogger("risk_service")

    try:
        execution_config = ExecutionConfig.from_env()
        exchange_config = ExchangeConfig.from_env()
        risk_config = RiskConfig.from_env()
        monitor_config = MonitorConfig.from_env()
        database_config = DatabaseConfig.from_env()

        if args.demo:
            execution_config.demo_mode = True
        if args.interval is not None:
            monitor_config = MonitorConfig(
                check_interval_seconds=args.interval,
                enabled=monitor_config.enabled,
                daily_reset_hour=monitor_config.daily_reset_hour,
                daily_reset_minute=monitor_config.daily_reset_minute,
            )
        if args.database_url:
            database_config.url = args.database_url
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    database = Database(database_config)
    await database.init_db()

    exchange = KrakenFuturesClient(exchange_config)
    services = build_services(
        database,
        exchange,
        execution_config=execution_config,
        risk_config=risk_config,
        monitor_config=monitor_config,
    )

    if execution_config.demo_mode:
        logger.warning("DEMO MODE: orders are simulated, no exchange placement")

    try:
        if args.check_once:
            results = await services.risk_engine.check_all_accounts()
            print(json.dumps([r.to_dict() for r in results], indent=2))
            return 1 if any(r.is_error for r in results) else 0

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event, logger)

        await services.monitor.start()
        logger.info("Risk Management Service started")
        await stop_event.wait()
        return 0
    finally:
        await services.monitor.stop()
        await exchange.disconnect()
        await database.close_db()
        logger.info("Risk Management Service stopped")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(
        level=args.log_level or os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
    )

    try:
        return asyncio.run(run_application(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
