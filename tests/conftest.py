"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
- In-memory SQLite database per test
- Deterministic MockClock
- AsyncMock exchange adapter
- Services wired the same way the application wires them

============================================================
"""

import base64
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app import build_services
from core.clock import MockClock
from execution_engine.adapters.base import (
    AccountsResponse,
    CancelOrderResponse,
    ExchangeAdapter,
    SubAccount,
    SubmitOrderResponse,
)
from execution_engine.config import ExecutionConfig
from storage.database import Database, DatabaseConfig
from storage.models import Account, Order
from storage.repositories import AccountRepository, OrderRepository


TEST_API_KEY = "testapikey-0123456789"
TEST_PRIVATE_KEY = base64.b64encode(b"super-secret-private-key").decode("ascii")
START_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# CORE FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Clock frozen at 2025-01-15 12:00 UTC."""
    return MockClock(START_TIME)


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables."""
    db = Database(DatabaseConfig(url="sqlite+aiosqlite://"))
    await db.connect(create_tables=True)
    yield db
    await db.disconnect()


@pytest.fixture
def exchange():
    """Exchange adapter double answering every call with success."""
    adapter = AsyncMock(spec=ExchangeAdapter)
    adapter.place_order.return_value = SubmitOrderResponse(
        result="success", order_id="kraken-order-1", status="placed"
    )
    adapter.cancel_order.return_value = CancelOrderResponse(result="success", status="cancelled")
    adapter.cancel_all_orders.return_value = CancelOrderResponse(result="success", status="cancelled")
    adapter.get_balances.return_value = AccountsResponse(
        result="success",
        accounts=[SubAccount(name="flex", balance=Decimal("50000"))],
    )
    adapter.get_account_info.return_value = AccountsResponse(
        result="success",
        accounts=[SubAccount(name="flex", balance=Decimal("25000"))],
    )
    return adapter


@pytest.fixture
def execution_config():
    return ExecutionConfig(demo_mode=False)


@pytest.fixture
def services(database, exchange, execution_config, clock):
    return build_services(database, exchange, execution_config=execution_config, clock=clock)


# ============================================================
# DATA HELPERS
# ============================================================

async def create_account(
    database: Database,
    client_id: str = "0000000001",
    initial_balance: Optional[Decimal] = Decimal("50000"),
    current_balance: Optional[Decimal] = Decimal("50000"),
    daily_risk_absolute: Optional[Decimal] = Decimal("1000"),
    daily_risk_percentage: Optional[Decimal] = None,
    trading_enabled: bool = True,
    is_active: bool = True,
) -> Account:
    """Insert an account row directly."""
    account = Account(
        client_id=client_id,
        api_key=TEST_API_KEY,
        private_key=TEST_PRIVATE_KEY,
        daily_risk_absolute=daily_risk_absolute,
        daily_risk_percentage=daily_risk_percentage,
        initial_balance=initial_balance,
        current_balance=current_balance,
        trading_enabled=trading_enabled,
        is_active=is_active,
    )
    async with database.transaction_scope() as session:
        await AccountRepository(session).add(account)
    return account


async def create_open_order(
    database: Database,
    account: Account,
    side: str = "BUY",
    symbol: str = "PI_XBTUSD",
    strategy: str = "trend",
    exchange_order_id: Optional[str] = "existing-1",
    status: str = "OPEN",
) -> Order:
    """Insert an order row directly."""
    order = Order(
        account_id=account.id,
        symbol=symbol,
        strategy=strategy,
        side=side,
        quantity=Decimal("1000"),
        inverse=False,
        pyramid=False,
        status=status,
        exchange_order_id=exchange_order_id,
    )
    async with database.transaction_scope() as session:
        await OrderRepository(session).add(order)
    return order


async def reload_account(database: Database, account: Account) -> Account:
    async with database.session() as session:
        return await AccountRepository(session).get_by_id(account.id)


async def reload_order(database: Database, order: Order) -> Order:
    async with database.session() as session:
        return await OrderRepository(session).get_by_id(order.id)
