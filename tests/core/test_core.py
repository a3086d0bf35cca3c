"""
Core Tests.

Tests for the clock helpers, the account lock registry and the
exception taxonomy.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from core import (
    AccountLockRegistry,
    AccountNotFoundError,
    ExchangeOperationError,
    MockClock,
    Severity,
    ensure_utc,
    next_day_at,
    next_occurrence,
)


class TestClock:
    """Tests for clock helpers."""

    def test_next_day_at(self):
        now = datetime(2025, 1, 15, 23, 59, tzinfo=timezone.utc)

        assert next_day_at(now, 0, 1) == datetime(2025, 1, 16, 0, 1, tzinfo=timezone.utc)

    def test_next_day_at_month_boundary(self):
        now = datetime(2025, 1, 31, 0, 0, tzinfo=timezone.utc)

        assert next_day_at(now, 0, 1) == datetime(2025, 2, 1, 0, 1, tzinfo=timezone.utc)

    def test_next_occurrence_same_day(self):
        now = datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)

        assert next_occurrence(now, 0, 1) == datetime(2025, 1, 15, 0, 1, tzinfo=timezone.utc)

    def test_ensure_utc_naive(self):
        naive = datetime(2025, 1, 15, 12, 0)

        assert ensure_utc(naive).tzinfo == timezone.utc
        assert ensure_utc(None) is None

    def test_mock_clock_advance(self):
        clock = MockClock(datetime(2025, 1, 15, tzinfo=timezone.utc))

        clock.advance(hours=2)

        assert clock.now() == datetime(2025, 1, 15, 2, tzinfo=timezone.utc)
        assert clock.epoch_millis() == int(clock.now().timestamp() * 1000)


class TestAccountLockRegistry:
    """Tests for per-account locks."""

    def test_same_account_same_lock(self):
        registry = AccountLockRegistry()

        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_hold_serializes_same_account(self):
        registry = AccountLockRegistry()
        order = []

        async def worker(name: str):
            async with registry.hold("acct"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("one"), worker("two"))

        assert order == ["one-start", "one-end", "two-start", "two-end"]

    @pytest.mark.asyncio
    async def test_different_accounts_run_in_parallel(self):
        registry = AccountLockRegistry()

        async with registry.hold("a"):
            assert registry.is_locked("a")
            assert not registry.is_locked("b")
            async with registry.hold("b"):
                assert registry.is_locked("b")

    def test_discard(self):
        registry = AccountLockRegistry()
        registry.get("a")

        registry.discard("a")

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_discard_while_held_keeps_lock_for_waiters(self):
        registry = AccountLockRegistry()
        seen = []

        async def waiter():
            async with registry.hold("a"):
                seen.append(registry.get("a"))

        async with registry.hold("a"):
            lock = registry.get("a")
            task = asyncio.create_task(waiter())
            while registry.users("a") < 2:
                await asyncio.sleep(0)

            registry.discard("a")

            assert registry.get("a") is lock
            assert len(registry) == 1

        await task

        assert seen == [lock]
        assert registry.users("a") == 0
        assert len(registry) == 0


class TestExceptions:
    """Tests for the exception taxonomy."""

    def test_exchange_error_message(self):
        error = ExchangeOperationError("place order", "insufficientFunds", status_code=400)

        assert str(error) == "Failed to place order: insufficientFunds"
        assert error.severity == Severity.HIGH
        assert error.to_dict()["context"]["status_code"] == 400

    def test_exchange_error_without_text(self):
        assert str(ExchangeOperationError("get balances")) == "Failed to get balances"

    def test_not_found_message(self):
        assert str(AccountNotFoundError("0000000001")) == "Account not found: 0000000001"
