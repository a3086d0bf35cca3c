"""
Risk Evaluation Engine Tests.

============================================================
PURPOSE
============================================================
Tests for drawdown evaluation and breach handling.

TEST CATEGORIES:
- Loss math and threshold evaluation
- Baseline establishment
- SAFE / AT_LIMIT / EXCEEDED outcomes
- Breach response (force-close, disable, audit event)
- Sweeps and daily reset
- Administration

============================================================
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.clock import ensure_utc
from core.exceptions import AccountNotFoundError, ExchangeOperationError, RiskCheckError
from execution_engine import OrderStatus
from execution_engine.adapters.base import AccountsResponse
from risk_controller import (
    RiskStatus,
    ThresholdKind,
    compute_loss_percentage,
    evaluate_thresholds,
    risk_event_to_dict,
)
from storage.repositories import RiskEventRepository

from conftest import create_account, create_open_order, reload_account, reload_order


async def list_events(database, account):
    async with database.session() as session:
        return await RiskEventRepository(session).list_for_account(account.id)


# ============================================================
# LOSS MATH TESTS
# ============================================================

class TestLossMath:
    """Tests for loss percentage and thresholds."""

    def test_percentage_rounded_before_multiply(self):
        # 1/3 -> 0.3333 -> 33.3300
        assert compute_loss_percentage(Decimal("1"), Decimal("3")) == Decimal("33.3300")

    def test_percentage_half_up(self):
        # 0.00015 rounds half-up to 0.0002
        assert compute_loss_percentage(Decimal("15"), Decimal("100000")) == Decimal("0.0200")

    def test_percentage_zero_initial(self):
        assert compute_loss_percentage(Decimal("10"), Decimal("0")) == Decimal("0")

    def test_absolute_checked_first(self):
        evaluation = evaluate_thresholds(
            Decimal("1500"), Decimal("3"), Decimal("1000"), Decimal("2")
        )

        assert evaluation.status == RiskStatus.EXCEEDED
        assert evaluation.breached == ThresholdKind.ABSOLUTE
        assert evaluation.threshold == Decimal("1000")

    def test_percentage_breach(self):
        evaluation = evaluate_thresholds(Decimal("300"), Decimal("3"), None, Decimal("2"))

        assert evaluation.status == RiskStatus.EXCEEDED
        assert evaluation.breached == ThresholdKind.PERCENTAGE

    def test_equality_is_at_limit(self):
        evaluation = evaluate_thresholds(Decimal("1000"), Decimal("2"), Decimal("1000"), None)

        assert evaluation.status == RiskStatus.AT_LIMIT

    def test_below_limits_is_safe(self):
        evaluation = evaluate_thresholds(Decimal("800"), Decimal("1.6"), Decimal("1000"), Decimal("2"))

        assert evaluation.status == RiskStatus.SAFE

    def test_gain_is_safe(self):
        evaluation = evaluate_thresholds(Decimal("-500"), Decimal("-1"), Decimal("1000"), Decimal("2"))

        assert evaluation.status == RiskStatus.SAFE


# ============================================================
# CHECK RISK TESTS
# ============================================================

class TestCheckRisk:
    """Tests for single-account evaluation."""

    @pytest.mark.asyncio
    async def test_unknown_account(self, services):
        with pytest.raises(AccountNotFoundError):
            await services.risk_engine.check_risk("9999999999")

    @pytest.mark.asyncio
    async def test_safe_only_touches_last_risk_check(self, services, database, clock):
        """initial 50000, limit 1000, balance 49200: SAFE."""
        account = await create_account(database, current_balance=Decimal("49200"))
        await create_open_order(database, account)

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.SAFE
        assert result.message == "Risk check completed"
        assert result.daily_loss == Decimal("800")
        assert result.daily_loss_percentage == Decimal("1.6000")

        row = await reload_account(database, account)
        assert row.trading_enabled is True
        assert row.initial_balance == Decimal("50000")
        assert row.last_risk_check.replace(tzinfo=timezone.utc) == clock.now()
        assert await list_events(database, account) == []

    @pytest.mark.asyncio
    async def test_exceeded_disables_and_closes(self, services, database, exchange, clock):
        """initial 50000, limit 1000, balance 48500: EXCEEDED."""
        account = await create_account(database, current_balance=Decimal("48500"))
        first = await create_open_order(database, account, exchange_order_id="ex-1")
        second = await create_open_order(database, account, side="SELL", exchange_order_id="ex-2")

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.EXCEEDED
        assert result.message == "Risk threshold exceeded - Trading disabled"
        assert result.action_taken == "trading_disabled_positions_closed"
        assert result.positions_closed == 2
        assert result.daily_loss == Decimal("1500")

        row = await reload_account(database, account)
        assert row.trading_enabled is False
        assert (await reload_order(database, first)).status == OrderStatus.CANCELLED.value
        assert (await reload_order(database, second)).status == OrderStatus.CANCELLED.value

        events = await list_events(database, account)
        assert len(events) == 1
        event = events[0]
        assert event.event_type == "DAILY_RISK_EXCEEDED"
        assert event.risk_threshold == Decimal("1000")
        assert event.loss_amount == Decimal("1500")
        assert event.description == "Daily risk limit exceeded: absolute threshold 1000"
        assert sorted(json.loads(event.orders_closed)) == sorted([str(first.id), str(second.id)])
        assert event.trading_disabled_until.replace(tzinfo=timezone.utc) == datetime(
            2025, 1, 16, 0, 1, tzinfo=timezone.utc
        )

    @pytest.mark.asyncio
    async def test_percentage_breach_description(self, services, database):
        account = await create_account(
            database,
            current_balance=Decimal("48500"),
            daily_risk_absolute=None,
            daily_risk_percentage=Decimal("2"),
        )

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.EXCEEDED
        events = await list_events(database, account)
        assert events[0].description == "Daily risk limit exceeded: percentage threshold 2"

    @pytest.mark.asyncio
    async def test_at_limit(self, services, database):
        account = await create_account(database, current_balance=Decimal("49000"))

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.AT_LIMIT
        assert result.message == "Risk check completed - At risk limit"
        assert (await reload_account(database, account)).trading_enabled is True

    @pytest.mark.asyncio
    async def test_close_failure_still_disables(self, services, database, exchange):
        """Trading is disabled and the event written even if closing fails."""
        account = await create_account(database, current_balance=Decimal("40000"))
        await create_open_order(database, account)

        async def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        services.order_manager.close_all_orders_locked = boom

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.EXCEEDED
        assert result.positions_closed == 0
        assert (await reload_account(database, account)).trading_enabled is False
        events = await list_events(database, account)
        assert len(events) == 1
        assert json.loads(events[0].orders_closed) == []

    @pytest.mark.asyncio
    async def test_exchange_cancel_failure_still_counts(self, services, database, exchange):
        account = await create_account(database, current_balance=Decimal("40000"))
        await create_open_order(database, account)
        exchange.cancel_order.side_effect = ExchangeOperationError("cancel order", "timeout")

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.positions_closed == 1


# ============================================================
# BASELINE TESTS
# ============================================================

class TestBaseline:
    """Tests for balance resolution and the initial balance."""

    @pytest.mark.asyncio
    async def test_first_observation_sets_initial_balance(self, services, database, exchange):
        account = await create_account(database, initial_balance=None, current_balance=None)

        result = await services.risk_engine.check_risk(account.client_id)

        assert result.risk_status == RiskStatus.SAFE
        assert result.daily_loss == Decimal("0")
        row = await reload_account(database, account)
        assert row.initial_balance == Decimal("50000")
        assert row.current_balance == Decimal("50000")
        exchange.get_balances.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_initial_balance_never_changed_by_checks(self, services, database):
        account = await create_account(database, initial_balance=None, current_balance=Decimal("20000"))

        await services.risk_engine.check_risk(account.client_id)
        await services.accounts.update_balance(account.client_id, "25000")
        await services.risk_engine.check_risk(account.client_id)

        row = await reload_account(database, account)
        assert row.initial_balance == Decimal("20000")

    @pytest.mark.asyncio
    async def test_stored_balance_preferred(self, services, database, exchange):
        account = await create_account(database)

        await services.risk_engine.check_risk(account.client_id)

        exchange.get_balances.assert_not_called()

    @pytest.mark.asyncio
    async def test_balance_fetch_failure_raises(self, services, database, exchange):
        account = await create_account(database, current_balance=None)
        exchange.get_balances.side_effect = ExchangeOperationError("get balances", "Network error")

        with pytest.raises(RiskCheckError):
            await services.risk_engine.check_risk(account.client_id)

        assert (await reload_account(database, account)).trading_enabled is True

    @pytest.mark.asyncio
    async def test_error_balance_response_is_not_a_zero_balance(self, services, database, exchange):
        account = await create_account(database, current_balance=None)
        order = await create_open_order(database, account)
        exchange.get_balances.return_value = AccountsResponse.from_json(
            {"result": "error", "error": "apiLimitExceeded"}
        )

        with pytest.raises(RiskCheckError, match="apiLimitExceeded"):
            await services.risk_engine.check_risk(account.client_id)

        row = await reload_account(database, account)
        assert row.trading_enabled is True
        assert row.current_balance is None
        assert (await reload_order(database, order)).status == OrderStatus.OPEN.value
        assert await list_events(database, account) == []
        exchange.cancel_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_balance_response_reported_by_sweep(self, services, database, exchange):
        account = await create_account(database, current_balance=None)
        exchange.get_balances.return_value = AccountsResponse.from_json(
            {"result": "error", "error": "apiLimitExceeded"}
        )

        results = await services.risk_engine.check_all_accounts()

        assert [r.risk_status for r in results] == [RiskStatus.ERROR]
        assert (await reload_account(database, account)).trading_enabled is True


# ============================================================
# SWEEP TESTS
# ============================================================

class TestSweeps:
    """Tests for whole-account sweeps."""

    @pytest.mark.asyncio
    async def test_failing_account_does_not_abort_sweep(self, services, database, exchange):
        broken = await create_account(database, client_id="0000000001", current_balance=None)
        healthy = await create_account(database, client_id="0000000002", current_balance=Decimal("48000"))
        exchange.get_balances.side_effect = ExchangeOperationError("get balances", "Network error")

        results = await services.risk_engine.check_all_accounts()

        by_client = {r.client_id: r for r in results}
        assert by_client[broken.client_id].status == "error"
        assert by_client[broken.client_id].risk_status == RiskStatus.ERROR
        assert by_client[healthy.client_id].risk_status == RiskStatus.EXCEEDED

    @pytest.mark.asyncio
    async def test_inactive_accounts_skipped(self, services, database):
        await create_account(database, client_id="0000000001", is_active=False)

        assert await services.risk_engine.check_all_accounts() == []


# ============================================================
# DAILY RESET TESTS
# ============================================================

class TestDailyReset:
    """Tests for the daily trading reset."""

    @pytest.mark.asyncio
    async def test_reenables_after_disable_period(self, services, database, clock):
        account = await create_account(database, current_balance=Decimal("48500"))
        await services.risk_engine.check_risk(account.client_id)

        clock.set_time(datetime(2025, 1, 16, 0, 2, tzinfo=timezone.utc))
        count = await services.risk_engine.reset_daily_trading()

        assert count == 1
        assert (await reload_account(database, account)).trading_enabled is True

    @pytest.mark.asyncio
    async def test_keeps_disabled_before_period_ends(self, services, database, clock):
        account = await create_account(database, current_balance=Decimal("48500"))
        await services.risk_engine.check_risk(account.client_id)

        clock.advance(hours=6)
        count = await services.risk_engine.reset_daily_trading()

        assert count == 0
        assert (await reload_account(database, account)).trading_enabled is False

    @pytest.mark.asyncio
    async def test_no_event_means_no_reenable(self, services, database, clock):
        """Manually disabled accounts are never auto re-enabled."""
        account = await create_account(database, trading_enabled=False)

        clock.advance(days=3)
        count = await services.risk_engine.reset_daily_trading()

        assert count == 0
        assert (await reload_account(database, account)).trading_enabled is False

    @pytest.mark.asyncio
    async def test_breach_records_when_trading_was_disabled(self, services, database, clock):
        account = await create_account(database, current_balance=Decimal("48500"))

        await services.risk_engine.check_risk(account.client_id)

        row = await reload_account(database, account)
        assert row.trading_enabled is False
        assert ensure_utc(row.trading_disabled_at) == clock.now()

    @pytest.mark.asyncio
    async def test_admin_disable_after_expired_event_is_kept(self, services, database, clock):
        account = await create_account(database, current_balance=Decimal("48500"))
        await services.risk_engine.check_risk(account.client_id)
        await services.accounts.reset_initial_balance(account.client_id)
        summary = await services.accounts.set_trading_enabled(account.client_id, True)
        assert summary["trading_disabled_at"] is None

        clock.advance(days=2)
        await services.accounts.set_trading_enabled(account.client_id, False)
        count = await services.risk_engine.reset_daily_trading()

        assert count == 0
        assert (await reload_account(database, account)).trading_enabled is False

    @pytest.mark.asyncio
    async def test_reenable_clears_disabled_timestamp(self, services, database, clock):
        account = await create_account(database, current_balance=Decimal("48500"))
        await services.risk_engine.check_risk(account.client_id)

        clock.set_time(datetime(2025, 1, 16, 0, 2, tzinfo=timezone.utc))
        await services.risk_engine.reset_daily_trading()

        row = await reload_account(database, account)
        assert row.trading_enabled is True
        assert row.trading_disabled_at is None


# ============================================================
# ADMINISTRATION TESTS
# ============================================================

class TestAdministration:
    """Tests for risk administration."""

    @pytest.mark.asyncio
    async def test_reset_account_trading(self, services, database):
        account = await create_account(database, trading_enabled=False)

        assert await services.risk_engine.reset_account_trading(account.client_id) is True
        assert (await reload_account(database, account)).trading_enabled is True

    @pytest.mark.asyncio
    async def test_reset_unknown_account(self, services):
        assert await services.risk_engine.reset_account_trading("9999999999") is False

    @pytest.mark.asyncio
    async def test_risk_events_newest_first(self, services, database, clock):
        first = await create_account(database, client_id="0000000001", current_balance=Decimal("40000"))
        second = await create_account(database, client_id="0000000002", current_balance=Decimal("40000"))

        await services.risk_engine.check_risk(first.client_id)
        clock.advance(minutes=5)
        await services.risk_engine.check_risk(second.client_id)

        events = await services.risk_engine.get_risk_events()
        assert [e.account_id for e in events] == [second.id, first.id]

        own = await services.risk_engine.get_account_risk_events(first.client_id)
        assert len(own) == 1
        assert risk_event_to_dict(own[0])["orders_closed"] == []

    @pytest.mark.asyncio
    async def test_result_serialization(self, services, database):
        account = await create_account(database, current_balance=Decimal("49200"))

        data = (await services.risk_engine.check_risk(account.client_id)).to_dict()

        assert data["status"] == "success"
        assert data["risk_status"] == "SAFE"
        assert data["client_id"] == account.client_id
        assert data["user_id"] == str(account.id)
        assert Decimal(data["daily_loss"]) == Decimal("800")
