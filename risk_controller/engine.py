"""
Risk Controller - Risk Evaluation Engine.

============================================================
PURPOSE
============================================================
Computes each account's daily drawdown against its configured
limits and enforces the breach response.

CRITICAL PRINCIPLE:
    "Trading suspension is the highest-priority safety action."

A failure to force-close orders never prevents trading from
being disabled or the breach from being recorded.

============================================================
ALGORITHM (one account)
============================================================
1. Resolve current balance (stored value, else the exchange
   aggregate, which is then persisted)
2. No initial balance yet: it becomes the current balance,
   result is SAFE with zero loss
3. loss = initial - current, percentage rounded to 4 places
4. Absolute limit first, then percentage limit. Strictly
   greater is EXCEEDED, exact equality is AT_LIMIT
5. EXCEEDED: force-close, disable trading until the next UTC
   day at 00:01, append a risk event
6. last_risk_check = now, whatever the outcome

============================================================
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from core.clock import ClockProtocol, SystemClock, ensure_utc, next_day_at, to_iso8601
from core.exceptions import AccountNotFoundError, ExchangeOperationError, RiskCheckError
from core.locks import AccountLockRegistry
from execution_engine.adapters.base import ExchangeAdapter
from execution_engine.order_manager import OrderManager, credentials_for
from storage.database import Database
from storage.models import Account, RiskEvent
from storage.repositories import AccountRepository, RiskEventRepository

from .config import RiskConfig
from .types import (
    ACTION_TRADING_DISABLED,
    MESSAGE_AT_LIMIT,
    MESSAGE_BASELINE,
    MESSAGE_COMPLETED,
    MESSAGE_EXCEEDED,
    RiskCheckResult,
    RiskEventType,
    RiskStatus,
    ThresholdEvaluation,
    compute_loss,
    compute_loss_percentage,
    evaluate_thresholds,
)


logger = logging.getLogger(__name__)


def format_amount(value: Decimal) -> str:
    """Plain decimal text without trailing zeros (1000.00000000 -> 1000)."""
    return format(value.normalize(), "f")


def _event_owns_disablement(event: RiskEvent, account: Account) -> bool:
    """True when the event is what switched the account's trading off."""
    disabled_at = ensure_utc(account.trading_disabled_at)
    if disabled_at is None:
        return False
    return ensure_utc(event.created_at) >= disabled_at


def risk_event_to_dict(event: RiskEvent) -> Dict[str, Any]:
    """Serialize a risk event row for the response layer."""
    orders_closed: List[str] = []
    if event.orders_closed:
        try:
            orders_closed = json.loads(event.orders_closed)
        except ValueError:
            logger.warning(f"Risk event {event.id} has malformed orders_closed")

    return {
        "id": str(event.id),
        "account_id": str(event.account_id),
        "event_type": event.event_type,
        "description": event.description,
        "current_balance": event.current_balance,
        "initial_balance": event.initial_balance,
        "risk_threshold": event.risk_threshold,
        "loss_amount": event.loss_amount,
        "loss_percentage": event.loss_percentage,
        "orders_closed": orders_closed,
        "trading_disabled_until": to_iso8601(event.trading_disabled_until),
        "created_at": to_iso8601(event.created_at),
    }


# ============================================================
# RISK EVALUATION ENGINE
# ============================================================

class RiskEvaluationEngine:
    """
    Risk Evaluation Engine.

    Usage:
    ```python
    engine = RiskEvaluationEngine(db, exchange, order_manager, locks)
    result = await engine.check_risk("0123456789")
    if result.is_exceeded:
        ...
    results = await engine.check_all_accounts()
    reenabled = await engine.reset_daily_trading()
    ```
    """

    def __init__(
        self,
        database: Database,
        exchange: ExchangeAdapter,
        order_manager: OrderManager,
        locks: AccountLockRegistry,
        config: Optional[RiskConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize the engine.

        Args:
            database: Persistence
            exchange: Exchange adapter (balance queries)
            order_manager: Force-close on breach
            locks: Per-account lock registry shared with the order manager
            config: Risk configuration
            clock: Time source
        """
        self._db = database
        self._exchange = exchange
        self._order_manager = order_manager
        self._locks = locks
        self._config = config or RiskConfig()
        self._clock = clock or SystemClock()

    # --------------------------------------------------------
    # SINGLE ACCOUNT
    # --------------------------------------------------------

    async def check_risk(self, client_id: str) -> RiskCheckResult:
        """
        Evaluate one account.

        Raises:
            AccountNotFoundError: Unknown client id
            RiskCheckError: Balance could not be resolved
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            return await self.check_risk_locked(account.id)

    async def check_risk_locked(self, account_id: UUID) -> RiskCheckResult:
        """Evaluate one account; the caller holds its lock."""
        now = self._clock.now()

        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        current_balance = account.current_balance
        if current_balance is None:
            current_balance = await self._fetch_balance(account)
            account.current_balance = current_balance

        # First observation establishes the baseline
        if account.initial_balance is None:
            account.initial_balance = current_balance
            account.last_risk_check = now
            await self._save(account)
            logger.info(f"Initial balance for {account.client_id} set to {current_balance}")
            return self._result(account, RiskStatus.SAFE, MESSAGE_BASELINE, now)

        initial_balance = account.initial_balance
        loss_amount = compute_loss(initial_balance, current_balance)
        loss_percentage = compute_loss_percentage(loss_amount, initial_balance)

        evaluation = evaluate_thresholds(
            loss_amount,
            loss_percentage,
            account.daily_risk_absolute,
            account.daily_risk_percentage,
        )

        if evaluation.status == RiskStatus.EXCEEDED:
            return await self._handle_breach(account, evaluation, loss_amount, loss_percentage, now)

        account.last_risk_check = now
        await self._save(account)

        message = MESSAGE_AT_LIMIT if evaluation.status == RiskStatus.AT_LIMIT else MESSAGE_COMPLETED
        if evaluation.status == RiskStatus.AT_LIMIT:
            logger.warning(
                f"Account {account.client_id} at {evaluation.breached.value} risk limit "
                f"{evaluation.threshold} (loss {loss_amount})"
            )

        return self._result(
            account, evaluation.status, message, now,
            loss_amount=loss_amount, loss_percentage=loss_percentage,
        )

    async def _fetch_balance(self, account: Account):
        try:
            response = await self._exchange.get_balances(credentials_for(account))
        except ExchangeOperationError as e:
            raise RiskCheckError(account.client_id, f"Balance unavailable: {e}", cause=e) from e

        # Error bodies carry no sub-accounts
        if not response.is_success:
            error = ExchangeOperationError("get balances", response.error or "Balance request rejected")
            logger.error(f"Balance request rejected for {account.client_id}: {error}")
            raise RiskCheckError(account.client_id, f"Balance unavailable: {error}", cause=error)
        return response.total_balance

    async def _handle_breach(
        self,
        account: Account,
        evaluation: ThresholdEvaluation,
        loss_amount,
        loss_percentage,
        now,
    ) -> RiskCheckResult:
        """Force-close, disable trading and append the audit event."""
        actions: List[str] = []

        closed_ids: List[str] = []
        try:
            closed_ids = await self._order_manager.close_all_orders_locked(account)
            actions.append(f"Closed {len(closed_ids)} open orders")
        except Exception as e:
            logger.error(f"Failed to close orders for {account.client_id} during risk breach: {e}")
            actions.append(f"Failed to close orders: {e}")

        disabled_until = next_day_at(
            now, self._config.disable_until_hour, self._config.disable_until_minute
        )
        account.trading_enabled = False
        account.trading_disabled_at = now
        account.last_risk_check = now
        actions.append(f"Trading disabled until {to_iso8601(disabled_until)}")

        description = (
            f"Daily risk limit exceeded: {evaluation.breached.value} "
            f"threshold {format_amount(evaluation.threshold)}"
        )
        event = RiskEvent(
            account_id=account.id,
            event_type=RiskEventType.DAILY_RISK_EXCEEDED.value,
            description=description,
            current_balance=account.current_balance,
            initial_balance=account.initial_balance,
            risk_threshold=evaluation.threshold,
            loss_amount=loss_amount,
            loss_percentage=loss_percentage,
            orders_closed=json.dumps(closed_ids),
            trading_disabled_until=disabled_until,
            created_at=now,
        )

        async with self._db.transaction_scope() as session:
            await AccountRepository(session).add(account)
            await RiskEventRepository(session).add(event)

        logger.error(
            f"RISK ALERT: Account {account.client_id} exceeded daily risk limit. "
            f"Loss: {loss_amount} ({loss_percentage}%), "
            f"{evaluation.breached.value} threshold: {evaluation.threshold}. "
            f"Closed {len(closed_ids)} orders, trading disabled until {to_iso8601(disabled_until)}"
        )

        result = self._result(
            account, RiskStatus.EXCEEDED, MESSAGE_EXCEEDED, now,
            loss_amount=loss_amount, loss_percentage=loss_percentage,
        )
        result.action_taken = ACTION_TRADING_DISABLED
        result.positions_closed = len(closed_ids)
        result.risk_events = actions
        return result

    async def _save(self, account: Account) -> None:
        async with self._db.transaction_scope() as session:
            await AccountRepository(session).add(account)

    def _result(
        self,
        account: Account,
        status: RiskStatus,
        message: str,
        now,
        loss_amount=None,
        loss_percentage=None,
    ) -> RiskCheckResult:
        result = RiskCheckResult(
            client_id=account.client_id,
            user_id=str(account.id),
            risk_status=status,
            message=message,
            timestamp=now,
            current_balance=account.current_balance,
            initial_balance=account.initial_balance,
            risk_percentage_limit=account.daily_risk_percentage,
            risk_absolute_limit=account.daily_risk_absolute,
        )
        if loss_amount is not None:
            result.daily_loss = loss_amount
        if loss_percentage is not None:
            result.daily_loss_percentage = loss_percentage
        return result

    # --------------------------------------------------------
    # SWEEPS
    # --------------------------------------------------------

    async def check_all_accounts(self) -> List[RiskCheckResult]:
        """
        Evaluate every active account.

        A failing account yields an error result and the sweep
        continues with the remaining accounts.
        """
        async with self._db.session() as session:
            accounts = await AccountRepository(session).list_active()

        results: List[RiskCheckResult] = []
        for account in accounts:
            try:
                async with self._locks.hold(account.id):
                    results.append(await self.check_risk_locked(account.id))
            except Exception as e:
                logger.error(f"Risk check failed for account {account.client_id}: {e}")
                results.append(
                    RiskCheckResult.error(
                        account.client_id, str(account.id), str(e), self._clock.now()
                    )
                )

        exceeded = sum(1 for r in results if r.is_exceeded)
        logger.info(f"Risk sweep completed: {len(results)} accounts checked, {exceeded} exceeded")
        return results

    async def reset_daily_trading(self) -> int:
        """
        Re-enable accounts whose disable period has passed.

        Only accounts disabled by a risk event are considered: the
        latest disabling event must be at least as recent as the
        account's current disablement, and its disable-until time
        must be in the past.

        Returns:
            Number of accounts re-enabled
        """
        now = self._clock.now()

        async with self._db.session() as session:
            accounts = [a for a in await AccountRepository(session).list_active() if not a.trading_enabled]

        reenabled = 0
        for account in accounts:
            async with self._locks.hold(account.id):
                async with self._db.transaction_scope() as session:
                    event = await RiskEventRepository(session).latest_disabling_event(account.id, now)
                    if event is None:
                        continue
                    disabled_until = ensure_utc(event.trading_disabled_until)
                    if disabled_until >= now:
                        continue

                    fresh = await AccountRepository(session).get_by_id(account.id)
                    if fresh is None or fresh.trading_enabled:
                        continue
                    if not _event_owns_disablement(event, fresh):
                        logger.info(
                            f"Account {account.client_id} was disabled after its last risk event, "
                            f"leaving trading off"
                        )
                        continue
                    fresh.trading_enabled = True
                    fresh.trading_disabled_at = None
                    await session.flush()

            reenabled += 1
            logger.info(f"Trading re-enabled for account {account.client_id}")

        logger.info(f"Daily trading reset completed: {reenabled} accounts re-enabled")
        return reenabled

    # --------------------------------------------------------
    # ADMINISTRATION
    # --------------------------------------------------------

    async def reset_account_trading(self, client_id: str) -> bool:
        """
        Explicitly re-enable trading for one account.

        Returns:
            False if the account does not exist
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id(client_id)
        if account is None:
            return False

        async with self._locks.hold(account.id):
            async with self._db.transaction_scope() as session:
                fresh = await AccountRepository(session).get_by_id(account.id)
                if fresh is None:
                    return False
                fresh.trading_enabled = True
                fresh.trading_disabled_at = None

        logger.info(f"Trading manually re-enabled for account {client_id}")
        return True

    async def get_risk_events(self) -> List[RiskEvent]:
        """All risk events, newest first."""
        async with self._db.session() as session:
            return await RiskEventRepository(session).list_all()

    async def get_account_risk_events(self, client_id: str) -> List[RiskEvent]:
        """
        Raises:
            AccountNotFoundError: Unknown client id
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
            return await RiskEventRepository(session).list_for_account(account.id)
