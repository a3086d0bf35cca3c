"""
Execution Engine - Order Manager.

============================================================
PURPOSE
============================================================
Turns inbound trading signals into exchange actions under the
pyramid/inverse strategy rules, and force-closes orders.

RESPONSIBILITIES:
- Signal processing (pyramid rule, inverse rule, placement)
- Order state management (PENDING -> OPEN/FAILED)
- Best-effort cancellation (inverse and force-close)
- Order queries

SAFETY CONSTRAINTS:
- Per-account serialization of "load open orders -> decide ->
  mutate" via the account lock registry
- No retries of exchange calls
- Exchange failures become FAILED orders, never exceptions
- A failed exchange cancel never blocks the local transition

============================================================
ORDER LIFECYCLE
============================================================
PENDING -> OPEN -> CLOSED     (inverse signal)
PENDING -> OPEN -> CANCELLED  (force-close)
PENDING -> FAILED             (placement failed)

Each step is its own short transaction: "create order" and
"mark OPEN/FAILED after the exchange answered" are separate,
so a crash in between leaves a PENDING row behind.

============================================================
"""

import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from core.clock import ClockProtocol, SystemClock, to_iso8601
from core.exceptions import (
    AccountNotFoundError,
    ExchangeOperationError,
    OrderNotFoundError,
    TradingDisabledError,
)
from core.locks import AccountLockRegistry
from storage.database import Database
from storage.models import Account, Order
from storage.repositories import AccountRepository, OrderRepository

from .adapters.base import ExchangeAdapter, ExchangeCredentials, SubmitOrderRequest
from .config import ExecutionConfig
from .state_machine import InvalidTransitionError, OrderStateMachine
from .types import (
    CancelOutcome,
    OrderStatus,
    PYRAMID_REJECTION_REASON,
    SignalResult,
    SignalStatus,
    TradingSignal,
)


logger = logging.getLogger(__name__)


DEMO_ORDER_PREFIX = "DEMO_ORDER_"


def credentials_for(account: Account) -> ExchangeCredentials:
    return ExchangeCredentials(api_key=account.api_key, private_key=account.private_key)


def order_to_dict(order: Order) -> Dict[str, Any]:
    """Serialize an order row for the response layer."""
    return {
        "id": str(order.id),
        "account_id": str(order.account_id),
        "symbol": order.symbol,
        "strategy": order.strategy,
        "side": order.side,
        "quantity": order.quantity,
        "price": order.price,
        "stop_loss_percentage": order.stop_loss_percentage,
        "max_risk_per_day_percentage": order.max_risk_per_day_percentage,
        "inverse": order.inverse,
        "pyramid": order.pyramid,
        "status": order.status,
        "exchange_order_id": order.exchange_order_id,
        "error_message": order.error_message,
        "created_at": to_iso8601(order.created_at),
        "updated_at": to_iso8601(order.updated_at),
        "executed_at": to_iso8601(order.executed_at),
    }


# ============================================================
# ORDER MANAGER
# ============================================================

class OrderManager:
    """
    Order Lifecycle Manager.

    Owns the state machine of every order from signal receipt to
    terminal state.
    """

    def __init__(
        self,
        database: Database,
        exchange: ExchangeAdapter,
        locks: AccountLockRegistry,
        config: Optional[ExecutionConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize order manager.

        Args:
            database: Persistence (transaction scopes)
            exchange: Exchange adapter
            locks: Shared per-account lock registry
            config: Execution configuration
            clock: Time source
        """
        self._db = database
        self._exchange = exchange
        self._locks = locks
        self._config = config or ExecutionConfig()
        self._clock = clock or SystemClock()

    @property
    def demo_mode(self) -> bool:
        return self._config.demo_mode

    # --------------------------------------------------------
    # SIGNAL PROCESSING
    # --------------------------------------------------------

    async def process_signal(self, signal: TradingSignal) -> SignalResult:
        """
        Process one trading signal.

        Args:
            signal: Validated trading signal

        Returns:
            SignalResult (success, failed or rejected)

        Raises:
            AccountNotFoundError: Unknown client id
            TradingDisabledError: Trading is off for the account
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(signal.client_id)

        async with self._locks.hold(account.id):
            return await self._process_signal_locked(signal, account.id)

    async def _process_signal_locked(self, signal: TradingSignal, account_id: UUID) -> SignalResult:
        # 1. Fresh account state and open orders of the triple
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_id(account_id)
            if account is None:
                raise AccountNotFoundError(signal.client_id)
            if not account.trading_enabled:
                logger.warning(f"Signal rejected, trading disabled for account {account.client_id}")
                raise TradingDisabledError(account.client_id)

            existing = await OrderRepository(session).list_for_triple(
                account.id, signal.strategy, signal.symbol
            )

        side = signal.side
        credentials = credentials_for(account)

        # 2. Pyramid rule
        if not signal.pyramid:
            same_side = [o for o in existing if o.side == side.value]
            if same_side:
                logger.info(
                    f"Pyramid disabled: {len(same_side)} {side.value} order(s) already open "
                    f"for {account.client_id}/{signal.strategy}/{signal.symbol}"
                )
                return SignalResult(
                    status=SignalStatus.REJECTED,
                    message=PYRAMID_REJECTION_REASON,
                    reason=PYRAMID_REJECTION_REASON,
                    existing_orders=len(same_side),
                )

        # 3. Inverse rule
        closed_ids: List[str] = []
        if signal.inverse and existing:
            logger.info(
                f"Inverse signal: closing {len(existing)} open order(s) "
                f"for {account.client_id}/{signal.strategy}/{signal.symbol}"
            )
            closed_ids = await self._close_orders(
                credentials, existing, OrderStatus.CLOSED, "Closed by inverse signal"
            )

        # 4. Persist PENDING
        order = Order(
            account_id=account.id,
            symbol=signal.symbol,
            strategy=signal.strategy,
            side=side.value,
            quantity=signal.quantity,
            stop_loss_percentage=signal.stop_loss_percentage,
            max_risk_per_day_percentage=signal.max_risk_per_day_percentage,
            inverse=signal.inverse,
            pyramid=signal.pyramid,
            status=OrderStatus.PENDING.value,
        )
        async with self._db.transaction_scope() as session:
            await OrderRepository(session).add(order)

        # 5. Place at the exchange (or simulate)
        machine = OrderStateMachine(order, self._clock)
        try:
            if self.demo_mode:
                exchange_order_id = f"{DEMO_ORDER_PREFIX}{self._clock.epoch_millis()}"
                machine.mark_open(exchange_order_id, "Demo placement simulated")
                logger.info(f"DEMO MODE: order simulated with ID {exchange_order_id}")
            else:
                request = SubmitOrderRequest(
                    symbol=signal.symbol,
                    side=signal.action.strip().lower(),
                    size=signal.quantity,
                    order_type=self._config.default_order_type,
                    stop_price=signal.stop_loss_percentage,
                )
                response = await self._exchange.place_order(credentials, request)
                if response.is_success:
                    machine.mark_open(response.order_id)
                else:
                    machine.mark_failed(response.error or "Order rejected by exchange")
        except Exception as e:
            logger.error(f"Error placing order {order.id}: {e}")
            error = f"Demo mode error: {e}" if self.demo_mode else str(e)
            machine.mark_failed(error)

        async with self._db.transaction_scope() as session:
            await OrderRepository(session).add(order)

        logger.info(f"Order processed: {order.id} - Status: {order.status}")

        opened = order.status == OrderStatus.OPEN.value
        return SignalResult(
            status=SignalStatus.SUCCESS if opened else SignalStatus.FAILED,
            order_id=str(order.id),
            exchange_order_id=order.exchange_order_id,
            message="Order placed successfully" if opened else (order.error_message or "Order failed"),
            closed_order_ids=closed_ids,
        )

    # --------------------------------------------------------
    # FORCE CLOSE
    # --------------------------------------------------------

    async def close_all_orders(self, client_id: str) -> List[str]:
        """
        Force-close every OPEN order of an account.

        Returns:
            Local ids of the orders transitioned to CANCELLED

        Raises:
            AccountNotFoundError: Unknown client id
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            return await self.close_all_orders_locked(account)

    async def close_all_orders_locked(self, account: Account) -> List[str]:
        """
        Force-close variant for callers already holding the account lock.

        Every cancel is best-effort; the order is marked CANCELLED
        even when the exchange call fails, with the failure text
        recorded on the row.
        """
        async with self._db.session() as session:
            open_orders = await OrderRepository(session).list_open_for_account(account.id)

        if not open_orders:
            return []

        closed = await self._close_orders(
            credentials_for(account), open_orders, OrderStatus.CANCELLED, "Force-closed"
        )
        logger.info(f"Closed {len(closed)} open orders for account {account.client_id}")
        return closed

    async def _close_orders(
        self,
        credentials: ExchangeCredentials,
        orders: List[Order],
        target: OrderStatus,
        reason: str,
    ) -> List[str]:
        """Cancel at the exchange (best-effort), then transition locally."""
        transitioned: List[Order] = []

        for order in orders:
            outcome = await self._cancel_at_exchange(credentials, order)
            machine = OrderStateMachine(order, self._clock)
            try:
                if target == OrderStatus.CLOSED:
                    machine.mark_closed(reason, error=outcome.error)
                else:
                    machine.mark_cancelled(reason, error=outcome.error)
            except InvalidTransitionError as e:
                logger.warning(f"Skipping order {order.id}: {e}")
                continue
            transitioned.append(order)

        if transitioned:
            async with self._db.transaction_scope() as session:
                repo = OrderRepository(session)
                for order in transitioned:
                    await repo.add(order)

        return [str(order.id) for order in transitioned]

    async def _cancel_at_exchange(self, credentials: ExchangeCredentials, order: Order) -> CancelOutcome:
        outcome = CancelOutcome(
            order_id=str(order.id),
            exchange_order_id=order.exchange_order_id,
            cancelled_at_exchange=False,
        )

        if not order.exchange_order_id:
            return outcome
        if self.demo_mode and order.exchange_order_id.startswith(DEMO_ORDER_PREFIX):
            return outcome

        try:
            response = await self._exchange.cancel_order(credentials, order.exchange_order_id)
        except ExchangeOperationError as e:
            logger.warning(f"Failed to cancel order {order.exchange_order_id} at exchange: {e}")
            outcome.error = str(e)
            return outcome

        if response.is_success:
            outcome.cancelled_at_exchange = True
        else:
            outcome.error = response.error or response.message or "Cancel rejected by exchange"
            logger.warning(
                f"Exchange refused cancel of {order.exchange_order_id}: {outcome.error}"
            )
        return outcome

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def get_account_orders(self, client_id: str) -> List[Order]:
        """All orders of an account, newest first."""
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
            return await OrderRepository(session).list_for_account(account.id)

    async def get_open_orders(self, client_id: str) -> List[Order]:
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
            return await OrderRepository(session).list_open_for_account(account.id)

    async def get_order(self, order_id: Union[str, UUID]) -> Order:
        """
        Raises:
            OrderNotFoundError: Unknown or malformed order id
        """
        try:
            key = order_id if isinstance(order_id, UUID) else UUID(str(order_id))
        except ValueError:
            raise OrderNotFoundError(order_id)

        async with self._db.session() as session:
            order = await OrderRepository(session).get_by_id(key)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_order_stats(self, client_id: str) -> Dict[str, int]:
        """Order counts per status for an account."""
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
            counts = await OrderRepository(session).count_by_status(account.id)

        stats = {status.value.lower(): counts.get(status.value, 0) for status in OrderStatus}
        stats["total"] = sum(counts.values())
        return stats
