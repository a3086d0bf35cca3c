"""
Accounts - Service.

============================================================
PURPOSE
============================================================
Account registration and administration.

RESPONSIBILITIES:
- Register accounts (credential check, baseline balance,
  unique 10-digit client id)
- Update risk limits, trading flag and balance
- Balance override followed by a risk check
- Delete accounts (cascading to orders and risk events)

The exchange private key is stored but never returned, and the
public key is only ever returned masked.

============================================================
"""

import logging
import secrets
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock, to_iso8601
from core.exceptions import AccountNotFoundError, ExchangeOperationError, ValidationError
from core.locks import AccountLockRegistry
from execution_engine.adapters.base import ExchangeAdapter, ExchangeCredentials
from execution_engine.adapters.logging_utils import mask_api_key
from execution_engine.config import ExecutionConfig
from risk_controller.engine import RiskEvaluationEngine
from storage.database import Database
from storage.models import Account
from storage.repositories import AccountRepository


logger = logging.getLogger(__name__)


CLIENT_ID_DIGITS = 10
MAX_CLIENT_ID_ATTEMPTS = 100


def _decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field_name} must be a number", field=field_name) from e


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def account_to_summary(account: Account) -> Dict[str, Any]:
    """Public view of an account. The private key is never included."""
    return {
        "id": str(account.id),
        "client_id": account.client_id,
        "api_key": mask_api_key(account.api_key),
        "daily_risk_absolute": _money(account.daily_risk_absolute),
        "daily_risk_percentage": _money(account.daily_risk_percentage),
        "initial_balance": _money(account.initial_balance),
        "current_balance": _money(account.current_balance),
        "is_active": account.is_active,
        "trading_enabled": account.trading_enabled,
        "trading_disabled_at": to_iso8601(account.trading_disabled_at),
        "last_risk_check": to_iso8601(account.last_risk_check),
        "created_at": to_iso8601(account.created_at),
        "updated_at": to_iso8601(account.updated_at),
    }


async def _reload(session, account_id, client_id: Optional[str] = None) -> Account:
    """Re-read an account under its lock; it may have been deleted meanwhile."""
    account = await AccountRepository(session).get_by_id(account_id)
    if account is None:
        raise AccountNotFoundError(client_id or account_id)
    return account


def validate_risk_limits(
    daily_risk_absolute: Optional[Decimal],
    daily_risk_percentage: Optional[Decimal],
    require_one: bool = True,
) -> None:
    """
    Raises:
        ValidationError: Missing, non-positive or out-of-range limit
    """
    if require_one and daily_risk_absolute is None and daily_risk_percentage is None:
        raise ValidationError(
            "At least one risk limit (absolute or percentage) is required",
            field="daily_risk",
        )
    if daily_risk_absolute is not None and daily_risk_absolute <= 0:
        raise ValidationError("daily_risk_absolute must be positive", field="daily_risk_absolute")
    if daily_risk_percentage is not None:
        if daily_risk_percentage <= 0 or daily_risk_percentage > 100:
            raise ValidationError(
                "daily_risk_percentage must be between 0 and 100",
                field="daily_risk_percentage",
            )


class AccountService:
    """
    Account registration and administration.
    """

    def __init__(
        self,
        database: Database,
        exchange: ExchangeAdapter,
        risk_engine: RiskEvaluationEngine,
        locks: AccountLockRegistry,
        config: Optional[ExecutionConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._db = database
        self._exchange = exchange
        self._risk_engine = risk_engine
        self._locks = locks
        self._config = config or ExecutionConfig()
        self._clock = clock or SystemClock()

    # --------------------------------------------------------
    # REGISTRATION
    # --------------------------------------------------------

    async def register_account(
        self,
        api_key: str,
        private_key: str,
        daily_risk_absolute: Any = None,
        daily_risk_percentage: Any = None,
        initial_balance: Any = None,
    ) -> Dict[str, Any]:
        """
        Register a new account.

        Args:
            api_key: Exchange public key
            private_key: Exchange base64 private key
            daily_risk_absolute: Maximum daily loss in account currency
            daily_risk_percentage: Maximum daily loss in percent
            initial_balance: Explicit baseline; fetched when omitted.
                When the exchange reports no balance the baseline stays
                unset and the first risk check establishes it.

        Returns:
            Account summary

        Raises:
            ValidationError: Invalid credentials or limits
            ExchangeOperationError: Balance lookup failed, nothing persisted
        """
        if not api_key or not str(api_key).strip():
            raise ValidationError("api_key is required", field="api_key")
        if not private_key or not str(private_key).strip():
            raise ValidationError("private_key is required", field="private_key")

        absolute = _decimal(daily_risk_absolute, "daily_risk_absolute")
        percentage = _decimal(daily_risk_percentage, "daily_risk_percentage")
        validate_risk_limits(absolute, percentage)

        balance = _decimal(initial_balance, "initial_balance")
        if balance is None:
            balance = await self._fetch_registration_balance(ExchangeCredentials(api_key=api_key, private_key=private_key))

        async with self._db.transaction_scope() as session:
            repo = AccountRepository(session)
            client_id = await self._generate_client_id(repo)
            account = Account(
                client_id=client_id,
                api_key=api_key,
                private_key=private_key,
                daily_risk_absolute=absolute,
                daily_risk_percentage=percentage,
                initial_balance=balance,
                current_balance=balance,
                is_active=True,
                trading_enabled=True,
            )
            await repo.add(account)

        logger.info(
            f"Registered account {client_id} (key {mask_api_key(api_key)}, "
            f"initial balance {balance})"
        )
        return account_to_summary(account)

    async def _fetch_registration_balance(self, credentials: ExchangeCredentials) -> Optional[Decimal]:
        """
        Validate the credentials and read the first sub-account balance.

        Returns:
            The balance, or None when the exchange reports none

        Raises:
            ExchangeOperationError: Transport failure or error response
        """
        if self._config.demo_mode:
            return self._config.demo_initial_balance

        try:
            response = await self._exchange.get_account_info(credentials)
        except ExchangeOperationError as e:
            logger.error(f"Registration balance lookup failed for key {credentials.masked_key}: {e}")
            raise ExchangeOperationError(
                "register account",
                exchange_error=e.exchange_error or e.message,
                status_code=e.status_code,
                cause=e,
            ) from e

        if not response.is_success:
            error_text = response.error or "Account info request rejected"
            logger.error(f"Registration balance lookup rejected for key {credentials.masked_key}: {error_text}")
            raise ExchangeOperationError("register account", exchange_error=error_text)

        balance = response.first_balance
        if balance is None:
            logger.warning(
                f"No sub-account balance for key {credentials.masked_key}, "
                f"baseline deferred to the first risk check"
            )
        return balance

    async def _generate_client_id(self, repo: AccountRepository) -> str:
        for _ in range(MAX_CLIENT_ID_ATTEMPTS):
            candidate = str(secrets.randbelow(10 ** CLIENT_ID_DIGITS)).zfill(CLIENT_ID_DIGITS)
            if not await repo.client_id_exists(candidate):
                return candidate
        raise ValidationError("Could not allocate a unique client id")

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def list_accounts(self) -> List[Dict[str, Any]]:
        async with self._db.session() as session:
            accounts = await AccountRepository(session).list_all()
        return [account_to_summary(a) for a in accounts]

    async def get_account(self, client_id: str) -> Dict[str, Any]:
        """
        Raises:
            AccountNotFoundError: Unknown client id
        """
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
        return account_to_summary(account)

    async def get_current_balance(self, client_id: str) -> Optional[Decimal]:
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
        return account.current_balance

    # --------------------------------------------------------
    # UPDATES
    # --------------------------------------------------------

    async def update_risk_limits(
        self,
        client_id: str,
        daily_risk_absolute: Any = None,
        daily_risk_percentage: Any = None,
    ) -> Dict[str, Any]:
        """Update only the limits that are provided."""
        absolute = _decimal(daily_risk_absolute, "daily_risk_absolute")
        percentage = _decimal(daily_risk_percentage, "daily_risk_percentage")
        validate_risk_limits(absolute, percentage, require_one=False)

        async with self._db.transaction_scope() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)
            if absolute is not None:
                account.daily_risk_absolute = absolute
            if percentage is not None:
                account.daily_risk_percentage = percentage
            await session.flush()

        logger.info(f"Risk limits updated for {client_id}: absolute={absolute}, percentage={percentage}")
        return account_to_summary(account)

    async def set_trading_enabled(self, client_id: str, enabled: bool) -> Dict[str, Any]:
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            async with self._db.transaction_scope() as session:
                account = await _reload(session, account.id, client_id)
                if bool(enabled) != account.trading_enabled:
                    account.trading_enabled = bool(enabled)
                    account.trading_disabled_at = None if enabled else self._clock.now()
                await session.flush()

        logger.info(f"Trading {'enabled' if enabled else 'disabled'} for account {client_id}")
        return account_to_summary(account)

    async def update_balance(self, client_id: str, new_balance: Any) -> Dict[str, Any]:
        """Override the current balance."""
        balance = self._parse_balance(new_balance)

        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            account = await self._write_balance(account.id, balance)

        logger.info(f"Balance for {client_id} set to {balance}")
        return account_to_summary(account)

    async def update_balance_and_check_risk(self, client_id: str, new_balance: Any) -> Dict[str, Any]:
        """
        Override the current balance, then run the regular risk check.

        Returns:
            {status, message, account, risk_info}
        """
        balance = self._parse_balance(new_balance)

        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            await self._write_balance(account.id, balance)
            risk = await self._risk_engine.check_risk_locked(account.id)

        async with self._db.session() as session:
            account = await _reload(session, account.id, client_id)

        return {
            "status": "success",
            "message": f"Balance updated. {risk.message}",
            "account": account_to_summary(account),
            "risk_info": risk.to_dict(),
        }

    async def reset_initial_balance(self, client_id: str, initial_balance: Any = None) -> Dict[str, Any]:
        """
        Reset the drawdown baseline.

        Args:
            client_id: Account
            initial_balance: New baseline, defaults to the current balance
        """
        explicit = _decimal(initial_balance, "initial_balance")

        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            async with self._db.transaction_scope() as session:
                account = await _reload(session, account.id, client_id)
                baseline = explicit if explicit is not None else account.current_balance
                if baseline is None:
                    raise ValidationError(
                        "No current balance to use as initial balance",
                        field="initial_balance",
                    )
                account.initial_balance = baseline
                await session.flush()

        logger.info(f"Initial balance for {client_id} reset to {baseline}")
        return account_to_summary(account)

    async def delete_account(self, client_id: str) -> None:
        """Hard delete, cascading to orders and risk events."""
        async with self._db.session() as session:
            account = await AccountRepository(session).get_by_client_id_or_raise(client_id)

        async with self._locks.hold(account.id):
            async with self._db.transaction_scope() as session:
                await AccountRepository(session).delete_account(account.id)
            self._locks.discard(account.id)

        logger.info(f"Deleted account {client_id}")

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _parse_balance(self, value: Any) -> Decimal:
        balance = _decimal(value, "balance")
        if balance is None:
            raise ValidationError("balance is required", field="balance")
        if balance < 0:
            raise ValidationError("balance must not be negative", field="balance")
        return balance

    async def _write_balance(self, account_id, balance: Decimal) -> Account:
        async with self._db.transaction_scope() as session:
            account = await _reload(session, account_id)
            account.current_balance = balance
            await session.flush()
        return account
