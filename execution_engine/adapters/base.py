"""
Execution Engine - Exchange Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for the derivatives exchange.

DESIGN PRINCIPLES:
- Credentials are passed per call; one adapter instance
  serves every account
- No knowledge of accounts, orders or risk
- Fully testable with AsyncMock adapters
- No automatic retries: order operations are not idempotent

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from .logging_utils import mask_api_key


logger = logging.getLogger(__name__)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring non-numeric exchange value: {value!r}")
        return None


# ============================================================
# CREDENTIALS
# ============================================================

@dataclass(frozen=True)
class ExchangeCredentials:
    """Account key pair. repr never shows the raw values."""

    api_key: str
    """Public key, sent as API-Key header."""

    private_key: str
    """Base64 encoded secret used for HMAC-SHA512."""

    def __repr__(self) -> str:
        return f"ExchangeCredentials(api_key={mask_api_key(self.api_key)})"

    @property
    def masked_key(self) -> str:
        return mask_api_key(self.api_key)


# ============================================================
# ADAPTER REQUEST/RESPONSE TYPES
# ============================================================

@dataclass
class SubmitOrderRequest:
    """Request to submit an order."""

    symbol: str
    """Exchange symbol."""

    side: str
    """Lower-cased signal action (buy/sell/close)."""

    size: Decimal
    """Order size."""

    order_type: str = "mkt"
    """Exchange order type."""

    stop_price: Optional[Decimal] = None
    """Stop/trigger price."""

    def to_form(self) -> Dict[str, str]:
        """Form fields in wire order."""
        form = {
            "orderType": self.order_type,
            "symbol": self.symbol,
            "side": self.side,
            "size": str(self.size),
        }
        if self.stop_price is not None:
            form["stopPrice"] = str(self.stop_price)
        return form


@dataclass
class SubAccount:
    """One sub-account entry of the accounts endpoint."""

    name: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: Optional[str] = None


@dataclass
class AccountsResponse:
    """Response of the accounts endpoint (account info and balances)."""

    result: Optional[str] = None
    accounts: List[SubAccount] = field(default_factory=list)
    error: Optional[str] = None
    server_time: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.result == "success"

    @property
    def total_balance(self) -> Decimal:
        """Sum of sub-account balances, absent balances count as zero."""
        total = Decimal("0")
        for account in self.accounts:
            if account.balance is not None:
                total += account.balance
        return total

    @property
    def first_balance(self) -> Optional[Decimal]:
        return self.accounts[0].balance if self.accounts else None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AccountsResponse":
        raw_accounts = data.get("accounts") or []
        if isinstance(raw_accounts, dict):
            # Keyed by account name
            raw_accounts = [
                {"name": name, **(value if isinstance(value, dict) else {})}
                for name, value in raw_accounts.items()
            ]

        accounts = [
            SubAccount(
                name=item.get("name"),
                balance=_decimal_or_none(item.get("balance")),
                currency=item.get("currency"),
            )
            for item in raw_accounts
            if isinstance(item, dict)
        ]
        return cls(
            result=data.get("result"),
            accounts=accounts,
            error=data.get("error"),
            server_time=data.get("serverTime"),
        )


@dataclass
class SubmitOrderResponse:
    """Response of the sendorder endpoint."""

    result: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    server_time: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.result == "success"

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SubmitOrderResponse":
        send_status = data.get("sendStatus") or {}
        return cls(
            result=data.get("result"),
            order_id=send_status.get("order_id"),
            status=send_status.get("status"),
            error=data.get("error"),
            server_time=data.get("serverTime"),
        )


@dataclass
class OpenOrder:
    """One order currently open at the exchange."""

    order_id: Optional[str] = None
    symbol: Optional[str] = None
    side: Optional[str] = None
    size: Optional[Decimal] = None
    order_type: Optional[str] = None
    status: Optional[str] = None


@dataclass
class OpenOrdersResponse:
    """Response of the openorders endpoint (observability only)."""

    result: Optional[str] = None
    open_orders: List[OpenOrder] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "OpenOrdersResponse":
        orders = [
            OpenOrder(
                order_id=item.get("orderId") or item.get("order_id"),
                symbol=item.get("symbol"),
                side=item.get("side"),
                size=_decimal_or_none(item.get("size") or item.get("unfilledSize")),
                order_type=item.get("orderType"),
                status=item.get("status"),
            )
            for item in data.get("openOrders") or []
            if isinstance(item, dict)
        ]
        return cls(result=data.get("result"), open_orders=orders, error=data.get("error"))


@dataclass
class CancelOrderResponse:
    """Response of the cancelorder / cancelallorders endpoints."""

    result: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.result == "success"

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CancelOrderResponse":
        cancel_status = data.get("cancelStatus") or {}
        return cls(
            result=data.get("result"),
            status=cancel_status.get("status"),
            error=data.get("error"),
            message=data.get("message"),
        )


# ============================================================
# EXCHANGE ADAPTER INTERFACE
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract exchange adapter.

    Every operation raises ExchangeOperationError on transport
    errors, timeouts, non-2xx responses or undecodable bodies.
    Business-level failures reported inside a 2xx body are
    returned in the response object (result != "success").
    """

    @property
    @abstractmethod
    def exchange_id(self) -> str:
        """Exchange identifier."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open the HTTP session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the HTTP session."""
        pass

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def get_account_info(self, credentials: ExchangeCredentials) -> AccountsResponse:
        """Account information (used to check credentials)."""
        pass

    @abstractmethod
    async def get_balances(self, credentials: ExchangeCredentials) -> AccountsResponse:
        """Balances of all sub-accounts."""
        pass

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def get_open_orders(self, credentials: ExchangeCredentials) -> OpenOrdersResponse:
        pass

    @abstractmethod
    async def place_order(
        self,
        credentials: ExchangeCredentials,
        request: SubmitOrderRequest,
    ) -> SubmitOrderResponse:
        pass

    @abstractmethod
    async def cancel_order(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
    ) -> CancelOrderResponse:
        pass

    @abstractmethod
    async def cancel_all_orders(
        self,
        credentials: ExchangeCredentials,
        symbol: Optional[str] = None,
    ) -> CancelOrderResponse:
        pass

    # --------------------------------------------------------
    # CONTEXT MANAGER
    # --------------------------------------------------------

    async def __aenter__(self) -> "ExchangeAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
