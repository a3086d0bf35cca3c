"""
Execution Engine - Kraken Futures Adapter.

============================================================
PURPOSE
============================================================
Production adapter for the Kraken Futures derivatives REST API.

SIGNING PROTOCOL:
    nonce     = current time in microseconds (monotonic per client)
    message   = SHA-256(nonce + postData)
    input     = urlPath bytes + message digest bytes
    signature = base64(HMAC-SHA512(base64decode(privateKey), input))

    urlPath = /derivatives/api/{apiVersion}/{endpoint}
    Headers: API-Key, API-Sign, Nonce
    Content-Type: application/x-www-form-urlencoded; charset=utf-8

SAFETY FEATURES:
- Request timeouts on every call
- No automatic retries
- Credentials masked in every log line
- Every failure wrapped as "Failed to <operation>"

============================================================
"""

import asyncio
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ExchangeOperationError
from ..config import ExchangeConfig
from .base import (
    AccountsResponse,
    CancelOrderResponse,
    ExchangeAdapter,
    ExchangeCredentials,
    OpenOrdersResponse,
    SubmitOrderRequest,
    SubmitOrderResponse,
)
from .logging_utils import build_request_log, mask_api_key


logger = logging.getLogger(__name__)


CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"


# ============================================================
# SIGNING
# ============================================================

def encode_post_data(form: Optional[Dict[str, str]]) -> str:
    """URL-form-encode fields in insertion order."""
    if not form:
        return ""
    return urlencode(form)


def sign_request(url_path: str, post_data: str, nonce: str, private_key: str) -> str:
    """
    Compute the API-Sign header value.

    Args:
        url_path: /derivatives/api/{version}/{endpoint}
        post_data: URL-form-encoded body ("" for GET)
        nonce: Microsecond timestamp as decimal string
        private_key: Base64 encoded secret

    Returns:
        Base64 encoded HMAC-SHA512 signature

    Raises:
        ValueError: If the private key is not valid base64
    """
    digest = hashlib.sha256((nonce + post_data).encode("utf-8")).digest()
    try:
        secret = base64.b64decode(private_key, validate=True)
    except binascii.Error as e:
        raise ValueError("private key is not valid base64") from e

    mac = hmac.new(secret, url_path.encode("utf-8") + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("ascii")


# ============================================================
# KRAKEN FUTURES ADAPTER
# ============================================================

class KrakenFuturesClient(ExchangeAdapter):
    """
    Kraken Futures exchange adapter.

    Stateless with respect to accounts: credentials are passed
    to every call, one instance and one HTTP session serve all
    accounts.
    """

    def __init__(
        self,
        config: Optional[ExchangeConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize Kraken Futures adapter.

        Args:
            config: Exchange configuration
            clock: Source of nonces
            session: Externally owned HTTP session (tests)
        """
        self._config = config or ExchangeConfig()
        self._clock = clock or SystemClock()
        self._session = session
        self._owns_session = session is None
        self._last_nonce = 0

    @property
    def exchange_id(self) -> str:
        return "kraken_futures"

    @property
    def config(self) -> ExchangeConfig:
        return self._config

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is not None and not self._session.closed:
            return

        timeout = aiohttp.ClientTimeout(
            connect=self._config.timeouts.connection_timeout_seconds,
            total=self._config.timeouts.read_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        self._owns_session = True
        logger.info(f"Kraken Futures client ready ({self._config.base_url})")

    async def disconnect(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            logger.info("Kraken Futures client closed")
        self._session = None

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def get_account_info(self, credentials: ExchangeCredentials) -> AccountsResponse:
        data = await self._request("get account info", "GET", "accounts", credentials)
        logger.info(f"Account info retrieved successfully for API key: {credentials.masked_key}")
        return AccountsResponse.from_json(data)

    async def get_balances(self, credentials: ExchangeCredentials) -> AccountsResponse:
        data = await self._request("get balances", "GET", "accounts", credentials)
        response = AccountsResponse.from_json(data)
        logger.info(
            f"Balances retrieved for API key {credentials.masked_key}: "
            f"{len(response.accounts)} sub-accounts, total {response.total_balance}"
        )
        return response

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    async def get_open_orders(self, credentials: ExchangeCredentials) -> OpenOrdersResponse:
        data = await self._request("get open orders", "GET", "openorders", credentials)
        response = OpenOrdersResponse.from_json(data)
        logger.info(f"Retrieved {len(response.open_orders)} open orders")
        return response

    async def place_order(
        self,
        credentials: ExchangeCredentials,
        request: SubmitOrderRequest,
    ) -> SubmitOrderResponse:
        data = await self._request(
            "place order", "POST", "sendorder", credentials, form=request.to_form()
        )
        response = SubmitOrderResponse.from_json(data)
        if response.is_success:
            logger.info(
                f"Order placed: {request.side} {request.size} {request.symbol} "
                f"-> {response.order_id} ({response.status})"
            )
        else:
            logger.warning(f"Order rejected by exchange: {request.symbol} error={response.error}")
        return response

    async def cancel_order(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
    ) -> CancelOrderResponse:
        data = await self._request(
            "cancel order", "POST", "cancelorder", credentials, form={"order_id": order_id}
        )
        logger.info(f"Order cancel requested: {order_id}")
        return CancelOrderResponse.from_json(data)

    async def cancel_all_orders(
        self,
        credentials: ExchangeCredentials,
        symbol: Optional[str] = None,
    ) -> CancelOrderResponse:
        form = {"symbol": symbol} if symbol else {}
        data = await self._request(
            "cancel all orders", "POST", "cancelallorders", credentials, form=form
        )
        logger.info(f"All orders cancel requested{f' for {symbol}' if symbol else ''}")
        return CancelOrderResponse.from_json(data)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def url_path(self, endpoint: str) -> str:
        return f"/derivatives/api/{self._config.api_version}/{endpoint}"

    def _next_nonce(self) -> str:
        nonce = self._clock.epoch_micros()
        if nonce <= self._last_nonce:
            nonce = self._last_nonce + 1
        self._last_nonce = nonce
        return str(nonce)

    def build_headers(
        self,
        credentials: ExchangeCredentials,
        endpoint: str,
        post_data: str,
    ) -> Dict[str, str]:
        """Authenticated headers for one request."""
        nonce = self._next_nonce()
        signature = sign_request(
            self.url_path(endpoint), post_data, nonce, credentials.private_key
        )
        return {
            "API-Key": credentials.api_key,
            "API-Sign": signature,
            "Nonce": nonce,
            "Content-Type": CONTENT_TYPE,
        }

    async def _request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        credentials: ExchangeCredentials,
        form: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make a signed API request and decode the JSON body."""
        if self._session is None:
            await self.connect()

        url = f"{self._config.base_url}{self.url_path(endpoint)}"
        post_data = encode_post_data(form) if method == "POST" else ""

        try:
            headers = self.build_headers(credentials, endpoint, post_data)
        except ValueError as e:
            logger.error(f"Error signing {operation} for API key {mask_api_key(credentials.api_key)}: {e}")
            raise ExchangeOperationError(operation, str(e), cause=e) from e

        entry = build_request_log(
            self.exchange_id, operation, method, endpoint,
            credentials.api_key, headers, post_data,
            form=form if method == "POST" else None,
        )
        started = time.monotonic()

        try:
            async with self._session.request(
                method,
                url,
                data=post_data if method == "POST" else None,
                headers=headers,
            ) as response:
                body = await response.text()
                entry.status_code = response.status
                entry.latency_ms = round((time.monotonic() - started) * 1000, 1)

                if not 200 <= response.status < 300:
                    error_text = _extract_error(body) or f"HTTP {response.status}"
                    entry.error_message = error_text
                    logger.error(f"Error calling {operation}: {entry.to_json()}")
                    raise ExchangeOperationError(operation, error_text, status_code=response.status)

                logger.debug(f"Exchange request: {entry.to_json()}")

        except aiohttp.ClientError as e:
            logger.error(f"Error calling {operation}: network error {e}")
            raise ExchangeOperationError(operation, f"Network error: {e}", cause=e) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Error calling {operation}: request timeout")
            raise ExchangeOperationError(operation, "Request timeout", cause=e) from e

        try:
            data = json.loads(body) if body else {}
        except ValueError as e:
            logger.error(f"Error calling {operation}: undecodable response body")
            raise ExchangeOperationError(operation, "Invalid JSON response", cause=e) from e

        if not isinstance(data, dict):
            raise ExchangeOperationError(operation, "Unexpected response shape")
        return data


def _extract_error(body: str) -> Optional[str]:
    """Exchange-reported error text of a failed response, if any."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return body[:200]
    if isinstance(data, dict):
        return data.get("error") or data.get("message")
    return None
