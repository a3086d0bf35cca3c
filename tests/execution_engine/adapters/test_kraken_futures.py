"""
Kraken Futures Adapter Tests.

============================================================
PURPOSE
============================================================
Tests for the signed Kraken Futures REST client.

TEST CATEGORIES:
- Signing: HMAC-SHA512 over SHA-256(nonce + postData)
- Headers and nonces
- Request handling: success, HTTP errors, transport errors
- Response parsing
- Logging: credential masking

============================================================
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from decimal import Decimal
from urllib.parse import parse_qs

import aiohttp
import pytest

from core.clock import MockClock
from core.exceptions import ExchangeOperationError
from execution_engine.adapters import (
    AccountsResponse,
    CONTENT_TYPE,
    ExchangeCredentials,
    KrakenFuturesClient,
    SubmitOrderRequest,
    build_request_log,
    encode_post_data,
    mask_api_key,
    mask_headers,
    mask_params,
    sign_request,
)
from execution_engine.config import ExchangeConfig

from conftest import START_TIME, TEST_API_KEY, TEST_PRIVATE_KEY


CREDENTIALS = ExchangeCredentials(api_key=TEST_API_KEY, private_key=TEST_PRIVATE_KEY)


def expected_signature(url_path: str, post_data: str, nonce: str, private_key: str) -> str:
    digest = hashlib.sha256((nonce + post_data).encode()).digest()
    mac = hmac.new(base64.b64decode(private_key), url_path.encode() + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode()


# ============================================================
# FAKE HTTP SESSION
# ============================================================

class FakeResponse:
    def __init__(self, status: int, body: str):
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Records requests and replays canned responses."""

    def __init__(self, status: int = 200, body: str = '{"result": "success"}', error: Exception = None):
        self.status = status
        self.body = body
        self.error = error
        self.closed = False
        self.calls = []

    def request(self, method, url, data=None, headers=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status, self.body)

    async def close(self):
        self.closed = True


def make_client(session: FakeSession) -> KrakenFuturesClient:
    return KrakenFuturesClient(ExchangeConfig(), MockClock(START_TIME), session=session)


# ============================================================
# SIGNING TESTS
# ============================================================

class TestSigning:
    """Tests for request signing."""

    def test_signature_matches_protocol(self):
        """Signature is base64(HMAC-SHA512(key, path + sha256(nonce + body)))."""
        path = "/derivatives/api/v3/sendorder"
        body = "orderType=mkt&symbol=PI_XBTUSD&side=buy&size=1000"
        nonce = "1736942400000000"

        assert sign_request(path, body, nonce, TEST_PRIVATE_KEY) == expected_signature(
            path, body, nonce, TEST_PRIVATE_KEY
        )

    def test_signature_depends_on_nonce(self):
        path = "/derivatives/api/v3/accounts"

        first = sign_request(path, "", "1", TEST_PRIVATE_KEY)
        second = sign_request(path, "", "2", TEST_PRIVATE_KEY)

        assert first != second

    def test_invalid_private_key_raises(self):
        with pytest.raises(ValueError):
            sign_request("/derivatives/api/v3/accounts", "", "1", "not base64!!")

    def test_encode_post_data_keeps_order(self):
        request = SubmitOrderRequest(symbol="PI_XBTUSD", side="buy", size=Decimal("1000"))

        assert encode_post_data(request.to_form()) == "orderType=mkt&symbol=PI_XBTUSD&side=buy&size=1000"

    def test_encode_post_data_empty(self):
        assert encode_post_data(None) == ""
        assert encode_post_data({}) == ""

    def test_stop_price_included_when_set(self):
        request = SubmitOrderRequest(
            symbol="PI_XBTUSD", side="sell", size=Decimal("5"), stop_price=Decimal("2.5")
        )

        assert request.to_form()["stopPrice"] == "2.5"


class TestHeaders:
    """Tests for authenticated headers."""

    def test_build_headers(self):
        client = make_client(FakeSession())

        headers = client.build_headers(CREDENTIALS, "accounts", "")

        assert headers["API-Key"] == TEST_API_KEY
        assert headers["Content-Type"] == CONTENT_TYPE
        assert headers["Nonce"] == str(int(START_TIME.timestamp() * 1_000_000))
        assert headers["API-Sign"] == expected_signature(
            "/derivatives/api/v3/accounts", "", headers["Nonce"], TEST_PRIVATE_KEY
        )

    def test_nonce_strictly_increasing_on_frozen_clock(self):
        client = make_client(FakeSession())

        first = int(client.build_headers(CREDENTIALS, "accounts", "")["Nonce"])
        second = int(client.build_headers(CREDENTIALS, "accounts", "")["Nonce"])

        assert second == first + 1

    def test_url_path_uses_api_version(self):
        client = KrakenFuturesClient(ExchangeConfig(api_version="v4"), session=FakeSession())

        assert client.url_path("openorders") == "/derivatives/api/v4/openorders"


# ============================================================
# REQUEST TESTS
# ============================================================

class TestRequests:
    """Tests for request handling."""

    @pytest.mark.asyncio
    async def test_place_order_posts_signed_form(self):
        session = FakeSession(body=json.dumps({
            "result": "success",
            "sendStatus": {"order_id": "abc-123", "status": "placed"},
        }))
        client = make_client(session)

        response = await client.place_order(
            CREDENTIALS,
            SubmitOrderRequest(symbol="PI_XBTUSD", side="buy", size=Decimal("1000")),
        )

        assert response.is_success
        assert response.order_id == "abc-123"

        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://futures.kraken.com/derivatives/api/v3/sendorder"
        form = parse_qs(call["data"])
        assert form["orderType"] == ["mkt"]
        assert form["side"] == ["buy"]
        assert call["headers"]["API-Sign"] == expected_signature(
            "/derivatives/api/v3/sendorder", call["data"], call["headers"]["Nonce"], TEST_PRIVATE_KEY
        )

    @pytest.mark.asyncio
    async def test_get_request_has_no_body(self):
        session = FakeSession(body=json.dumps({"result": "success", "openOrders": []}))
        client = make_client(session)

        response = await client.get_open_orders(CREDENTIALS)

        assert response.open_orders == []
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["data"] is None

    @pytest.mark.asyncio
    async def test_cancel_order_sends_order_id(self):
        session = FakeSession(body=json.dumps({
            "result": "success",
            "cancelStatus": {"status": "cancelled"},
        }))
        client = make_client(session)

        response = await client.cancel_order(CREDENTIALS, "abc-123")

        assert response.is_success
        assert parse_qs(session.calls[0]["data"]) == {"order_id": ["abc-123"]}

    @pytest.mark.asyncio
    async def test_cancel_all_orders_with_symbol(self):
        session = FakeSession()
        client = make_client(session)

        await client.cancel_all_orders(CREDENTIALS, symbol="PI_ETHUSD")

        assert session.calls[0]["url"].endswith("/cancelallorders")
        assert parse_qs(session.calls[0]["data"]) == {"symbol": ["PI_ETHUSD"]}

    @pytest.mark.asyncio
    async def test_http_error_wrapped_with_exchange_text(self):
        session = FakeSession(status=400, body=json.dumps({"result": "error", "error": "apiLimitExceeded"}))
        client = make_client(session)

        with pytest.raises(ExchangeOperationError) as exc_info:
            await client.get_balances(CREDENTIALS)

        assert str(exc_info.value) == "Failed to get balances: apiLimitExceeded"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        client = make_client(FakeSession(error=aiohttp.ClientConnectionError("refused")))

        with pytest.raises(ExchangeOperationError, match="Failed to place order: Network error"):
            await client.place_order(
                CREDENTIALS,
                SubmitOrderRequest(symbol="PI_XBTUSD", side="buy", size=Decimal("1")),
            )

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self):
        client = make_client(FakeSession(error=asyncio.TimeoutError()))

        with pytest.raises(ExchangeOperationError, match="Request timeout"):
            await client.get_account_info(CREDENTIALS)

    @pytest.mark.asyncio
    async def test_invalid_json_wrapped(self):
        client = make_client(FakeSession(body="<html>maintenance</html>"))

        with pytest.raises(ExchangeOperationError, match="Invalid JSON response"):
            await client.get_account_info(CREDENTIALS)

    @pytest.mark.asyncio
    async def test_bad_private_key_wrapped(self):
        client = make_client(FakeSession())
        bad = ExchangeCredentials(api_key=TEST_API_KEY, private_key="%%%")

        with pytest.raises(ExchangeOperationError, match="Failed to get account info"):
            await client.get_account_info(bad)

    @pytest.mark.asyncio
    async def test_disconnect_leaves_external_session_open(self):
        session = FakeSession()
        client = make_client(session)

        await client.disconnect()

        assert session.closed is False


# ============================================================
# RESPONSE PARSING TESTS
# ============================================================

class TestResponses:
    """Tests for response parsing."""

    def test_total_balance_sums_sub_accounts(self):
        response = AccountsResponse.from_json({
            "result": "success",
            "accounts": [
                {"name": "cash", "balance": "1000.5"},
                {"name": "flex", "balance": 2000},
                {"name": "empty"},
            ],
        })

        assert response.total_balance == Decimal("3000.5")
        assert response.first_balance == Decimal("1000.5")

    def test_accounts_keyed_by_name(self):
        response = AccountsResponse.from_json({
            "result": "success",
            "accounts": {"fi_xbtusd": {"balance": "10"}, "flex": {"balance": "5"}},
        })

        assert response.total_balance == Decimal("15")
        assert {a.name for a in response.accounts} == {"fi_xbtusd", "flex"}

    def test_no_accounts(self):
        response = AccountsResponse.from_json({"result": "success"})

        assert response.total_balance == Decimal("0")
        assert response.first_balance is None


# ============================================================
# LOGGING TESTS
# ============================================================

class TestMasking:
    """Tests for credential masking."""

    def test_mask_api_key(self):
        assert mask_api_key("abcdefghijkl") == "abcd***ijkl"

    def test_mask_short_key(self):
        assert mask_api_key("short") == "***"
        assert mask_api_key(None) == "***"

    def test_mask_headers(self):
        masked = mask_headers({"API-Key": TEST_API_KEY, "Content-Type": CONTENT_TYPE})

        assert masked["API-Key"] == mask_api_key(TEST_API_KEY)
        assert masked["Content-Type"] == CONTENT_TYPE

    def test_mask_params(self):
        masked = mask_params({"private_key": TEST_PRIVATE_KEY, "symbol": "PI_XBTUSD"})

        assert TEST_PRIVATE_KEY not in masked.values()
        assert masked["symbol"] == "PI_XBTUSD"

    def test_credentials_repr_hides_secrets(self):
        text = repr(CREDENTIALS)

        assert TEST_API_KEY not in text
        assert TEST_PRIVATE_KEY not in text

    def test_request_log_never_contains_secrets(self):
        entry = build_request_log(
            "kraken_futures", "get balances", "GET", "accounts",
            TEST_API_KEY, {"API-Key": TEST_API_KEY, "API-Sign": "signature-value"}, "",
        )

        text = entry.to_json()
        assert TEST_API_KEY not in text
        assert "signature-value" not in text

    def test_request_log_masks_form_fields(self):
        entry = build_request_log(
            "kraken_futures", "place order", "POST", "sendorder",
            TEST_API_KEY, {}, "symbol=PI_XBTUSD&secret=abcdefghijkl",
            form={"symbol": "PI_XBTUSD", "secret": "abcdefghijkl"},
        )

        assert entry.params == {"symbol": "PI_XBTUSD", "secret": "abcd***ijkl"}
        assert "abcdefghijkl" not in entry.to_json()

    def test_request_log_without_form_has_no_params(self):
        entry = build_request_log("kraken_futures", "get balances", "GET", "accounts", TEST_API_KEY)

        assert "params" not in entry.to_dict()

    @pytest.mark.asyncio
    async def test_logged_request_carries_masked_form(self, caplog):
        caplog.set_level(logging.DEBUG, logger="execution_engine.adapters.kraken_futures")
        client = make_client(FakeSession(body=json.dumps({
            "result": "success",
            "cancelStatus": {"status": "cancelled"},
        })))

        await client.cancel_order(CREDENTIALS, "abc-123")

        logged = [r.getMessage() for r in caplog.records if "Exchange request" in r.getMessage()]
        assert len(logged) == 1
        assert '"params": {"order_id": "abc-123"}' in logged[0]
        assert TEST_API_KEY not in logged[0]
