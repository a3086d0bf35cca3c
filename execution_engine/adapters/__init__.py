"""
Exchange Adapters Package.

============================================================
PURPOSE
============================================================
Exchange integration for the risk service.

COMPONENTS:
- base: ExchangeAdapter interface and wire types
- kraken_futures: Signed Kraken Futures REST client
- logging_utils: Credential masking

============================================================
"""

from .base import (
    ExchangeAdapter,
    ExchangeCredentials,
    SubmitOrderRequest,
    SubmitOrderResponse,
    SubAccount,
    AccountsResponse,
    OpenOrder,
    OpenOrdersResponse,
    CancelOrderResponse,
)
from .kraken_futures import (
    KrakenFuturesClient,
    sign_request,
    encode_post_data,
    CONTENT_TYPE,
)
from .logging_utils import (
    mask_api_key,
    mask_headers,
    mask_params,
    RequestLogEntry,
    build_request_log,
)


__all__ = [
    # Base
    "ExchangeAdapter",
    "ExchangeCredentials",
    "SubmitOrderRequest",
    "SubmitOrderResponse",
    "SubAccount",
    "AccountsResponse",
    "OpenOrder",
    "OpenOrdersResponse",
    "CancelOrderResponse",
    # Kraken
    "KrakenFuturesClient",
    "sign_request",
    "encode_post_data",
    "CONTENT_TYPE",
    # Logging
    "mask_api_key",
    "mask_headers",
    "mask_params",
    "RequestLogEntry",
    "build_request_log",
]
