"""
Exchange Adapter - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Secure logging for exchange adapter operations with:
- Credential masking (API keys, private keys, signatures)
- Request/response sanitization
- Structured request log entries

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys or private keys
2. Mask sensitive headers (API-Key, API-Sign, Authent, ...)
3. Hash request bodies instead of logging them
4. Log form fields only after masking sensitive names

============================================================
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA
# ============================================================

# Header names that should be masked
SENSITIVE_HEADERS = {
    "api-key",
    "api-sign",
    "apikey",
    "authent",
    "authorization",
    "nonce",
}

# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "api_key",
    "apikey",
    "private_key",
    "privatekey",
    "secret",
    "signature",
}


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_api_key(value: Optional[str]) -> str:
    """
    Mask a credential for logs and API responses.

    First 4 chars + "***" + last 4 chars, or "***" when the
    value is shorter than 8 chars.

    Args:
        value: Credential to mask

    Returns:
        Masked value
    """
    if not value or len(value) < 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """
    Mask sensitive headers.

    Args:
        headers: Request/response headers

    Returns:
        Headers with sensitive values masked
    """
    if not headers:
        return {}

    return {
        key: mask_api_key(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive form/query parameters."""
    if not params:
        return {}

    return {
        key: mask_api_key(str(value)) if key.lower() in SENSITIVE_PARAMS else value
        for key, value in params.items()
    }


def hash_body(body: str) -> Optional[str]:
    """Short SHA-256 fingerprint of a request body."""
    if not body:
        return None
    return hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]


# ============================================================
# LOG ENTRY STRUCTURES
# ============================================================

@dataclass
class RequestLogEntry:
    """Structured log entry for one signed exchange request."""

    exchange_id: str
    operation: str
    method: str
    endpoint: str
    api_key: str
    """Already masked."""

    headers: Optional[Dict[str, str]] = None
    params: Optional[Dict[str, Any]] = None
    """Form fields, already masked."""

    body_hash: Optional[str] = None
    status_code: Optional[int] = None
    latency_ms: Optional[float] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def build_request_log(
    exchange_id: str,
    operation: str,
    method: str,
    endpoint: str,
    api_key: str,
    headers: Optional[Dict[str, str]] = None,
    body: str = "",
    form: Optional[Dict[str, str]] = None,
) -> RequestLogEntry:
    """Build a masked request log entry."""
    return RequestLogEntry(
        exchange_id=exchange_id,
        operation=operation,
        method=method,
        endpoint=endpoint,
        api_key=mask_api_key(api_key),
        headers=mask_headers(headers or {}),
        params=mask_params(form or {}) or None,
        body_hash=hash_body(body),
    )
