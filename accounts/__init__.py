"""
Accounts Package.

Account registration and administration.

Modules:
- service: AccountService, account summaries, limit validation
"""

from .service import (
    AccountService,
    account_to_summary,
    validate_risk_limits,
    CLIENT_ID_DIGITS,
)


__all__ = [
    "AccountService",
    "account_to_summary",
    "validate_risk_limits",
    "CLIENT_ID_DIGITS",
]
