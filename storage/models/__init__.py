"""
Storage Models Package.

This package contains all ORM models for the risk service database.

============================================================
MODEL ORGANIZATION
============================================================

accounts.py
- Account

orders.py
- Order

risk_events.py
- RiskEvent

============================================================
DESIGN PRINCIPLES
============================================================

- All models use explicit column definitions
- All timestamps are timezone-aware UTC
- Orders and risk events cascade with their account
- No business logic in models

============================================================
"""

from storage.models.base import Base, TimestampMixin, MONEY, utcnow
from storage.models.accounts import Account
from storage.models.orders import Order
from storage.models.risk_events import RiskEvent


__all__ = [
    "Base",
    "TimestampMixin",
    "MONEY",
    "utcnow",
    "Account",
    "Order",
    "RiskEvent",
]
