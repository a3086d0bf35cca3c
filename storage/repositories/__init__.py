"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access MUST go through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. One repository per table
2. Session Injection: AsyncSessions are injected, never created
3. Explicit Methods: clear query names
4. Risk events are append-only
5. All DB errors wrapped in DatabaseError

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.accounts import AccountRepository
from storage.repositories.orders import OrderRepository
from storage.repositories.risk_events import RiskEventRepository


__all__ = [
    "BaseRepository",
    "AccountRepository",
    "OrderRepository",
    "RiskEventRepository",
]
