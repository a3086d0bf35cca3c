"""
Storage Package.

This package manages all data persistence for accounts, orders
and risk events.

Modules:
- database: Async engine, sessions and transaction scopes
- models/: ORM models
- repositories/: Data access layer
"""

from storage.database import Database, DatabaseConfig, DEFAULT_DATABASE_URL


__all__ = [
    "Database",
    "DatabaseConfig",
    "DEFAULT_DATABASE_URL",
]
