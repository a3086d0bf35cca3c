"""
Account Domain ORM Models.

============================================================
PURPOSE
============================================================
A registered client with exchange credentials and configured
daily risk limits.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: MUTABLE (balance, trading flag, last risk check)
- Source: Account registration, risk engine, administration
- Ownership: exclusively owns its orders and risk events

INVARIANT:
- initial_balance, once set, is only changed by an explicit
  reset or at registration, never by the monitor

============================================================
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, MONEY, TimestampMixin


class Account(Base, TimestampMixin):
    """Account records."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Internal account identifier"
    )

    client_id: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Public 10-digit client identifier"
    )

    # Exchange credentials, never logged in full
    api_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Exchange public API key"
    )

    private_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Exchange base64 private key"
    )

    # Risk limits
    daily_risk_absolute: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Maximum daily loss in account currency"
    )

    daily_risk_percentage: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Maximum daily loss in percent (0-100)"
    )

    # Balances
    initial_balance: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Drawdown reference point"
    )

    current_balance: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Last observed or overridden balance"
    )

    # Flags
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Included in monitor sweeps"
    )

    trading_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Signals accepted"
    )

    trading_disabled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When trading was last switched off (UTC), unset while enabled"
    )

    last_risk_check: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last risk evaluation (UTC)"
    )

    __table_args__ = (
        Index("idx_account_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Account {self.client_id} trading_enabled={self.trading_enabled}>"
