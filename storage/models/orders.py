"""
Order Domain ORM Models.

============================================================
PURPOSE
============================================================
One row per accepted or attempted trading signal.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: state transitions only
  (PENDING -> OPEN -> CLOSED | CANCELLED, PENDING -> FAILED)
- Source: Order Lifecycle Manager
- Ownership: belongs to exactly one account (cascade delete)

============================================================
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, MONEY, TimestampMixin


class Order(Base, TimestampMixin):
    """Order records."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Internal order identifier"
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning account"
    )

    # Order Details
    symbol: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Exchange symbol"
    )

    strategy: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Strategy label scoping pyramid/inverse rules"
    )

    side: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="Side: BUY, SELL"
    )

    quantity: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        comment="Order size"
    )

    price: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Limit price, unset for market orders"
    )

    # Carried from the signal
    stop_loss_percentage: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
    )

    max_risk_per_day_percentage: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="Informational only"
    )

    inverse: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    pyramid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="PENDING, OPEN, CLOSED, CANCELLED, FAILED"
    )

    exchange_order_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Exchange-assigned order ID"
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    executed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Exchange acceptance time (UTC)"
    )

    __table_args__ = (
        Index("idx_order_account", "account_id"),
        Index("idx_order_account_status", "account_id", "status"),
        Index("idx_order_triple", "account_id", "strategy", "symbol", "status"),
        Index("idx_order_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.side} {self.quantity} {self.symbol} {self.status}>"
