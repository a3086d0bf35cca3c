"""
Risk Event ORM Models.

============================================================
PURPOSE
============================================================
Audit trail of risk-limit breaches and the actions taken.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: APPEND-ONLY (never updated by the engine)
- Source: Risk Evaluation Engine
- Consumers: daily reset sweep, administration, audit

============================================================
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, MONEY, utcnow


class RiskEvent(Base):
    """Risk event records."""

    __tablename__ = "risk_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning account"
    )

    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="DAILY_RISK_EXCEEDED"
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Snapshot at breach time
    current_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    initial_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    risk_threshold: Mapped[Optional[Decimal]] = mapped_column(
        MONEY,
        nullable=True,
        comment="The breached limit (absolute amount or percent)"
    )

    loss_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    loss_percentage: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    orders_closed: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="JSON list of force-closed order ids"
    )

    trading_disabled_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_risk_event_account", "account_id"),
        Index("idx_risk_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<RiskEvent {self.event_type} account={self.account_id}>"
