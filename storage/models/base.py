"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base and common mixins used by all
ORM models of the risk service.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: Common timestamp columns
- MONEY: Fixed-point column type for balances and amounts

============================================================
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


MONEY = Numeric(20, 8, asdecimal=True)


def utcnow() -> datetime:
    """Timezone-aware UTC now, used as column default."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All models in the risk service inherit from this base.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Timestamps are generated client-side so that freshly flushed
    rows never need a refresh round trip under AsyncSession.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Record creation timestamp (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last update timestamp (UTC)"
    )
