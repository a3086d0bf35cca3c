"""
Risk Event Repository.

============================================================
PURPOSE
============================================================
Append-only access to the risk event audit trail.

There is deliberately no update or delete method here; events
only disappear through account deletion.

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models import RiskEvent
from storage.repositories.base import BaseRepository


class RiskEventRepository(BaseRepository[RiskEvent]):
    """Repository for RiskEvent rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, RiskEvent, "RiskEventRepository")

    async def list_all(self) -> List[RiskEvent]:
        stmt = select(RiskEvent).order_by(RiskEvent.created_at.desc())
        return await self._execute_query(stmt)

    async def list_for_account(self, account_id: UUID) -> List[RiskEvent]:
        stmt = (
            select(RiskEvent)
            .where(RiskEvent.account_id == account_id)
            .order_by(RiskEvent.created_at.desc())
        )
        return await self._execute_query(stmt)

    async def latest_disabling_event(
        self,
        account_id: UUID,
        as_of: datetime,
    ) -> Optional[RiskEvent]:
        """
        Most recent event that disabled trading and existed at as_of.

        Args:
            account_id: Owning account
            as_of: Query time (UTC)
        """
        stmt = (
            select(RiskEvent)
            .where(
                RiskEvent.account_id == account_id,
                RiskEvent.trading_disabled_until.is_not(None),
                RiskEvent.created_at <= as_of,
            )
            .order_by(RiskEvent.created_at.desc())
            .limit(1)
        )
        return await self._execute_scalar(stmt)
