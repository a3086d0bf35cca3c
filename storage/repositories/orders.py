"""
Order Repository.

============================================================
PURPOSE
============================================================
Data access for orders.

QUERIES:
- open orders for an account
- orders for an (account, strategy, symbol, status) triple
- account order history, newest first
- per-status counts

============================================================
"""

from typing import Dict, List
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models import Order
from storage.repositories.base import BaseRepository


OPEN_STATUS = "OPEN"


class OrderRepository(BaseRepository[Order]):
    """Repository for Order rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Order, "OrderRepository")

    async def list_for_account(self, account_id: UUID) -> List[Order]:
        stmt = (
            select(Order)
            .where(Order.account_id == account_id)
            .order_by(Order.created_at.desc())
        )
        return await self._execute_query(stmt)

    async def list_open_for_account(self, account_id: UUID) -> List[Order]:
        stmt = (
            select(Order)
            .where(Order.account_id == account_id, Order.status == OPEN_STATUS)
            .order_by(Order.created_at)
        )
        return await self._execute_query(stmt)

    async def list_for_triple(
        self,
        account_id: UUID,
        strategy: str,
        symbol: str,
        status: str = OPEN_STATUS,
    ) -> List[Order]:
        stmt = (
            select(Order)
            .where(
                Order.account_id == account_id,
                Order.strategy == strategy,
                Order.symbol == symbol,
                Order.status == status,
            )
            .order_by(Order.created_at)
        )
        return await self._execute_query(stmt)

    async def count_by_status(self, account_id: UUID) -> Dict[str, int]:
        stmt = (
            select(Order.status, func.count())
            .where(Order.account_id == account_id)
            .group_by(Order.status)
        )
        result = await self._execute(stmt)
        return {status: count for status, count in result.all()}
