"""
Account Repository.

============================================================
PURPOSE
============================================================
Data access for accounts.

QUERIES:
- find by id / client id
- all accounts, all active accounts
- client id existence (registration uniqueness)
- hard delete cascading to orders and risk events

============================================================
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AccountNotFoundError
from storage.models import Account, Order, RiskEvent
from storage.repositories.base import BaseRepository


class AccountRepository(BaseRepository[Account]):
    """Repository for Account rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Account, "AccountRepository")

    async def get_by_client_id(self, client_id: str) -> Optional[Account]:
        stmt = select(Account).where(Account.client_id == client_id)
        return await self._execute_scalar(stmt)

    async def get_by_client_id_or_raise(self, client_id: str) -> Account:
        """
        Raises:
            AccountNotFoundError: If no account has this client id
        """
        account = await self.get_by_client_id(client_id)
        if account is None:
            raise AccountNotFoundError(client_id)
        return account

    async def client_id_exists(self, client_id: str) -> bool:
        stmt = select(exists().where(Account.client_id == client_id))
        result = await self._execute(stmt)
        return bool(result.scalar())

    async def list_all(self) -> List[Account]:
        stmt = select(Account).order_by(Account.created_at)
        return await self._execute_query(stmt)

    async def list_active(self) -> List[Account]:
        stmt = (
            select(Account)
            .where(Account.is_active.is_(True))
            .order_by(Account.created_at)
        )
        return await self._execute_query(stmt)

    async def delete_account(self, account_id: UUID) -> None:
        """Delete an account together with its orders and risk events."""
        await self._execute(delete(Order).where(Order.account_id == account_id))
        await self._execute(delete(RiskEvent).where(RiskEvent.account_id == account_id))
        await self._execute(delete(Account).where(Account.id == account_id))
        self._logger.info(f"Deleted account {account_id} with its orders and risk events")
