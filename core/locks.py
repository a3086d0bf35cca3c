"""
Core Module - Per-Account Locks.

============================================================
RESPONSIBILITY
============================================================
Serializes "load open orders -> decide -> mutate" sequences
for a single account.

- Signal processing, force-close, balance overrides and risk
  checks for the SAME account never interleave
- Different accounts proceed fully in parallel
- Locks are created lazily and keyed by account id

asyncio.Lock is not re-entrant: code already holding an
account's lock must call the *_locked variants of other
services instead of re-acquiring.

============================================================
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


logger = logging.getLogger(__name__)


class AccountLockRegistry:
    """Registry of asyncio locks keyed by account id."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}
        self._discarded: set = set()

    def get(self, account_id: Hashable) -> asyncio.Lock:
        """Get (or create) the lock for an account."""
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def is_locked(self, account_id: Hashable) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    def users(self, account_id: Hashable) -> int:
        """Coroutines holding or waiting for the account's lock."""
        return self._users.get(account_id, 0)

    def discard(self, account_id: Hashable) -> None:
        """
        Forget the lock of a deleted account.

        The lock is dropped once its last holder or waiter leaves,
        so queued coroutines and new callers share one lock object.
        """
        if self.users(account_id) == 0:
            self._locks.pop(account_id, None)
        else:
            self._discarded.add(account_id)

    @asynccontextmanager
    async def hold(self, account_id: Hashable) -> AsyncIterator[None]:
        """Hold the account's lock for the duration of the block."""
        lock = self.get(account_id)
        if lock.locked():
            logger.debug(f"Waiting for account lock {account_id}")

        self._users[account_id] = self.users(account_id) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[account_id] - 1
            if remaining:
                self._users[account_id] = remaining
            else:
                del self._users[account_id]
                if account_id in self._discarded:
                    self._discarded.discard(account_id)
                    self._locks.pop(account_id, None)

    def __len__(self) -> int:
        return len(self._locks)
