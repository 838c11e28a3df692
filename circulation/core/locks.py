# circulation/core/locks.py
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from loguru import logger

from circulation.core.errors import Contention


class KeyedLocks:
    """
    Per-key exclusive locks (``item:<id>``, ``loan:<id>``, ``book:<id>``).

    Keys are always taken in sorted order so two operations touching the same
    keys cannot deadlock. Waiting is bounded; on timeout nothing is held and
    Contention is raised. An entry lives only while some operation holds or
    waits for it.
    """

    def __init__(self, timeout: float = 2.0) -> None:
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _enter(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _leave(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        entered: List[str] = []
        acquired: List[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._enter(key)
                entered.append(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Lock wait on '{key}' exceeded {self.timeout}s.")
                    raise Contention(f"Resource '{key}' is busy; retry the operation.", entity_id=key) from None
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in entered:
                self._leave(key)
