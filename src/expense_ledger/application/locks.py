import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLocks:
    """One asyncio lock per key, acquired in a stable order.

    Ledger operations hold the lock of every payment method they touch, so
    two read-modify-write cycles on the same balance never interleave.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        ordered = sorted(set(keys), key=str)
        registered: list[Hashable] = []
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._waiters[key] = self._waiters.get(key, 0) + 1
                registered.append(key)
                await lock.acquire()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
            for key in registered:
                self._unregister(key)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def _unregister(self, key: Hashable) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            del self._waiters[key]
            del self._locks[key]
