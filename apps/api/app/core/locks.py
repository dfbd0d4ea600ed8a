import asyncio
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """One short-lived ``asyncio.Lock`` per key.

    Locks are created on first use and dropped once nobody holds or waits
    on them, so the table only grows with concurrently contended keys.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] <= 0:
                del self._refs[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
