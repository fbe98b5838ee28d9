# FILE: services/history.py
import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Generic, List, Tuple, TypeVar

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """
    Per-key FIFO log with a capacity per key and a TTL sweep.
    Oldest entries fall off first; empty keys are dropped on sweep.
    `add` runs a full sweep at most once per TTL, so keys that are never
    read again still expire.
    """

    def __init__(
        self,
        max_per_key: int = 100,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_per_key <= 0:
            raise ValueError("max_per_key must be positive")
        self.max_per_key = max_per_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Deque[Tuple[float, T]]] = {}
        self._last_sweep = clock()

    def add(self, key: str, item: T) -> None:
        now = self._clock()
        if now - self._last_sweep >= self.ttl_seconds:
            self.sweep()
        bucket = self._entries.setdefault(key, deque(maxlen=self.max_per_key))
        bucket.append((now, item))

    def get(self, key: str) -> List[T]:
        self._sweep_key(key)
        return [item for _ts, item in self._entries.get(key, ())]

    def sweep(self) -> int:
        self._last_sweep = self._clock()
        removed = 0
        for key in list(self._entries):
            removed += self._sweep_key(key)
        return removed

    def _sweep_key(self, key: str) -> int:
        bucket = self._entries.get(key)
        if bucket is None:
            return 0
        cutoff = self._clock() - self.ttl_seconds
        removed = 0
        while bucket and bucket[0][0] < cutoff:
            bucket.popleft()
            removed += 1
        if not bucket:
            del self._entries[key]
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._entries.values())


class KeyedLocks:
    """
    One asyncio.Lock per key, created on demand and dropped once no
    coroutine holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def hold(self, key: str) -> "_KeyedLockContext":
        return _KeyedLockContext(self, key)

    def _acquire_ref(self, key: str):
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            self._users[key] = 0
        self._users[key] += 1
        return self._locks[key]

    def _release_ref(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    def clear(self) -> None:
        self._locks.clear()
        self._users.clear()

    def __len__(self) -> int:
        return len(self._locks)


class _KeyedLockContext:
    def __init__(self, owner: KeyedLocks, key: str):
        self._owner = owner
        self._key = key
        self._lock = None

    async def __aenter__(self):
        self._lock = self._owner._acquire_ref(self._key)
        try:
            await self._lock.acquire()
        except BaseException:
            self._owner._release_ref(self._key)
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._lock.release()
        self._owner._release_ref(self._key)
        return False
