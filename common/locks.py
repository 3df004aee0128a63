import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """One re-entrant lock per key, kept only while someone holds or waits on it.

    Holding the lock for a key serializes every critical section that names the
    same key; different keys never contend.
    """

    def __init__(self) -> None:
        # key -> [lock, holders and waiters]
        self._locks: dict[Hashable, list] = {}
        self._guard = threading.Lock()

    def _acquire_ref(self, key: Hashable) -> threading.RLock:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.RLock(), 0]
                self._locks[key] = slot
            slot[1] += 1
            return slot[0]

    def _release_ref(self, key: Hashable) -> None:
        with self._guard:
            slot = self._locks[key]
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_ref(key)
        try:
            with lock:
                yield
        finally:
            self._release_ref(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
