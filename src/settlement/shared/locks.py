"""Per-key critical sections around read-check-write operations.

Reserving stock reads the on-hand count and the sum of live reservations,
then writes a new reservation. Two requests doing that concurrently for the
same stock key must not interleave, so the whole command (including its
Unit of Work commit) runs while the key's lock is held. Locks are acquired
in sorted key order so multi-key holders cannot deadlock each other.

These locks only serialize callers inside one process. Across processes the
database isolation level configured for the ``postgresql`` provider
(``SERIALIZABLE``) is what rejects interleaved read-check-write commits.

Entries are reference counted: a key's lock lives only while some caller is
holding or waiting on it, so the registry stays as small as the set of keys
in flight.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _Entry()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        ordered = sorted({str(k) for k in keys if k is not None})
        acquired: list[tuple[str, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(key, entry)
                    raise
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)


stock_locks = KeyedLocks()
order_locks = KeyedLocks()
dispute_locks = KeyedLocks()
