"""Verrous par livraison / Per-delivery locks.

Serialise lecture derniere position -> enrichissement -> ecriture pour une livraison,
les livraisons differentes restent en parallele.
Serialises read-last-sample -> enrich -> persist for one delivery,
different deliveries stay parallel.
"""

import asyncio
from contextlib import asynccontextmanager


class KeyedLocks:
    """Registre de asyncio.Lock indexe par id de livraison / asyncio.Lock registry keyed by delivery id.

    Chaque entree compte ses detenteurs et attentes ; elle disparait quand le compte retombe a zero.
    Each entry counts its holders and waiters; it is dropped when the count falls back to zero.
    """

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def get(self, key: int) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: int):
        lock = self.get(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users.get(key, 1) - 1
            if remaining:
                self._users[key] = remaining
            else:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def in_use(self, key: int) -> bool:
        return self._users.get(key, 0) > 0

    def discard(self, key: int) -> None:
        """Liberer le verrou d'une livraison terminee s'il est libre /
        Drop the lock of a finished delivery when nobody holds or awaits it."""
        if not self.in_use(key):
            self._locks.pop(key, None)

    def clear(self) -> None:
        self._locks.clear()
        self._users.clear()

    def __len__(self) -> int:
        return len(self._locks)


# Singleton du processus / Process-wide registry
delivery_locks = KeyedLocks()
