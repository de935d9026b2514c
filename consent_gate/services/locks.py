"""Per-(provider, patient) mutual exclusion.

Creating, approving, revoking and sweeping a consent for the same pair
must not interleave. Unrelated pairs never contend.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from weakref import WeakValueDictionary

from consent_gate.models.consent import pair_key


class PairLockRegistry:
    """Hands out one ``asyncio.Lock`` per (provider, patient) pair.

    Locks are held weakly, so a pair nobody is working on costs nothing.
    """

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def lock_for(self, provider_id: str, patient_id: str) -> asyncio.Lock:
        key = pair_key(provider_id, patient_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, provider_id: str, patient_id: str) -> AsyncIterator[None]:
        """Serialize the enclosed block against other work on the same pair."""
        lock = self.lock_for(provider_id, patient_id)
        async with lock:
            yield


# Process-wide registry shared by every service instance
pair_locks = PairLockRegistry()
