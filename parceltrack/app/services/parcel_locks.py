"""
Per-parcel locking.

Serializes read-modify-write of a single parcel within this process.
Different parcels never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class ParcelLockRegistry:
    """
    Keyed ``asyncio.Lock`` registry.

    An entry lives only while some coroutine holds or waits for it, so the
    registry does not grow with the number of parcels ever touched.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, parcel_id: int):
        """
        Hold the exclusive critical section of ``parcel_id``.

        Usage:
            async with locks.hold(parcel.id):
                ...  # load, validate, save, publish
        """
        lock = self._locks.setdefault(parcel_id, asyncio.Lock())
        self._users[parcel_id] = self._users.get(parcel_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[parcel_id] -= 1
            if self._users[parcel_id] == 0:
                del self._users[parcel_id]
                del self._locks[parcel_id]

    def is_locked(self, parcel_id: int) -> bool:
        lock = self._locks.get(parcel_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
