"""
Channel admission policy.

Loads the parcel and applies the shared ``authorize`` predicate before a
subscriber is let into a channel.
"""

from sqlalchemy.ext.asyncio import async_sessionmaker

from parceltrack.app.core.guards import Capability, OwnershipGuard
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.services.parcel_repository import ParcelRepository

ownership_guard = OwnershipGuard()


class ParcelAccessPolicy:
    """Checks whether a principal may observe a parcel's channel."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def check(self, principal: Principal, parcel_id: int) -> None:
        """
        Raises:
            NotFoundError: If the parcel does not exist
            ForbiddenError: If the principal may not observe it
        """
        async with self._session_factory() as db:
            parcel = await ParcelRepository(db).load(parcel_id)
            ownership_guard.enforce(parcel, principal, Capability.OBSERVE)
