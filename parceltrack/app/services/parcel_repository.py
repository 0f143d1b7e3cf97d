"""
Parcel storage adapter.

Wraps one SQLAlchemy session. Parcel saves are version checked: a save
against a row that changed since it was loaded raises ``SaveConflict``.
Connectivity failures surface as ``UnavailableError``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from parceltrack.app.core.exceptions import NotFoundError, UnavailableError
from parceltrack.app.models.parcel import Parcel
from parceltrack.app.models.parcel_enums import ParcelStatus
from parceltrack.app.models.user import User

logger = logging.getLogger("parceltrack.storage")


class SaveConflict(Exception):
    """The parcel was modified by someone else since it was loaded."""


@asynccontextmanager
async def storage_errors():
    """Translate driver connectivity failures into ``UnavailableError``."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        logger.error("Storage unavailable", extra={"error": str(exc.orig or exc)})
        raise UnavailableError() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error("Storage connection lost", extra={"error": str(exc.orig or exc)})
            raise UnavailableError() from exc
        raise
    except (ConnectionError, TimeoutError) as exc:
        logger.error("Storage unreachable", extra={"error": str(exc)})
        raise UnavailableError() from exc


class ParcelRepository:
    """Storage operations used by the lifecycle manager."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, parcel_id: int) -> Parcel:
        """
        Load a parcel with its tracking trail.

        Raises:
            NotFoundError: If no parcel has this ID
        """
        parcel = await self.get(parcel_id)
        if parcel is None:
            raise NotFoundError("Parcel", parcel_id)
        return parcel

    async def get(self, parcel_id: int) -> Optional[Parcel]:
        async with storage_errors():
            result = await self.db.execute(
                select(Parcel).where(Parcel.id == parcel_id)
            )
            return result.scalar_one_or_none()

    async def find_unique(self, booking_id: str) -> Optional[Parcel]:
        async with storage_errors():
            result = await self.db.execute(
                select(Parcel).where(Parcel.booking_id == booking_id)
            )
            return result.scalar_one_or_none()

    async def add(self, parcel: Parcel) -> Parcel:
        """
        Insert a new parcel.

        Raises:
            IntegrityError: If a unique constraint (booking ID) is violated
        """
        async with storage_errors():
            self.db.add(parcel)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise
        return parcel

    async def save(self, parcel: Parcel) -> Parcel:
        """
        Commit changes made to a loaded parcel.

        Raises:
            SaveConflict: If the stored version moved on since ``load``
        """
        async with storage_errors():
            try:
                await self.db.commit()
            except (StaleDataError, IntegrityError) as exc:
                # IntegrityError here means a concurrent writer took the same trail seq
                await self.db.rollback()
                raise SaveConflict(str(exc)) from exc
        return parcel

    async def query(
        self,
        filters: Dict[str, object],
        status: Optional[ParcelStatus] = None,
        limit: int = 200
    ) -> List[Parcel]:
        """Parcels matching column ``filters``, newest first."""
        query = select(Parcel)
        for column, value in filters.items():
            query = query.where(getattr(Parcel, column) == value)
        if status is not None:
            query = query.where(Parcel.status == status)
        query = query.order_by(Parcel.created_at.desc(), Parcel.id.desc()).limit(limit)

        async with storage_errors():
            result = await self.db.execute(query)
            return list(result.scalars().all())

    async def count_by_status(self) -> Dict[ParcelStatus, int]:
        async with storage_errors():
            result = await self.db.execute(
                select(Parcel.status, func.count(Parcel.id)).group_by(Parcel.status)
            )
            return {status: count for status, count in result.all()}

    async def load_principal(self, principal_id: int) -> User:
        """
        Resolve a principal from the directory.

        Raises:
            NotFoundError: If no user has this ID
        """
        async with storage_errors():
            user = await self.db.get(User, principal_id)
        if user is None:
            raise NotFoundError("Agent", principal_id)
        return user
