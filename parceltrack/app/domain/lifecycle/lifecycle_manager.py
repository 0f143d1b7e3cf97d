"""
Parcel Lifecycle Manager (Domain Logic).

Owns parcel state: booking, agent assignment, status changes and the
tracking trail. Every committed change is published on the parcel's channel.

Mutations of one parcel run inside that parcel's critical section:
1. Load the parcel (fresh session)
2. Authorize the actor and validate the change
3. Apply and save (version checked; reload and retry on conflict)
4. Publish the resulting event

Publishing inside the critical section keeps channel order equal to commit
order. A failed operation commits nothing.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from parceltrack.app.core.config import settings
from parceltrack.app.core.exceptions import (
    ConcurrentModificationError,
    DuplicateBookingError,
    InvalidAgentError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from parceltrack.app.core.guards import (
    Capability,
    OwnershipGuard,
    authorize,
    require_agent_of,
    require_roles,
)
from parceltrack.app.domain.channels.publisher import Event, Publisher
from parceltrack.app.domain.lifecycle.transitions import (
    TRANSITION_TIMESTAMPS,
    is_agent_transition,
    is_terminal,
    is_trackable,
    is_valid_transition,
)
from parceltrack.app.models.enums import UserRole
from parceltrack.app.models.parcel import Address, Parcel, utcnow
from parceltrack.app.models.parcel_enums import ParcelStatus, PaymentType
from parceltrack.app.models.tracking_point import TrackingPoint
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.schemas.events import LocationAppended, StatusChanged
from parceltrack.app.schemas.parcel import ParcelResponse
from parceltrack.app.services.booking_ids import BookingIdGenerator
from parceltrack.app.services.parcel_locks import ParcelLockRegistry
from parceltrack.app.services.parcel_repository import ParcelRepository, SaveConflict

logger = logging.getLogger("parceltrack.lifecycle")

ownership_guard = OwnershipGuard()

Mutation = Callable[[ParcelRepository, Parcel], Awaitable[Event]]


def parse_status(value: Union[str, ParcelStatus]) -> ParcelStatus:
    try:
        return ParcelStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown parcel status: {value}",
            details={"allowed": [s.value for s in ParcelStatus]}
        )


def _parse_payment_type(value: Union[str, PaymentType]) -> PaymentType:
    try:
        return PaymentType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown payment type: {value}",
            details={"allowed": [p.value for p in PaymentType]}
        )


def _check_coordinates(lat: Optional[float], lng: Optional[float], field: str) -> None:
    if lat is not None and not -90 <= lat <= 90:
        raise ValidationError(f"{field} latitude must be between -90 and 90", details={"lat": lat})
    if lng is not None and not -180 <= lng <= 180:
        raise ValidationError(f"{field} longitude must be between -180 and 180", details={"lng": lng})


def _coerce_address(value: Union[str, Address], field: str) -> Address:
    address = Address(text=value) if isinstance(value, str) else value
    if not address.text or not address.text.strip():
        raise ValidationError(f"{field} must not be empty")
    if (address.lat is None) != (address.lng is None):
        raise ValidationError(f"{field} coordinate needs both lat and lng")
    _check_coordinates(address.lat, address.lng, field)
    return address


class LifecycleManager:
    """
    Parcel lifecycle service.

    Args:
        session_factory: Creates one storage session per attempt
        publisher: Receives every committed event (``NullPublisher`` when
            real-time delivery is disabled)
        id_generator: Produces booking IDs
        locks: Per-parcel critical sections
        max_save_attempts: Saves tried before giving up on a contended parcel
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        publisher: Publisher,
        id_generator: Callable[[], str] = None,
        locks: ParcelLockRegistry = None,
        max_save_attempts: int = None,
        list_limit: int = None
    ):
        self._session_factory = session_factory
        self._publisher = publisher
        self._id_generator = id_generator or BookingIdGenerator()
        self._locks = locks or ParcelLockRegistry()
        self._max_save_attempts = max_save_attempts or settings.save_retry_attempts
        self._list_limit = list_limit or settings.parcel_list_limit

    # Authorization

    @staticmethod
    def authorize(actor: Principal, parcel, capability: Capability = Capability.READ) -> bool:
        """Pure access predicate shared with channel admission."""
        return authorize(actor, parcel, capability)

    # Commands

    async def create_parcel(
        self,
        actor: Principal,
        pickup_address: Union[str, Address],
        delivery_address: Union[str, Address],
        size: str,
        weight: float,
        payment_type: Union[str, PaymentType] = PaymentType.PREPAID,
        cod_amount: float = 0.0
    ) -> ParcelResponse:
        """
        Book a new parcel for the calling customer.

        Raises:
            ForbiddenError: Actor is not a customer
            ValidationError: Malformed addresses, weight or payment data
            DuplicateBookingError: Generated booking ID already exists
        """
        require_roles(actor, UserRole.CUSTOMER, action="create_parcel")

        payment = _parse_payment_type(payment_type)
        cod_amount = 0.0 if cod_amount is None else float(cod_amount)
        if cod_amount < 0:
            raise ValidationError("COD amount cannot be negative", details={"cod_amount": cod_amount})
        if payment == PaymentType.PREPAID and cod_amount != 0:
            raise ValidationError(
                "COD amount is only allowed for COD parcels",
                details={"payment_type": payment.value, "cod_amount": cod_amount}
            )
        if weight is None or weight <= 0:
            raise ValidationError("Weight must be greater than zero", details={"weight": weight})
        if not size or not str(size).strip():
            raise ValidationError("Size must not be empty")

        pickup = _coerce_address(pickup_address, "pickup_address")
        delivery = _coerce_address(delivery_address, "delivery_address")
        booking_id = self._id_generator()
        now = utcnow()

        async with self._session_factory() as db:
            repo = ParcelRepository(db)

            if await repo.find_unique(booking_id) is not None:
                raise DuplicateBookingError(booking_id)

            parcel = Parcel(
                booking_id=booking_id,
                customer_id=actor.id,
                agent_id=None,
                pickup_address=pickup,
                delivery_address=delivery,
                size=str(size),
                weight=float(weight),
                payment_type=payment,
                cod_amount=cod_amount,
                status=ParcelStatus.BOOKED,
                tracking_trail=[],
                created_at=now,
                updated_at=now
            )

            try:
                await repo.add(parcel)
            except IntegrityError as exc:
                raise DuplicateBookingError(booking_id) from exc

            snapshot = ParcelResponse.model_validate(parcel)

        logger.info(
            "Parcel booked",
            extra={"parcel_id": snapshot.id, "booking_id": booking_id, "customer_id": actor.id}
        )
        return snapshot

    async def assign_agent(self, actor: Principal, parcel_id: int, agent_id: int) -> ParcelResponse:
        """
        Assign an agent to a booked parcel (admin only).

        Raises:
            ForbiddenError: Actor is not an admin
            NotFoundError: Unknown parcel or agent
            InvalidAgentError: Principal is not an active agent
            InvalidTransitionError: Parcel is no longer Booked
        """
        require_roles(actor, UserRole.ADMIN, action="assign_agent")

        async def apply(repo: ParcelRepository, parcel: Parcel) -> Event:
            agent = await repo.load_principal(agent_id)
            if agent.role != UserRole.AGENT or not agent.is_active:
                raise InvalidAgentError(agent_id)
            if not is_valid_transition(parcel.status, ParcelStatus.ASSIGNED):
                raise InvalidTransitionError(parcel.status.value, ParcelStatus.ASSIGNED.value)

            now = utcnow()
            parcel.agent_id = agent.id
            parcel.status = ParcelStatus.ASSIGNED
            parcel.assigned_at = now
            parcel.updated_at = now
            return StatusChanged(parcel_id=parcel.id, status=parcel.status, occurred_at=now)

        return await self._mutate(parcel_id, actor, "assign_agent", apply)

    async def update_status(
        self,
        actor: Principal,
        parcel_id: int,
        new_status: Union[str, ParcelStatus]
    ) -> ParcelResponse:
        """
        Move a parcel along the lifecycle (assigned agent only).

        Raises:
            ValidationError: Unknown status name
            NotFoundError: Unknown parcel
            ForbiddenError: Actor is not the assigned agent
            InvalidTransitionError: Not an allowed successor of the current status
        """
        target = parse_status(new_status)

        async def apply(repo: ParcelRepository, parcel: Parcel) -> Event:
            require_agent_of(parcel, actor)
            if not is_agent_transition(parcel.status, target):
                raise InvalidTransitionError(parcel.status.value, target.value)

            now = utcnow()
            parcel.status = target
            setattr(parcel, TRANSITION_TIMESTAMPS[target], now)
            parcel.updated_at = now
            return StatusChanged(parcel_id=parcel.id, status=target, occurred_at=now)

        return await self._mutate(parcel_id, actor, "update_status", apply)

    async def append_location(self, actor: Principal, parcel_id: int, lat: float, lng: float) -> None:
        """
        Append a location sample to the tracking trail (assigned agent only).

        Raises:
            ValidationError: Coordinates out of range
            NotFoundError: Unknown parcel
            ForbiddenError: Actor is not the assigned agent
            InvalidStateError: Parcel is not Assigned, PickedUp or InTransit
        """
        if lat is None or lng is None:
            raise ValidationError("Both lat and lng are required")
        _check_coordinates(lat, lng, "location")

        async def apply(repo: ParcelRepository, parcel: Parcel) -> Event:
            require_agent_of(parcel, actor)
            if not is_trackable(parcel.status):
                raise InvalidStateError(
                    f"Cannot track a parcel in status {parcel.status.value}",
                    parcel.status.value
                )

            now = utcnow()
            parcel.tracking_trail.append(TrackingPoint(
                seq=len(parcel.tracking_trail) + 1,
                lat=float(lat),
                lng=float(lng),
                recorded_at=now
            ))
            parcel.updated_at = now
            return LocationAppended(parcel_id=parcel.id, lat=float(lat), lng=float(lng), ts=now)

        await self._mutate(parcel_id, actor, "append_location", apply)

    # Queries

    async def get_parcel(self, actor: Principal, parcel_id: int) -> ParcelResponse:
        """
        Raises:
            NotFoundError: Unknown parcel
            ForbiddenError: Actor may not read it
        """
        async with self._session_factory() as db:
            parcel = await ParcelRepository(db).load(parcel_id)
            ownership_guard.enforce(parcel, actor, Capability.READ)
            return ParcelResponse.model_validate(parcel)

    async def get_parcel_by_booking(self, actor: Principal, booking_id: str) -> ParcelResponse:
        async with self._session_factory() as db:
            parcel = await ParcelRepository(db).find_unique(booking_id)
            if parcel is None:
                raise NotFoundError("Parcel", booking_id)
            ownership_guard.enforce(parcel, actor, Capability.READ)
            return ParcelResponse.model_validate(parcel)

    async def list_parcels(
        self,
        actor: Principal,
        status: Optional[Union[str, ParcelStatus]] = None
    ) -> List[ParcelResponse]:
        """
        Parcels visible to the actor, newest first.

        Customers see what they booked, agents what is assigned to them,
        admins everything. ``status`` narrows the result.
        """
        status_filter = parse_status(status) if status is not None else None

        async with self._session_factory() as db:
            parcels = await ParcelRepository(db).query(
                ownership_guard.filter_by_ownership(actor),
                status=status_filter,
                limit=self._list_limit
            )
            return [ParcelResponse.model_validate(p) for p in parcels]

    async def status_report(self) -> dict:
        """Parcel count per status, straight from storage."""
        async with self._session_factory() as db:
            counts = await ParcelRepository(db).count_by_status()
        return {status: counts.get(status, 0) for status in ParcelStatus}

    # Internals

    async def _mutate(
        self,
        parcel_id: int,
        actor: Principal,
        operation: str,
        apply: Mutation
    ) -> ParcelResponse:
        async with self._locks.hold(parcel_id):
            snapshot, event = await self._commit_with_retry(parcel_id, actor, operation, apply)
            try:
                await self._publisher.publish(parcel_id, event)
            except Exception:
                # Committed already; delivery is best-effort
                logger.warning(
                    "Event publish failed, event dropped",
                    extra={"parcel_id": parcel_id, "kind": event.kind, "operation": operation},
                    exc_info=True
                )
        return snapshot

    async def _commit_with_retry(
        self,
        parcel_id: int,
        actor: Principal,
        operation: str,
        apply: Mutation
    ) -> Tuple[ParcelResponse, Event]:
        for attempt in range(1, self._max_save_attempts + 1):
            async with self._session_factory() as db:
                repo = ParcelRepository(db)
                parcel = await repo.load(parcel_id)
                event = await apply(repo, parcel)

                try:
                    await repo.save(parcel)
                except SaveConflict:
                    logger.warning(
                        "Parcel changed concurrently, retrying",
                        extra={"parcel_id": parcel_id, "operation": operation, "attempt": attempt}
                    )
                    continue

                snapshot = ParcelResponse.model_validate(parcel)

            logger.info(
                "Parcel closed" if is_terminal(snapshot.status) else "Parcel updated",
                extra={
                    "parcel_id": parcel_id,
                    "operation": operation,
                    "actor_id": actor.id,
                    "status": snapshot.status.value,
                    "version": parcel.version,
                }
            )
            return snapshot, event

        raise ConcurrentModificationError(parcel_id, self._max_save_attempts)
