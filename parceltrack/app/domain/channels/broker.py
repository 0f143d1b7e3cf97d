"""
Channel Broker.

Maintains one logical broadcast channel per parcel and fans events out to
the channel's current members.

Rules:
- Admission goes through ``ParcelAccessPolicy`` (the shared ``authorize``
  predicate); nobody else's events reach a subscriber.
- A channel exists while it has at least one member.
- Delivery is best-effort: no acknowledgement, retry or replay. A subscriber
  that joins after an event was published never sees it.
"""

import logging
import threading
from typing import Dict, FrozenSet, Set

from parceltrack.app.core.exceptions import ForbiddenError, NotFoundError
from parceltrack.app.domain.channels.access import ParcelAccessPolicy
from parceltrack.app.domain.channels.publisher import Event

logger = logging.getLogger("parceltrack.channels")


class ChannelBroker:
    """
    Owned registry of parcel channels.

    The membership tables are guarded by one lock that is only held while
    they are read or changed; delivery happens outside it and consists of a
    non-blocking ``offer`` per member.
    """

    def __init__(self, access_policy: ParcelAccessPolicy):
        self._access_policy = access_policy
        self._lock = threading.Lock()
        self._channels: Dict[int, Set] = {}
        self._memberships: Dict[str, Set[int]] = {}

    async def join(self, subscriber, parcel_id: int, strict: bool = False) -> bool:
        """
        Admit ``subscriber`` to the channel of ``parcel_id``.

        Args:
            subscriber: Connection handle (``id``, ``principal``, ``offer``)
            parcel_id: Parcel whose channel to join
            strict: Raise instead of silently refusing (HTTP stream fallback)

        Returns:
            True if admitted, False if refused in non-strict mode

        Raises:
            ForbiddenError, NotFoundError: Only when ``strict`` is set
        """
        try:
            await self._access_policy.check(subscriber.principal, parcel_id)
        except (ForbiddenError, NotFoundError) as exc:
            logger.info(
                "Channel join refused",
                extra={
                    "parcel_id": parcel_id,
                    "principal_id": subscriber.principal.id,
                    "reason": exc.error_code,
                }
            )
            if strict:
                raise
            return False

        with self._lock:
            self._channels.setdefault(parcel_id, set()).add(subscriber)
            self._memberships.setdefault(subscriber.id, set()).add(parcel_id)

        logger.debug("Channel joined", extra={"parcel_id": parcel_id, "subscriber_id": subscriber.id})
        return True

    def leave(self, subscriber, parcel_id: int) -> None:
        """Remove ``subscriber`` from one channel. No-op if not a member."""
        with self._lock:
            self._discard(subscriber, parcel_id)

    def leave_all(self, subscriber) -> None:
        """Remove ``subscriber`` from every channel (connection dropped)."""
        with self._lock:
            for parcel_id in list(self._memberships.get(subscriber.id, ())):
                self._discard(subscriber, parcel_id)

    async def publish(self, parcel_id: int, event: Event) -> int:
        """
        Deliver ``event`` to every current member of the parcel's channel.

        Returns:
            Number of members that accepted the event
        """
        with self._lock:
            members = list(self._channels.get(parcel_id, ()))

        delivered = 0
        for subscriber in members:
            if subscriber.offer(event):
                delivered += 1

        logger.debug(
            "Event published",
            extra={"parcel_id": parcel_id, "kind": event.kind, "members": len(members), "delivered": delivered}
        )
        return delivered

    def members(self, parcel_id: int) -> FrozenSet:
        with self._lock:
            return frozenset(self._channels.get(parcel_id, ()))

    def channels_of(self, subscriber) -> FrozenSet[int]:
        with self._lock:
            return frozenset(self._memberships.get(subscriber.id, ()))

    def has_channel(self, parcel_id: int) -> bool:
        with self._lock:
            return parcel_id in self._channels

    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def _discard(self, subscriber, parcel_id: int) -> None:
        # Caller holds self._lock
        members = self._channels.get(parcel_id)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._channels[parcel_id]

        joined = self._memberships.get(subscriber.id)
        if joined is not None:
            joined.discard(parcel_id)
            if not joined:
                del self._memberships[subscriber.id]
