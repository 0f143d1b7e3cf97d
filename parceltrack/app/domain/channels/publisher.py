"""
Event publisher capability.

The lifecycle manager emits every committed change through a ``Publisher``.
When no real-time transport is configured a ``NullPublisher`` is injected.
"""

from typing import Protocol, Union

from parceltrack.app.schemas.events import LocationAppended, StatusChanged

Event = Union[StatusChanged, LocationAppended]


class Publisher(Protocol):
    async def publish(self, parcel_id: int, event: Event) -> int:
        """Hand ``event`` to the channel of ``parcel_id``; returns members reached."""
        ...


class NullPublisher:
    """Publisher that drops every event."""

    async def publish(self, parcel_id: int, event: Event) -> int:
        return 0
