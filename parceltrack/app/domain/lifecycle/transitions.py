"""
Parcel lifecycle transition table.

Source of truth for which status changes are allowed and who drives them.
"""

from typing import Dict, FrozenSet, Optional

from parceltrack.app.models.parcel_enums import ParcelStatus

# Terminal states: no transition leaves them
TERMINAL_STATES: FrozenSet[ParcelStatus] = frozenset({
    ParcelStatus.DELIVERED,
    ParcelStatus.FAILED,
})

# States in which the assigned agent may report locations
TRACKABLE_STATES: FrozenSet[ParcelStatus] = frozenset({
    ParcelStatus.ASSIGNED,
    ParcelStatus.PICKED_UP,
    ParcelStatus.IN_TRANSIT,
})

# Full graph: key -> statuses reachable in one step
TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    ParcelStatus.BOOKED: frozenset({ParcelStatus.ASSIGNED}),
    ParcelStatus.ASSIGNED: frozenset({ParcelStatus.PICKED_UP, ParcelStatus.FAILED}),
    ParcelStatus.PICKED_UP: frozenset({ParcelStatus.IN_TRANSIT, ParcelStatus.FAILED}),
    ParcelStatus.IN_TRANSIT: frozenset({ParcelStatus.DELIVERED, ParcelStatus.FAILED}),
    ParcelStatus.DELIVERED: frozenset(),
    ParcelStatus.FAILED: frozenset(),
}

# Booked -> Assigned belongs to the admin assignment; everything else to the agent
AGENT_TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    current: targets - {ParcelStatus.ASSIGNED}
    for current, targets in TRANSITIONS.items()
}

# Audit column stamped when a status is entered
TRANSITION_TIMESTAMPS: Dict[ParcelStatus, str] = {
    ParcelStatus.ASSIGNED: "assigned_at",
    ParcelStatus.PICKED_UP: "picked_at",
    ParcelStatus.IN_TRANSIT: "in_transit_at",
    ParcelStatus.DELIVERED: "delivered_at",
    ParcelStatus.FAILED: "failed_at",
}


def is_valid_transition(current: ParcelStatus, incoming: ParcelStatus) -> bool:
    """True if ``current -> incoming`` is an edge of the lifecycle graph."""
    return incoming in TRANSITIONS.get(current, frozenset())


def is_agent_transition(current: ParcelStatus, incoming: ParcelStatus) -> bool:
    """True if the assigned agent may move the parcel from ``current`` to ``incoming``."""
    return incoming in AGENT_TRANSITIONS.get(current, frozenset())


def is_terminal(status: Optional[ParcelStatus]) -> bool:
    return status in TERMINAL_STATES


def is_trackable(status: Optional[ParcelStatus]) -> bool:
    return status in TRACKABLE_STATES
