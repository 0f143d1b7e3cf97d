"""
Real-time channel payloads.

Domain events are published on a parcel's channel; notices are sent to a
single connection in reply to its own requests.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from parceltrack.app.models.parcel_enums import ParcelStatus


class StatusChanged(BaseModel):
    """A parcel moved to a new status."""
    kind: Literal["StatusChanged"] = "StatusChanged"
    parcel_id: int
    status: ParcelStatus
    occurred_at: datetime


class LocationAppended(BaseModel):
    """The assigned agent reported a new location."""
    kind: Literal["LocationAppended"] = "LocationAppended"
    parcel_id: int
    lat: float
    lng: float
    ts: datetime


ParcelEvent = Annotated[Union[StatusChanged, LocationAppended], Field(discriminator="kind")]

_event_adapter = TypeAdapter(ParcelEvent)


def parse_event(raw: Union[str, bytes]) -> Union[StatusChanged, LocationAppended]:
    """Decode an event from its JSON wire form."""
    return _event_adapter.validate_json(raw)


class ChannelNotice(BaseModel):
    """Connection-level reply (join acknowledgement, action error)."""
    kind: Literal["notice"] = "notice"
    event: str
    parcel_id: Optional[int] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
