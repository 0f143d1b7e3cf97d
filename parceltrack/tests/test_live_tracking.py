"""
Live tracking connection tests.

Command handling and the writer pump, driven without a network socket.
"""

import pytest
import asyncio
from datetime import timedelta

from parceltrack.app.api.v1.endpoints.live_tracking import ChannelCommand, handle_command, pump_messages
from parceltrack.app.core.config import settings
from parceltrack.app.core.dependencies import principal_from_token
from parceltrack.app.core.exceptions import UnavailableError
from parceltrack.app.core.jwt import create_access_token, token_for
from parceltrack.app.domain.channels.access import ParcelAccessPolicy
from parceltrack.app.domain.channels.subscribers import QueueSubscriber
from parceltrack.app.models.enums import UserRole
from parceltrack.app.models.parcel_enums import ParcelStatus
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.schemas.events import ChannelNotice


class FakeWebSocket:
    """Records what the pump sends; optionally stalls every send."""

    def __init__(self, stall: bool = False):
        self.sent = []
        self.closed_with = None
        self._stall = stall

    async def send_json(self, data):
        if self._stall:
            await asyncio.sleep(3600)
        self.sent.append(data)

    async def close(self, code=1000):
        self.closed_with = code


@pytest.mark.asyncio
async def test_join_is_acknowledged(broker, lifecycle, principals, booked_parcel):
    subscriber = QueueSubscriber(principals.customer)

    await handle_command(ChannelCommand(action="join", parcel_id=booked_parcel.id), subscriber, broker, lifecycle)

    (notice,) = subscriber.drain()
    assert isinstance(notice, ChannelNotice)
    assert notice.event == "joined"
    assert broker.channels_of(subscriber) == frozenset({booked_parcel.id})


@pytest.mark.asyncio
async def test_refused_join_is_silent(broker, lifecycle, principals, booked_parcel):
    subscriber = QueueSubscriber(principals.other_customer)

    await handle_command(ChannelCommand(action="join", parcel_id=booked_parcel.id), subscriber, broker, lifecycle)
    await handle_command(ChannelCommand(action="join", parcel_id=9999), subscriber, broker, lifecycle)

    assert subscriber.pending() == 0
    assert broker.channel_count() == 0


@pytest.mark.asyncio
async def test_leave_is_acknowledged(broker, lifecycle, principals, booked_parcel):
    subscriber = QueueSubscriber(principals.customer)
    await broker.join(subscriber, booked_parcel.id)

    await handle_command(ChannelCommand(action="leave", parcel_id=booked_parcel.id), subscriber, broker, lifecycle)

    assert [n.event for n in subscriber.drain()] == ["left"]
    assert not broker.has_channel(booked_parcel.id)


@pytest.mark.asyncio
async def test_agent_drives_parcel_over_the_socket(broker, lifecycle, principals, assigned_parcel):
    agent_conn = QueueSubscriber(principals.agent)
    customer_conn = QueueSubscriber(principals.customer)
    await broker.join(agent_conn, assigned_parcel.id)
    await broker.join(customer_conn, assigned_parcel.id)

    await handle_command(
        ChannelCommand(action="status", parcel_id=assigned_parcel.id, status="PickedUp"),
        agent_conn, broker, lifecycle
    )
    await handle_command(
        ChannelCommand(action="track", parcel_id=assigned_parcel.id, lat=12.9, lng=77.6),
        agent_conn, broker, lifecycle
    )

    assert [e.kind for e in customer_conn.drain()] == ["StatusChanged", "LocationAppended"]
    parcel = await lifecycle.get_parcel(principals.customer, assigned_parcel.id)
    assert parcel.status == ParcelStatus.PICKED_UP
    assert len(parcel.tracking_trail) == 1


@pytest.mark.asyncio
async def test_rejected_action_becomes_error_notice(broker, lifecycle, principals, assigned_parcel):
    stranger = QueueSubscriber(principals.other_agent)

    await handle_command(
        ChannelCommand(action="track", parcel_id=assigned_parcel.id, lat=1.0, lng=1.0),
        stranger, broker, lifecycle
    )
    await handle_command(
        ChannelCommand(action="track", parcel_id=assigned_parcel.id),
        stranger, broker, lifecycle
    )

    first, second = stranger.drain()
    assert (first.event, first.error_code) == ("error", "ERR_PERM_001")
    assert second.error_code == "ERR_VALIDATION_001"


@pytest.mark.asyncio
async def test_pump_delivers_in_order():
    subscriber = QueueSubscriber(Principal(id=1, role=UserRole.CUSTOMER))
    websocket = FakeWebSocket()
    for parcel_id in (1, 2, 3):
        subscriber.offer(ChannelNotice(event="joined", parcel_id=parcel_id))

    writer = asyncio.create_task(pump_messages(websocket, subscriber))
    for _ in range(100):
        if len(websocket.sent) == 3:
            break
        await asyncio.sleep(0)
    writer.cancel()

    assert [m["parcel_id"] for m in websocket.sent] == [1, 2, 3]


@pytest.mark.asyncio
async def test_pump_closes_stalled_socket(mocker):
    mocker.patch.object(settings, "subscriber_send_timeout_seconds", 0.01)
    subscriber = QueueSubscriber(Principal(id=1, role=UserRole.CUSTOMER))
    websocket = FakeWebSocket(stall=True)
    subscriber.offer(ChannelNotice(event="joined", parcel_id=1))

    await asyncio.wait_for(pump_messages(websocket, subscriber), timeout=2)

    assert websocket.closed_with == 1011
    assert websocket.sent == []


def test_principal_from_token():
    principal = principal_from_token(create_access_token({"sub": "agent-7", "user_id": 7, "role": "agent"}))

    assert principal.id == 7
    assert principal.role == UserRole.AGENT
    assert principal_from_token(None) is None
    assert principal_from_token("garbage") is None
    assert principal_from_token(create_access_token({"user_id": 7, "role": "courier"})) is None
    assert principal_from_token(create_access_token({"role": "admin"})) is None
    assert principal_from_token(token_for(Principal(id=3, role=UserRole.ADMIN), timedelta(seconds=-5))) is None


@pytest.mark.asyncio
async def test_join_during_storage_outage_reports_error(broker, lifecycle, principals, booked_parcel, mocker):
    mocker.patch.object(ParcelAccessPolicy, "check", side_effect=UnavailableError())
    subscriber = QueueSubscriber(principals.customer)

    await handle_command(ChannelCommand(action="join", parcel_id=booked_parcel.id), subscriber, broker, lifecycle)

    (notice,) = subscriber.drain()
    assert notice.event == "error"
    assert notice.error_code == "ERR_UNAVAILABLE_001"
    assert broker.channel_count() == 0
