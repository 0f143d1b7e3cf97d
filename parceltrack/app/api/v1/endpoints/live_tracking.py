"""
Live Tracking Endpoints.

WebSocket: clients join and leave parcel channels and receive their events;
assigned agents may also push status and location updates over the same
connection. SSE: one parcel's events streamed over plain HTTP.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Path, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError as PayloadError
from typing import Literal, Optional

from parceltrack.app.core.config import settings
from parceltrack.app.core.dependencies import (
    get_channel_broker,
    get_current_principal,
    get_lifecycle_manager,
    principal_from_token,
)
from parceltrack.app.core.exceptions import AppException
from parceltrack.app.domain.channels.broker import ChannelBroker
from parceltrack.app.domain.channels.subscribers import QueueSubscriber
from parceltrack.app.domain.lifecycle.lifecycle_manager import LifecycleManager
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.schemas.events import ChannelNotice

router = APIRouter(tags=["Live Tracking"])
logger = logging.getLogger("parceltrack.live")


class ChannelCommand(BaseModel):
    """Message sent by a WebSocket client."""
    action: Literal["join", "leave", "track", "status"]
    parcel_id: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: Optional[str] = None


async def pump_messages(websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    """
    Send queued messages to the socket, one at a time.

    A send that does not complete within the configured timeout closes the
    connection; the reader then cleans up the memberships.
    """
    while True:
        message = await subscriber.next_message()
        try:
            await asyncio.wait_for(
                websocket.send_json(message.model_dump(mode="json")),
                timeout=settings.subscriber_send_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Slow subscriber disconnected", extra={"subscriber_id": subscriber.id})
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return


async def handle_command(
    command: ChannelCommand,
    subscriber: QueueSubscriber,
    broker: ChannelBroker,
    lifecycle: LifecycleManager
) -> None:
    """Apply one client command. Lifecycle and storage failures are reported back as notices."""
    try:
        if command.action == "join":
            # A refused join is silent: the client simply receives nothing
            if await broker.join(subscriber, command.parcel_id):
                subscriber.offer(ChannelNotice(event="joined", parcel_id=command.parcel_id))
        elif command.action == "leave":
            broker.leave(subscriber, command.parcel_id)
            subscriber.offer(ChannelNotice(event="left", parcel_id=command.parcel_id))
        elif command.action == "track":
            await lifecycle.append_location(subscriber.principal, command.parcel_id, command.lat, command.lng)
        else:
            await lifecycle.update_status(subscriber.principal, command.parcel_id, command.status)
    except AppException as exc:
        subscriber.offer(ChannelNotice(
            event="error",
            parcel_id=command.parcel_id,
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details
        ))


@router.websocket("/ws/tracking")
async def tracking_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    broker: ChannelBroker = Depends(get_channel_broker),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Persistent tracking connection.

    Authenticate with ``?token=<jwt>``. Messages:
        {"action": "join", "parcel_id": 1}
        {"action": "leave", "parcel_id": 1}
        {"action": "track", "parcel_id": 1, "lat": 12.9, "lng": 77.6}   (agent)
        {"action": "status", "parcel_id": 1, "status": "InTransit"}     (agent)
    """
    principal = principal_from_token(token)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = QueueSubscriber(principal)
    writer = asyncio.create_task(pump_messages(websocket, subscriber))
    logger.info("Tracking socket connected", extra={"subscriber_id": subscriber.id, "principal_id": principal.id})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = ChannelCommand.model_validate_json(raw)
            except PayloadError as exc:
                subscriber.offer(ChannelNotice(
                    event="error",
                    error_code="ERR_VALIDATION",
                    message="Malformed command",
                    details={"errors": exc.errors(include_url=False)}
                ))
                continue
            await handle_command(command, subscriber, broker, lifecycle)
    except WebSocketDisconnect:
        pass
    finally:
        broker.leave_all(subscriber)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("Tracking socket writer failed", extra={"subscriber_id": subscriber.id}, exc_info=True)
        logger.info("Tracking socket disconnected", extra={"subscriber_id": subscriber.id})


@router.get("/parcels/{parcel_id}/events")
async def stream_parcel_events(
    request: Request,
    parcel_id: int = Path(..., description="Parcel ID"),
    principal: Principal = Depends(get_current_principal),
    broker: ChannelBroker = Depends(get_channel_broker)
):
    """
    Server-Sent Events stream of one parcel's channel.

    Responds 403/404 before streaming if the caller may not observe the
    parcel. Only events published after the stream opens are delivered.
    """
    subscriber = QueueSubscriber(principal)
    await broker.join(subscriber, parcel_id, strict=True)

    async def event_stream():
        try:
            while not await request.is_disconnected():
                try:
                    message = await asyncio.wait_for(
                        subscriber.next_message(), timeout=settings.sse_keepalive_seconds
                    )
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {message.kind}\ndata: {message.model_dump_json()}\n\n"
        finally:
            broker.leave_all(subscriber)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"}
    )
