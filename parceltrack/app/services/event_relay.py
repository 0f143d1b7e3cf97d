"""
Redis event relay.

With several workers each process owns its own ``ChannelBroker``. The relay
publishes every event to Redis pub/sub and feeds what it hears back into the
local broker, so a subscriber connected to any worker sees every event.
Per-parcel order is kept: events are published from inside the parcel's
critical section and one listener dispatches them sequentially.
"""

import asyncio
import contextlib
import logging

from pydantic import ValidationError as PayloadError
from redis.exceptions import RedisError

from parceltrack.app.core.config import settings
from parceltrack.app.domain.channels.broker import ChannelBroker
from parceltrack.app.domain.channels.publisher import Event
from parceltrack.app.schemas.events import parse_event

logger = logging.getLogger("parceltrack.relay")

CHANNEL_PREFIX = "parceltrack:parcel:"

# Stays below the client socket_timeout so an idle subscription is not a read timeout
LISTEN_POLL_SECONDS = 1.0


def channel_name(parcel_id: int) -> str:
    return f"{CHANNEL_PREFIX}{parcel_id}"


class RedisEventRelay:
    """Publisher backed by Redis pub/sub."""

    def __init__(self, redis_client, broker: ChannelBroker, reconnect_delay: float = None):
        self._redis = redis_client
        self._broker = broker
        self._reconnect_delay = settings.relay_reconnect_seconds if reconnect_delay is None else reconnect_delay

    async def publish(self, parcel_id: int, event: Event) -> int:
        """
        Publish to Redis. Failures are logged and dropped: the mutation is
        already committed and delivery is best-effort.

        Returns:
            Number of Redis listeners that received the message
        """
        try:
            return await self._redis.publish(channel_name(parcel_id), event.model_dump_json())
        except (RedisError, OSError) as exc:
            logger.warning(
                "Event relay publish failed, event dropped",
                extra={"parcel_id": parcel_id, "kind": event.kind, "error": str(exc)}
            )
            return 0

    async def run(self) -> None:
        """
        Listen for relayed events until cancelled.

        A dropped Redis connection is logged and the subscription is
        re-established after ``reconnect_delay`` seconds. Events published
        while disconnected are not replayed.
        """
        while True:
            try:
                await self._listen()
            except (RedisError, OSError) as exc:
                logger.warning(
                    "Event relay connection lost, resubscribing",
                    extra={"error": str(exc), "retry_in": self._reconnect_delay}
                )
                await asyncio.sleep(self._reconnect_delay)

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            logger.info("Event relay listening", extra={"pattern": f"{CHANNEL_PREFIX}*"})
            while True:
                message = await pubsub.get_message(timeout=LISTEN_POLL_SECONDS)
                if message is not None:
                    await self.dispatch(message)
        finally:
            with contextlib.suppress(RedisError, OSError):
                await pubsub.punsubscribe()
            await pubsub.aclose()

    async def dispatch(self, message: dict) -> int:
        """
        Hand one pub/sub message to the local broker.

        Returns:
            Number of local subscribers reached (0 for ignored messages)
        """
        if message.get("type") != "pmessage":
            return 0

        channel = message.get("channel")
        data = message.get("data")
        if isinstance(channel, bytes):
            channel = channel.decode()

        try:
            parcel_id = int(channel[len(CHANNEL_PREFIX):])
            event = parse_event(data)
        except (TypeError, ValueError, PayloadError) as exc:
            logger.warning("Malformed relayed event ignored", extra={"channel": channel, "error": str(exc)})
            return 0

        return await self._broker.publish(parcel_id, event)
