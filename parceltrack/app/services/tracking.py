"""
Tracking service wiring.

Builds the broker, the publisher chosen by ``realtime_backend`` and the
lifecycle manager. The application lifespan owns the result; tests build
their own against a test database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from parceltrack.app.core.config import settings
from parceltrack.app.domain.channels.access import ParcelAccessPolicy
from parceltrack.app.domain.channels.broker import ChannelBroker
from parceltrack.app.domain.channels.publisher import NullPublisher, Publisher
from parceltrack.app.domain.lifecycle.lifecycle_manager import LifecycleManager
from parceltrack.app.services.booking_ids import BookingIdGenerator
from parceltrack.app.services.event_relay import RedisEventRelay
from parceltrack.app.services.parcel_locks import ParcelLockRegistry

logger = logging.getLogger("parceltrack")

REALTIME_BACKENDS = ("local", "redis", "none")


@dataclass
class TrackingServices:
    lifecycle: LifecycleManager
    broker: ChannelBroker
    publisher: Publisher
    relay: Optional[RedisEventRelay] = None


def build_tracking_services(
    session_factory: async_sessionmaker,
    realtime_backend: str = None,
    redis_client=None
) -> TrackingServices:
    """
    Wire the tracking services.

    Args:
        session_factory: Storage session factory
        realtime_backend: "local" (in-process broker), "redis" (relay
            between workers) or "none" (events are dropped)
        redis_client: Required for the "redis" backend

    Raises:
        ValueError: Unknown backend, or "redis" without a client
    """
    backend = (realtime_backend or settings.realtime_backend).lower()
    if backend not in REALTIME_BACKENDS:
        raise ValueError(f"Unknown realtime backend '{backend}', expected one of {REALTIME_BACKENDS}")

    broker = ChannelBroker(ParcelAccessPolicy(session_factory))
    relay = None

    if backend == "redis":
        if redis_client is None:
            raise ValueError("The redis realtime backend needs a Redis client")
        relay = RedisEventRelay(redis_client, broker)
        publisher = relay
    elif backend == "none":
        publisher = NullPublisher()
    else:
        publisher = broker

    lifecycle = LifecycleManager(
        session_factory,
        publisher,
        id_generator=BookingIdGenerator(settings.booking_id_prefix),
        locks=ParcelLockRegistry(),
        max_save_attempts=settings.save_retry_attempts,
        list_limit=settings.parcel_list_limit,
    )

    logger.info("Tracking services ready", extra={"realtime_backend": backend})
    return TrackingServices(lifecycle=lifecycle, broker=broker, publisher=publisher, relay=relay)
