"""
Channel subscribers.

A subscriber is one live connection. The broker only ever calls ``offer``,
which never blocks; the connection's own writer drains the queue at whatever
pace the network allows.
"""

import asyncio
import logging
import uuid

from pydantic import BaseModel

from parceltrack.app.core.config import settings
from parceltrack.app.schemas.auth import Principal

logger = logging.getLogger("parceltrack.channels")


class QueueSubscriber:
    """
    Subscriber backed by a bounded queue.

    When the queue is full the new message is dropped for this subscriber
    only; the publisher and the other members are unaffected.
    """

    def __init__(self, principal: Principal, max_pending: int = None):
        self.id = uuid.uuid4().hex
        self.principal = principal
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=max_pending if max_pending is not None else settings.subscriber_queue_size
        )

    def offer(self, message: BaseModel) -> bool:
        """Enqueue without waiting. Returns False if the message was dropped."""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Subscriber queue full, message dropped",
                extra={"subscriber_id": self.id, "principal_id": self.principal.id, "dropped": self.dropped}
            )
            return False
        return True

    async def next_message(self) -> BaseModel:
        """Wait for the next queued message."""
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> list:
        """Remove and return everything queued right now."""
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return messages

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        return isinstance(other, QueueSubscriber) and other.id == self.id

    def __repr__(self):
        return f"<QueueSubscriber(id={self.id}, principal={self.principal.id}, role='{self.principal.role.value}')>"
