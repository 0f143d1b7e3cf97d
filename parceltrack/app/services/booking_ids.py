"""
Booking identifier generation.
"""

import uuid

from parceltrack.app.core.config import settings


class BookingIdGenerator:
    """
    Produces customer-facing booking IDs such as ``BKG-1A2B3C4D``.

    Uniqueness is not guaranteed here; the parcels table enforces it and a
    collision surfaces as ``DuplicateBookingError``.
    """

    def __init__(self, prefix: str = None):
        self.prefix = prefix if prefix is not None else settings.booking_id_prefix

    def __call__(self) -> str:
        return self.prefix + uuid.uuid4().hex[:8].upper()
