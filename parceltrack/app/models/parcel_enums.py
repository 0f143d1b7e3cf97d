"""
Parcel enumerations.
"""

import enum


class ParcelStatus(str, enum.Enum):
    """
    Parcel status enumeration.

    Status flow:
        Booked → Assigned → PickedUp → InTransit → Delivered
        Assigned, PickedUp and InTransit can also end in Failed
    """
    BOOKED = "Booked"
    ASSIGNED = "Assigned"
    PICKED_UP = "PickedUp"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    FAILED = "Failed"


class PaymentType(str, enum.Enum):
    """How the parcel is paid for."""
    COD = "COD"  # Cash on delivery, collected by the agent
    PREPAID = "Prepaid"
