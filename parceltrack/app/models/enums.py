"""
User roles enumeration.

Defines the principal roles known to the parcel tracking service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        CUSTOMER: Books parcels and follows their own shipments
        AGENT: Courier assigned to parcels; reports status and location
        ADMIN: Assigns agents and sees every parcel
    """
    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"
