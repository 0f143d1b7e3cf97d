"""
Parcel database model.

A parcel is booked by a customer, assigned to an agent by an admin and then
driven through its lifecycle by that agent.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum
from sqlalchemy.orm import composite, relationship
from parceltrack.app.db.session import Base
from parceltrack.app.models.parcel_enums import ParcelStatus, PaymentType
from parceltrack.app.models.tracking_point import TrackingPoint  # noqa: F401  registers the trail table


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Address:
    """Free-text address label with an optional coordinate, stored inline."""
    text: str
    lat: Optional[float] = None
    lng: Optional[float] = None

    def __composite_values__(self):
        return self.text, self.lat, self.lng


class Parcel(Base):
    """
    Parcel model.

    ``agent_id`` is set exactly when the parcel has left ``Booked``.
    ``version`` is bumped by the ORM on every UPDATE; a save against a stale
    version affects no rows and raises ``StaleDataError``.
    """
    __tablename__ = "parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(String(32), unique=True, nullable=False, index=True)

    # Ownership
    customer_id = Column(Integer, nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    # Addresses (embedded value objects)
    pickup_text = Column(String(500), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    delivery_text = Column(String(500), nullable=False)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)
    pickup_address = composite(Address, pickup_text, pickup_lat, pickup_lng)
    delivery_address = composite(Address, delivery_text, delivery_lat, delivery_lng)

    # Physical properties and payment
    size = Column(String(50), nullable=False)
    weight = Column(Float, nullable=False)
    payment_type = Column(Enum(PaymentType), default=PaymentType.PREPAID, nullable=False)
    cod_amount = Column(Float, default=0.0, nullable=False)

    # Lifecycle
    status = Column(Enum(ParcelStatus), default=ParcelStatus.BOOKED, nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    picked_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    # Breadcrumb trail, oldest first
    tracking_trail = relationship(
        "TrackingPoint",
        order_by="TrackingPoint.seq",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    version = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Parcel(id={self.id}, booking='{self.booking_id}', status='{self.status.value}')>"
