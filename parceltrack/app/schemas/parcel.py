"""
Parcel Pydantic schemas.

Defines request and response models for parcel booking and tracking.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict
from parceltrack.app.models.parcel import Address
from parceltrack.app.models.parcel_enums import ParcelStatus, PaymentType


class AddressSchema(BaseModel):
    """Address label with optional coordinate."""
    text: str = Field(..., min_length=1, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    class Config:
        from_attributes = True

    def to_address(self) -> Address:
        return Address(text=self.text, lat=self.lat, lng=self.lng)


class ParcelCreate(BaseModel):
    """Schema for booking a new parcel."""
    pickup_address: AddressSchema
    delivery_address: AddressSchema
    size: str = Field(..., min_length=1, max_length=50, description="Parcel size label (S, M, L, ...)")
    weight: float = Field(..., description="Weight in kilograms")
    payment_type: str = Field(default=PaymentType.PREPAID.value, description="COD or Prepaid")
    cod_amount: float = Field(default=0.0, description="Amount to collect on delivery")


class AssignAgentRequest(BaseModel):
    """Schema for assigning an agent (admin)."""
    agent_id: int


class StatusUpdateRequest(BaseModel):
    """Schema for an agent status update."""
    status: str = Field(..., description="PickedUp, InTransit, Delivered or Failed")


class LocationRecord(BaseModel):
    """Schema for recording a GPS location (REST fallback)."""
    lat: float
    lng: float


class TrackingPointResponse(BaseModel):
    """One sample of the tracking trail."""
    seq: int
    lat: float
    lng: float
    recorded_at: datetime

    class Config:
        from_attributes = True


class ParcelResponse(BaseModel):
    """Immutable snapshot of a parcel."""
    id: int
    booking_id: str
    customer_id: int
    agent_id: Optional[int]
    pickup_address: AddressSchema
    delivery_address: AddressSchema
    size: str
    weight: float
    payment_type: PaymentType
    cod_amount: float
    status: ParcelStatus
    tracking_trail: List[TrackingPointResponse]
    assigned_at: Optional[datetime]
    picked_at: Optional[datetime]
    in_transit_at: Optional[datetime]
    delivered_at: Optional[datetime]
    failed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        frozen = True


class ParcelListResponse(BaseModel):
    """Schema for parcel list."""
    parcels: List[ParcelResponse]
    total: int


class StatusCountResponse(BaseModel):
    """Parcel count per status (admin report)."""
    counts: Dict[ParcelStatus, int]
    total: int
