"""
Parcel API Endpoints.

Customers book parcels, admins assign agents, agents report status and
location. Authorization is decided by the lifecycle manager.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from parceltrack.app.core.dependencies import get_current_principal, get_lifecycle_manager
from parceltrack.app.core.guards import require_role
from parceltrack.app.domain.lifecycle.lifecycle_manager import LifecycleManager
from parceltrack.app.models.enums import UserRole
from parceltrack.app.models.parcel_enums import ParcelStatus
from parceltrack.app.schemas.auth import Principal
from parceltrack.app.schemas.parcel import (
    AssignAgentRequest,
    LocationRecord,
    ParcelCreate,
    ParcelListResponse,
    ParcelResponse,
    StatusCountResponse,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/parcels", tags=["Parcels"])


@router.post("", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def create_parcel(
    parcel_data: ParcelCreate,
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Book a new parcel (Customer only).

    The parcel starts in Booked with no agent and an empty trail.
    """
    return await lifecycle.create_parcel(
        principal,
        pickup_address=parcel_data.pickup_address.to_address(),
        delivery_address=parcel_data.delivery_address.to_address(),
        size=parcel_data.size,
        weight=parcel_data.weight,
        payment_type=parcel_data.payment_type,
        cod_amount=parcel_data.cod_amount
    )


@router.get("", response_model=ParcelListResponse)
async def list_parcels(
    status_filter: Optional[ParcelStatus] = Query(None, alias="status", description="Only parcels in this status"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    List parcels visible to the caller.

    Customers see their own, agents their assigned, admins all.
    """
    parcels = await lifecycle.list_parcels(principal, status=status_filter)
    return ParcelListResponse(parcels=parcels, total=len(parcels))


@router.get("/report/status-count", response_model=StatusCountResponse)
async def status_count_report(
    principal: Principal = Depends(require_role([UserRole.ADMIN])),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """Parcel count grouped by status (Admin only)."""
    counts = await lifecycle.status_report()
    return StatusCountResponse(counts=counts, total=sum(counts.values()))


@router.get("/booking/{booking_id}", response_model=ParcelResponse)
async def get_parcel_by_booking(
    booking_id: str = Path(..., description="Booking ID"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """Look a parcel up by its booking ID."""
    return await lifecycle.get_parcel_by_booking(principal, booking_id)


@router.get("/{parcel_id}", response_model=ParcelResponse)
async def get_parcel(
    parcel_id: int = Path(..., description="Parcel ID"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Get a parcel.

    Allowed for the owning customer, the assigned agent and admins.
    """
    return await lifecycle.get_parcel(principal, parcel_id)


@router.put("/{parcel_id}/assign", response_model=ParcelResponse)
async def assign_agent(
    body: AssignAgentRequest,
    parcel_id: int = Path(..., description="Parcel ID"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """Assign an agent to a booked parcel (Admin only)."""
    return await lifecycle.assign_agent(principal, parcel_id, body.agent_id)


@router.put("/{parcel_id}/status", response_model=ParcelResponse)
async def update_status(
    body: StatusUpdateRequest,
    parcel_id: int = Path(..., description="Parcel ID"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Move the parcel along its lifecycle (assigned Agent only).

    Allowed: PickedUp, InTransit, Delivered, Failed, each only from its
    predecessor.
    """
    return await lifecycle.update_status(principal, parcel_id, body.status)


@router.post("/{parcel_id}/track")
async def record_location(
    location: LocationRecord,
    parcel_id: int = Path(..., description="Parcel ID"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: LifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Record a GPS location (assigned Agent only).

    REST fallback for agents without a live connection.
    """
    await lifecycle.append_location(principal, parcel_id, location.lat, location.lng)
    return {"ok": True}
