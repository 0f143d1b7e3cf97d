"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from parceltrack.app.api.v1.endpoints import parcels, live_tracking

router = APIRouter()

# Booking, assignment, status and location
router.include_router(parcels.router)

# Real-time channels (WebSocket and SSE)
router.include_router(live_tracking.router)
