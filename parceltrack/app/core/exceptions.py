"""
Custom exceptions and error handlers for consistent error responses.

Every lifecycle and channel operation reports failures through one of the
typed errors below; the global handlers turn them into the standard
``{"error_code", "message", "details"}`` envelope.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("parceltrack.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for malformed input (bad coordinates, negative COD amount, ...)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class NotFoundError(AppException):
    """Raised when a parcel or principal identifier cannot be resolved."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ForbiddenError(AppException):
    """Raised when an authenticated principal may not act on a parcel."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class InvalidTransitionError(AppException):
    """Raised when a status change is not an edge of the lifecycle graph."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot move parcel from {current} to {requested}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": current, "requested_status": requested}
        )


class InvalidStateError(AppException):
    """Raised when an action is not allowed in the parcel's current status."""

    def __init__(self, message: str, current: str):
        super().__init__(
            message=message,
            error_code="ERR_STATE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": current}
        )


class InvalidAgentError(AppException):
    """Raised when assigning a principal that is not an active agent."""

    def __init__(self, principal_id: Any):
        super().__init__(
            message=f"Principal {principal_id} is not an active agent",
            error_code="ERR_AGENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"agent_id": principal_id}
        )


class DuplicateBookingError(AppException):
    """Raised when a generated booking identifier is already taken."""

    def __init__(self, booking_id: str):
        super().__init__(
            message=f"Booking ID {booking_id} already exists",
            error_code="ERR_BOOKING_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"booking_id": booking_id}
        )


class ConcurrentModificationError(AppException):
    """Raised when a parcel keeps changing underneath a save."""

    def __init__(self, parcel_id: Any, attempts: int):
        super().__init__(
            message=f"Parcel {parcel_id} was modified concurrently, gave up after {attempts} attempts",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"parcel_id": parcel_id, "attempts": attempts}
        )


class UnavailableError(AppException):
    """Raised for transient storage failures. Callers may retry."""

    def __init__(self, message: str = "Storage is temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_UNAVAILABLE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
