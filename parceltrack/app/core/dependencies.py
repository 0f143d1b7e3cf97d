"""
Authentication and service dependencies for FastAPI.

The identity provider issues JWTs carrying ``user_id`` and ``role``; the
principal they describe is trusted as given.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.requests import HTTPConnection
from parceltrack.app.core.jwt import decode_access_token
from parceltrack.app.models.enums import UserRole
from parceltrack.app.schemas.auth import Principal

# HTTP Bearer security scheme
security = HTTPBearer()


def principal_from_token(token: Optional[str]) -> Optional[Principal]:
    """
    Build a principal from a bearer token.

    Returns:
        The principal, or None if the token is missing, invalid or lacks
        a user id or a known role
    """
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("user_id")
    role = payload.get("role")
    if not user_id or not role:
        return None

    try:
        return Principal(id=int(user_id), role=UserRole(role))
    except ValueError:
        return None


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Principal:
    """
    FastAPI dependency for JWT authentication.

    Raises:
        HTTPException: 401 if the token cannot be turned into a principal
    """
    principal = principal_from_token(credentials.credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def get_tracking_services(connection: HTTPConnection):
    """Services built by the application lifespan (HTTP and WebSocket routes)."""
    return connection.app.state.tracking


def get_lifecycle_manager(services=Depends(get_tracking_services)):
    return services.lifecycle


def get_channel_broker(services=Depends(get_tracking_services)):
    return services.broker
