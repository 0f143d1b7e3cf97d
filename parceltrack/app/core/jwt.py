"""
JWT token utilities.

Tokens are issued by the identity provider and carry ``user_id`` and
``role``. This service only verifies them; ``create_access_token`` and
``token_for`` exist for development tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from parceltrack.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign ``data`` with an expiry claim.

    Example payload:
        {"sub": "courier-7", "user_id": 7, "role": "agent", "exp": 1234567890}
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    return jwt.encode({**data, "exp": expire}, settings.secret_key, algorithm=settings.algorithm)


def token_for(principal, expires_delta: Optional[timedelta] = None) -> str:
    """Token describing an existing principal (anything with ``id`` and ``role``)."""
    role = getattr(principal.role, "value", principal.role)
    return create_access_token(
        {"sub": f"{role}-{principal.id}", "user_id": principal.id, "role": role},
        expires_delta
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry.

    Returns:
        The claims, or None for a malformed, forged, expired or
        expiry-less token
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True}
        )
    except JWTError:
        return None
