"""
Authentication Pydantic schemas.
"""

from pydantic import BaseModel, Field
from parceltrack.app.models.enums import UserRole


class Principal(BaseModel):
    """
    Authenticated actor as supplied by the identity provider.

    The service trusts it as given and never mutates it.
    """
    id: int = Field(..., description="Principal ID")
    role: UserRole = Field(..., description="Principal role")

    class Config:
        frozen = True
