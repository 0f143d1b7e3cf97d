"""
Security guards for role-based and ownership-based access control.

``authorize`` is the single predicate deciding whether a principal may see a
parcel. Reads, lifecycle checks and channel admission all go through it.
"""

import enum
from typing import List, Optional

from fastapi import Depends

from parceltrack.app.core.dependencies import get_current_principal
from parceltrack.app.core.exceptions import ForbiddenError
from parceltrack.app.models.enums import UserRole
from parceltrack.app.schemas.auth import Principal


class Capability(str, enum.Enum):
    """What the principal wants to do with the parcel."""
    READ = "read"
    OBSERVE = "observe"


def authorize(principal: Principal, parcel, capability: Capability = Capability.READ) -> bool:
    """
    Decide whether ``principal`` may access ``parcel``.

    Admins are always allowed, customers only on parcels they booked, agents
    only on parcels assigned to them. The same rule applies to every
    capability.

    Args:
        principal: Authenticated actor
        parcel: Anything exposing ``customer_id`` and ``agent_id``
        capability: Requested capability

    Returns:
        True if access is granted, False otherwise
    """
    if principal.role == UserRole.ADMIN:
        return True

    if principal.role == UserRole.CUSTOMER:
        return principal.id == parcel.customer_id

    if principal.role == UserRole.AGENT:
        return parcel.agent_id is not None and principal.id == parcel.agent_id

    return False


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/parcels/report/status-count")
        async def report(principal: Principal = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        ForbiddenError if the principal's role is not in allowed_roles
    """
    async def role_checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return principal

    return role_checker


class OwnershipGuard:
    """
    Class-based ownership guard for parcel access.

    Usage:
        ownership_guard = OwnershipGuard()
        ownership_guard.enforce(parcel, principal)
        query_filter = ownership_guard.filter_by_ownership(principal)
    """

    def enforce(
        self,
        parcel,
        principal: Principal,
        capability: Capability = Capability.READ,
        resource_name: str = "parcel"
    ):
        """
        Enforce ownership validation.

        Raises:
            ForbiddenError if ``authorize`` denies access
        """
        if not authorize(principal, parcel, capability):
            raise ForbiddenError(
                f"Access denied. You do not have permission to access this {resource_name}.",
                details={"capability": capability.value}
            )

    def filter_by_ownership(self, principal: Principal) -> dict:
        """
        Get the column filter a listing query must apply.

        For admins: empty (no filtering needed)
        For customers: their own parcels
        For agents: parcels assigned to them
        Anyone else: a filter that matches nothing
        """
        if principal.role == UserRole.ADMIN:
            return {}

        if principal.role == UserRole.CUSTOMER:
            return {"customer_id": principal.id}

        if principal.role == UserRole.AGENT:
            return {"agent_id": principal.id}

        return {"id": None}


def require_agent_of(parcel, principal: Principal) -> None:
    """Only the agent currently assigned to the parcel may drive it."""
    if principal.role != UserRole.AGENT or parcel.agent_id is None or parcel.agent_id != principal.id:
        raise ForbiddenError(
            "This parcel is not assigned to you",
            details={"parcel_id": getattr(parcel, "id", None)}
        )


def require_roles(principal: Principal, *roles: UserRole, action: Optional[str] = None) -> None:
    """Raise ForbiddenError unless the principal holds one of ``roles``."""
    if principal.role not in roles:
        raise ForbiddenError(
            f"Access denied. Required role: {', '.join(r.value for r in roles)}",
            details={"action": action} if action else None
        )
