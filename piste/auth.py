"""
Caller identity and access rules.

Authentication itself lives in front of this service; the gateway forwards the
resolved identity as headers. This module only turns those headers into a
CallerIdentity and answers "may this caller read / write this tournament".
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from piste.errors import AuthenticationRequired, AuthorizationDenied
from piste.models.tournament import Tournament

SYSTEM_ADMIN = "SYSTEM_ADMIN"
ORGANIZATION_ADMIN = "ORGANIZATION_ADMIN"

WRITE_ROLES = frozenset({SYSTEM_ADMIN, ORGANIZATION_ADMIN})


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: str
    organization_id: Optional[str] = None

    @property
    def is_system_admin(self) -> bool:
        return self.role == SYSTEM_ADMIN


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_organization_id: Optional[str] = Header(default=None),
) -> CallerIdentity:
    """FastAPI dependency: resolve the forwarded identity or reject with 401."""
    if not x_user_id or not x_user_role:
        raise AuthenticationRequired("Authentication required")
    return CallerIdentity(
        user_id=x_user_id,
        role=x_user_role.strip().upper(),
        organization_id=x_organization_id or None,
    )


def require_write_role(caller: CallerIdentity) -> None:
    """Role check that needs no tournament (first generation precondition)."""
    if caller.role not in WRITE_ROLES:
        raise AuthorizationDenied(f"Insufficient permissions: role '{caller.role}' cannot modify competitions")


def require_read_access(caller: CallerIdentity, tournament: Tournament) -> None:
    if caller.is_system_admin or tournament.is_public:
        return
    if caller.organization_id and caller.organization_id == tournament.organization_id:
        return
    raise AuthorizationDenied("Access denied")


def require_write_access(caller: CallerIdentity, tournament: Tournament) -> None:
    """Write needs a write role and, unless system admin, the owning organization."""
    require_write_role(caller)
    if caller.is_system_admin:
        return
    if caller.organization_id != tournament.organization_id:
        raise AuthorizationDenied("Access denied: tournament belongs to another organization")
