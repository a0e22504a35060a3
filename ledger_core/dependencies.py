"""
LedgerCore - FastAPI Dependencies

Shared dependencies for database sessions and ledger access checks.

Authentication happens upstream. The gateway forwards its decision as
request headers:
1. X-Organization-Id: the organization the caller was admitted to
2. X-Ledger-Permissions: comma-separated ledger permissions
3. X-User-Id: optional acting user, stored on audit columns
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from fastapi import Depends, Header, HTTPException, Path, status


class LedgerPermission(str, Enum):
    """Ledger capabilities asserted by the caller."""
    READ = "ledger:read"
    WRITE = "ledger:write"


@dataclass(frozen=True)
class OrganizationAccess:
    """The upstream assertion for the current request."""
    organization_id: uuid.UUID
    permissions: FrozenSet[LedgerPermission] = field(default_factory=frozenset)
    user_id: Optional[uuid.UUID] = None

    def allows(self, permission: LedgerPermission) -> bool:
        # write implies read
        if permission == LedgerPermission.READ and LedgerPermission.WRITE in self.permissions:
            return True
        return permission in self.permissions


def _parse_uuid(value: Optional[str], header: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header",
        )


async def get_organization_access(
    x_organization_id: Optional[str] = Header(None),
    x_ledger_permissions: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> OrganizationAccess:
    """
    Build the access assertion from the forwarded headers.

    Raises:
        HTTPException: 401 if no organization was asserted
    """
    organization_id = _parse_uuid(x_organization_id, "X-Organization-Id")
    if organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing organization assertion",
        )

    permissions = set()
    for raw in (x_ledger_permissions or "").split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            permissions.add(LedgerPermission(raw))
        except ValueError:
            # Permissions for other subsystems are ignored
            continue

    return OrganizationAccess(
        organization_id=organization_id,
        permissions=frozenset(permissions),
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
    )


def require_ledger_permission(permission: LedgerPermission):
    """
    Require a ledger permission for the organization in the path.

    Usage:
        @router.get("/accounts")
        async def list_accounts(
            access: OrganizationAccess = Depends(require_ledger_read())
        ):
            ...
    """
    async def permission_checker(
        organization_id: uuid.UUID = Path(..., description="Organization ID"),
        access: OrganizationAccess = Depends(get_organization_access),
    ) -> OrganizationAccess:
        if access.organization_id != organization_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied for this organization",
            )
        if not access.allows(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Missing permission: {permission.value}",
            )
        return access

    return permission_checker


def require_ledger_read():
    """Require permission to read ledger data."""
    return require_ledger_permission(LedgerPermission.READ)


def require_ledger_write():
    """Require permission to change ledger data."""
    return require_ledger_permission(LedgerPermission.WRITE)
