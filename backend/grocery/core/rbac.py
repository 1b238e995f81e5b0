"""Role-Based Access Control (RBAC) utilities.

The HTTP layer never decodes tokens itself. A ``PrincipalResolver`` is handed
to ``create_app`` and stored on ``app.state``; route dependencies ask it for
the current ``Principal``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, FrozenSet, Optional, Protocol

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from grocery.core.errors import Forbidden, Unauthenticated
from grocery.core.security import decode_access_token
from grocery.db.session import DbSession

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """User roles for RBAC."""

    CUSTOMER = "customer"
    COURIER = "courier"
    STAFF = "staff"
    ADMIN = "admin"


class Permission(str, Enum):
    """Fine-grained permissions granted to staff accounts."""

    MANAGE_ORDERS = "manage_orders"
    MANAGE_WAREHOUSE = "manage_warehouse"
    MANAGE_COURIERS = "manage_couriers"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller.

    Attributes:
        user_id: The user's database ID.
        role: The user's role.
        permissions: Explicit permission grants (admins implicitly hold all).
        is_active: False for accounts blocked by an administrator.
        email: The user's email address.
    """

    user_id: int
    role: UserRole
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    is_active: bool = True
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_permission(self, permission: Permission) -> bool:
        if self.is_admin:
            return True
        return self.role == UserRole.STAFF and permission.value in self.permissions


class PrincipalResolver(Protocol):
    """Resolves the caller of a request or raises Unauthenticated/Forbidden."""

    def resolve(self, request: Request, db: Session) -> Principal:
        ...


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


class JWTPrincipalResolver:
    """Default resolver: HS256 bearer token checked against the users table.

    A token is rejected when the user no longer exists, when the account is
    disabled, or when its ``session_version`` claim is stale.
    """

    def resolve(self, request: Request, db: Session) -> Principal:
        token = _bearer_token(request)
        if token is None:
            raise Unauthenticated()

        payload = decode_access_token(token)
        if payload is None:
            raise Unauthenticated("Invalid token")

        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise Unauthenticated("Invalid token payload")

        from grocery.models.user import User

        user = db.get(User, user_id)
        if user is None:
            raise Unauthenticated("User not found")
        if not user.is_active:
            raise Forbidden("Account is disabled by an administrator")
        if int(payload.get("session_version", -1)) != user.session_version:
            raise Unauthenticated("Session has ended, sign in again")

        return Principal(
            user_id=user.id,
            role=user.role,
            permissions=frozenset(user.permissions or []),
            is_active=user.is_active,
            email=user.email,
        )


def get_current_principal(request: Request, db: DbSession) -> Principal:
    """Resolve the caller using the resolver configured on the application."""
    resolver: PrincipalResolver = request.app.state.principal_resolver
    principal = resolver.resolve(request, db)
    if not principal.is_active:
        raise Forbidden("Account is disabled by an administrator")
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def require_roles(*roles: UserRole):
    """Dependency to require one of the given roles (admins always pass)."""

    def role_checker(principal: CurrentPrincipal) -> Principal:
        if principal.is_admin or principal.role in roles:
            return principal
        raise Forbidden()

    return role_checker


def require_permission(permission: Permission):
    """Dependency to require a staff permission (admins always pass)."""

    def permission_checker(principal: CurrentPrincipal) -> Principal:
        if not principal.has_permission(permission):
            raise Forbidden(f"Requires permission {permission.value}")
        return principal

    return permission_checker


# Common dependencies
RequireCourier = Annotated[Principal, Depends(require_roles(UserRole.COURIER))]
RequireOrderManager = Annotated[Principal, Depends(require_permission(Permission.MANAGE_ORDERS))]
RequireWarehouseManager = Annotated[Principal, Depends(require_permission(Permission.MANAGE_WAREHOUSE))]
RequireCourierManager = Annotated[Principal, Depends(require_permission(Permission.MANAGE_COURIERS))]
