# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-based access control.

This module contains pure functions for expanding roles into permissions,
checking permissions, and deciding which roles a user may hand out. Nothing
here touches storage or the permission cache.
"""

from typing import List, Dict, FrozenSet, Iterable, Optional
from dataclasses import dataclass, field
from models.enums import Permission, UserRole


_USER_PERMISSIONS = frozenset({
    Permission.VIEW_OWN_APPLICATIONS.value,
    Permission.EDIT_OWN_APPLICATIONS.value,
    Permission.DELETE_OWN_APPLICATIONS.value,
})

_ADMIN_PERMISSIONS = _USER_PERMISSIONS | frozenset({
    Permission.VIEW_ALL_APPLICATIONS.value,
    Permission.EDIT_ALL_APPLICATIONS.value,
    Permission.DELETE_ALL_APPLICATIONS.value,
    Permission.MANAGE_USERS.value,
    Permission.AUDIT_LOGS.value,
    Permission.PERFORMANCE_MONITORING.value,
})

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    UserRole.USER.value: _USER_PERMISSIONS,
    UserRole.ADMIN.value: _ADMIN_PERMISSIONS,
    UserRole.SUPER_ADMIN.value: frozenset(p.value for p in Permission),
}

ROLE_RANK = {
    UserRole.USER.value: 0,
    UserRole.ADMIN.value: 1,
    UserRole.SUPER_ADMIN.value: 2,
}

ROLE_DISPLAY_NAMES = {
    UserRole.SUPER_ADMIN.value: "Super Administrator",
    UserRole.ADMIN.value: "Administrator",
    UserRole.USER.value: "User",
}

PERMISSION_DISPLAY_NAMES = {
    Permission.VIEW_OWN_APPLICATIONS.value: "View Own Applications",
    Permission.EDIT_OWN_APPLICATIONS.value: "Edit Own Applications",
    Permission.DELETE_OWN_APPLICATIONS.value: "Delete Own Applications",
    Permission.VIEW_ALL_APPLICATIONS.value: "View All Applications",
    Permission.EDIT_ALL_APPLICATIONS.value: "Edit All Applications",
    Permission.DELETE_ALL_APPLICATIONS.value: "Delete All Applications",
    Permission.MANAGE_USERS.value: "Manage Users",
    Permission.MANAGE_ADMINS.value: "Manage Administrators",
    Permission.SYSTEM_SETTINGS.value: "System Settings",
    Permission.AUDIT_LOGS.value: "Audit Logs",
    Permission.PERFORMANCE_MONITORING.value: "Performance Monitoring",
}

# Portal sections and the role needed to see them
ROUTE_MIN_ROLE = {
    "dashboard": UserRole.USER.value,
    "admin": UserRole.ADMIN.value,
    "admin_users": UserRole.SUPER_ADMIN.value,
}


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResolvedPermissions:
    """Role and effective permission set of one identity."""
    role: str
    permissions: FrozenSet[str]

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    def has_permission(self, permission: str) -> bool:
        return _value(permission) in self.permissions

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(_value(p) in self.permissions for p in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return all(_value(p) in self.permissions for p in permissions)

    def to_dict(self) -> Dict[str, object]:
        return {
            "role": self.role,
            "permissions": sorted(self.permissions),
            "is_admin": self.is_admin,
            "is_super_admin": self.is_super_admin,
        }


def _value(item) -> str:
    return item.value if hasattr(item, "value") else item


def normalize_role(role: Optional[str]) -> str:
    """
    Map a stored role value onto a known role.

    Unknown or missing values collapse to ``user`` so a corrupt row can
    never grant more than the base permission set.
    """
    role = _value(role) if role else None
    if role in ROLE_PERMISSIONS:
        return role
    return UserRole.USER.value


def permissions_for_role(role: Optional[str]) -> ResolvedPermissions:
    """
    Expand a role into its permission set.

    Args:
        role: Role value as stored

    Returns:
        ResolvedPermissions for the normalized role
    """
    normalized = normalize_role(role)
    return ResolvedPermissions(role=normalized, permissions=ROLE_PERMISSIONS[normalized])


def default_permissions() -> ResolvedPermissions:
    """Permission set for anonymous or unresolvable identities."""
    return permissions_for_role(UserRole.USER.value)


def higher_role(first: str, second: str) -> str:
    """Return whichever of two roles ranks higher."""
    first, second = normalize_role(first), normalize_role(second)
    return first if ROLE_RANK[first] >= ROLE_RANK[second] else second


def check_permission(granted: Iterable[str], required_permission: str) -> AuthorizationResult:
    """
    Check if a permission set contains a specific permission.

    Args:
        granted: Permissions held by the caller
        required_permission: Permission string to check

    Returns:
        AuthorizationResult indicating if permission is granted
    """
    required_permission = _value(required_permission)
    if required_permission in set(granted):
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing required permission: {required_permission}",
        missing_permissions=[required_permission]
    )


def check_permissions(granted: Iterable[str], required_permissions: List[str], require_all: bool = True) -> AuthorizationResult:
    """
    Check if a permission set satisfies several permissions.

    Args:
        granted: Permissions held by the caller
        required_permissions: List of permission strings to check
        require_all: If True, all permissions are needed. If False, any permission is sufficient.

    Returns:
        AuthorizationResult indicating if permissions are granted
    """
    user_permissions = set(granted)
    required = [_value(p) for p in required_permissions]
    required_set = set(required)

    if require_all:
        missing = required_set - user_permissions
        if not missing:
            return AuthorizationResult(allowed=True)

        return AuthorizationResult(
            allowed=False,
            reason=f"Missing required permissions: {', '.join(sorted(missing))}",
            missing_permissions=sorted(missing)
        )

    if user_permissions & required_set:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing any of required permissions: {', '.join(sorted(required_set))}",
        missing_permissions=sorted(required_set)
    )


def can_assign_role(assigner: ResolvedPermissions, new_role: str, current_role: Optional[str] = None) -> AuthorizationResult:
    """
    Check whether ``assigner`` may set a user's role to ``new_role``.

    Handing out or taking away admin level roles needs ``manage_admins``;
    plain user rows only need ``manage_users``.

    Args:
        assigner: Resolved permissions of the acting user
        new_role: Role being assigned
        current_role: Role currently stored for the target, if any

    Returns:
        AuthorizationResult for the assignment
    """
    if not assigner.has_permission(Permission.MANAGE_USERS.value):
        return AuthorizationResult(
            allowed=False,
            reason="Missing required permission: manage_users",
            missing_permissions=[Permission.MANAGE_USERS.value]
        )

    touches_admin = any(
        ROLE_RANK[normalize_role(role)] > 0
        for role in (new_role, current_role) if role
    )
    if touches_admin and not assigner.has_permission(Permission.MANAGE_ADMINS.value):
        return AuthorizationResult(
            allowed=False,
            reason="Only super administrators can grant or revoke administrator roles",
            missing_permissions=[Permission.MANAGE_ADMINS.value]
        )

    return AuthorizationResult(allowed=True)


def visible_routes(resolved: ResolvedPermissions) -> List[str]:
    """Portal sections the identity is allowed to open."""
    rank = ROLE_RANK[normalize_role(resolved.role)]
    return [route for route, min_role in ROUTE_MIN_ROLE.items() if rank >= ROLE_RANK[min_role]]


def role_display_name(role: Optional[str]) -> str:
    return ROLE_DISPLAY_NAMES[normalize_role(role)]


def permission_display_name(permission: str) -> str:
    permission = _value(permission)
    return PERMISSION_DISPLAY_NAMES.get(permission, permission)
