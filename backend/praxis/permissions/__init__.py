# Overview: Permission system package.

from .definitions import (
    PermissionCategory,
    PERMISSION_DEFINITIONS,
    CREATE_DOCUMENTS,
    EDIT_ALL_DOCUMENTS,
    APPROVE_ANY_DOCUMENT,
    APPROVE_ON_BEHALF_OF_CLIENT,
    MARK_BILLS_PAID,
    MANAGE_USERS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "CREATE_DOCUMENTS",
    "EDIT_ALL_DOCUMENTS",
    "APPROVE_ANY_DOCUMENT",
    "APPROVE_ON_BEHALF_OF_CLIENT",
    "MARK_BILLS_PAID",
    "MANAGE_USERS",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "validate_permission_code",
]
