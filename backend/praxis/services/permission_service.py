# Overview: Service-layer operations for permission; role defaults plus per-user overrides.

"""
Permission resolution.

WHY: One place decides what a user may do. Role defaults come from
praxis.permissions.DEFAULT_ROLE_PERMISSIONS; per-user overrides (GRANT/DENY)
are applied on top.

DESIGN PRINCIPLES:
- Fail closed: unknown users and inactive users have no permissions
- MANAGE_USERS cannot be granted or denied through overrides
"""

from __future__ import annotations

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User, UserPermissionOverride
from ..permissions import DEFAULT_ROLE_PERMISSIONS, MANAGE_USERS, validate_permission_code
from praxis.time_utils import utcnow


# Admin-level permissions cannot be altered by per-user overrides.
PROTECTED_PERMISSIONS = {
    MANAGE_USERS,
}

OVERRIDE_GRANT = "GRANT"
OVERRIDE_DENY = "DENY"


def get_user_permissions(user_id: int) -> set[str]:
    """Role defaults for the user's role, adjusted by active overrides."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return set()

    permission_codes: set[str] = set(DEFAULT_ROLE_PERMISSIONS.get(user.role, []))

    overrides = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        is_active=True,
    ).all()

    for override in overrides:
        if override.permission_code in PROTECTED_PERMISSIONS:
            continue
        if override.override_type == OVERRIDE_GRANT:
            permission_codes.add(override.permission_code)
        elif override.override_type == OVERRIDE_DENY:
            permission_codes.discard(override.permission_code)

    return permission_codes


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(user_id: int, permission_code: str) -> None:
    """Raise AuthorizationError unless the user holds `permission_code`."""
    if not user_has_permission(user_id, permission_code):
        raise AuthorizationError(f"Permission denied: {permission_code}")


def grant_permission_override(
    *,
    user_id: int,
    permission_code: str,
    granted_by_user_id: int | None,
    override_type: str,
    reason: str | None = None,
) -> UserPermissionOverride:
    """
    Grant or deny a permission via per-user override.

    override_type must be "GRANT" or "DENY". Re-granting reactivates the
    existing row instead of adding a second one.
    """
    if permission_code in PROTECTED_PERMISSIONS:
        raise ValidationError("Permission overrides cannot modify admin permissions", field="permission_code")
    if not validate_permission_code(permission_code):
        raise ValidationError(f"Unknown permission '{permission_code}'", field="permission_code")
    if override_type not in {OVERRIDE_GRANT, OVERRIDE_DENY}:
        raise ValidationError("override_type must be GRANT or DENY", field="override_type")
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")

    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
    ).first()

    if override:
        override.override_type = override_type
        override.granted_by_user_id = granted_by_user_id
        override.granted_at = utcnow()
        override.reason = reason
        override.is_active = True
    else:
        override = UserPermissionOverride(
            user_id=user_id,
            permission_code=permission_code,
            override_type=override_type,
            granted_by_user_id=granted_by_user_id,
            granted_at=utcnow(),
            reason=reason,
            is_active=True,
        )
        db.session.add(override)

    db.session.commit()
    return override


def revoke_permission_override(*, user_id: int, permission_code: str) -> UserPermissionOverride | None:
    override = db.session.query(UserPermissionOverride).filter_by(
        user_id=user_id,
        permission_code=permission_code,
        is_active=True,
    ).first()

    if not override:
        return None

    override.is_active = False
    db.session.commit()
    return override
