# Overview: Default permission sets per role.

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_CLIENT
from .definitions import (
    PERMISSION_DEFINITIONS,
    CREATE_DOCUMENTS,
    EDIT_ALL_DOCUMENTS,
    APPROVE_ANY_DOCUMENT,
    APPROVE_ON_BEHALF_OF_CLIENT,
    MARK_BILLS_PAID,
)


DEFAULT_ROLE_PERMISSIONS = {
    # Admin: everything
    ROLE_ADMIN: [perm[0] for perm in PERMISSION_DEFINITIONS],

    # Manager: everything except user management
    ROLE_MANAGER: [
        CREATE_DOCUMENTS,
        EDIT_ALL_DOCUMENTS,
        APPROVE_ANY_DOCUMENT,
        APPROVE_ON_BEHALF_OF_CLIENT,
        MARK_BILLS_PAID,
    ],

    ROLE_STAFF: [
        CREATE_DOCUMENTS,
    ],

    # Client portal accounts act only through approval links
    ROLE_CLIENT: [],
}
