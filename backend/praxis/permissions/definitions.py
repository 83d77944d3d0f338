# Overview: Permission definitions for the document engine.
# Each permission is defined as: (code, name, description, category)


class PermissionCategory:
    DOCUMENTS = "DOCUMENTS"
    APPROVALS = "APPROVALS"
    BILLING = "BILLING"
    USERS = "USERS"


CREATE_DOCUMENTS = "CREATE_DOCUMENTS"
EDIT_ALL_DOCUMENTS = "EDIT_ALL_DOCUMENTS"
APPROVE_ANY_DOCUMENT = "APPROVE_ANY_DOCUMENT"
APPROVE_ON_BEHALF_OF_CLIENT = "APPROVE_ON_BEHALF_OF_CLIENT"
MARK_BILLS_PAID = "MARK_BILLS_PAID"
MANAGE_USERS = "MANAGE_USERS"


PERMISSION_DEFINITIONS = [
    (
        CREATE_DOCUMENTS,
        "Create Documents",
        "Create proposals and bills and edit your own drafts",
        PermissionCategory.DOCUMENTS,
    ),
    (
        EDIT_ALL_DOCUMENTS,
        "Edit All Documents",
        "Edit line items and pricing of drafts created by anyone",
        PermissionCategory.DOCUMENTS,
    ),
    (
        APPROVE_ANY_DOCUMENT,
        "Approve Any Document",
        "Record internal approval decisions without being a required approver",
        PermissionCategory.APPROVALS,
    ),
    (
        APPROVE_ON_BEHALF_OF_CLIENT,
        "Approve On Behalf Of Client",
        "Record the client's decision on a proposal awaiting the client",
        PermissionCategory.APPROVALS,
    ),
    (
        MARK_BILLS_PAID,
        "Mark Bills Paid",
        "Move approved bills to PAID",
        PermissionCategory.BILLING,
    ),
    (
        MANAGE_USERS,
        "Manage Users",
        "Create users and change permission overrides",
        PermissionCategory.USERS,
    ),
]
