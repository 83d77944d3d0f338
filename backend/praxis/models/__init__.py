from .auth import User, SessionToken, UserPermissionOverride
from .parties import Client, Lead
from .work import Project, TimesheetEntry, ProjectCharge
from .documents import FinancialDocument, LineItem, ApprovalRecord, DocumentSequence

__all__ = [
    'User', 'SessionToken', 'UserPermissionOverride',
    'Client', 'Lead',
    'Project', 'TimesheetEntry', 'ProjectCharge',
    'FinancialDocument', 'LineItem', 'ApprovalRecord', 'DocumentSequence',
]
