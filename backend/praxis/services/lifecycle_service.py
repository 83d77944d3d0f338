# Overview: Service-layer operations for lifecycle; the document state machine.

"""
Document Lifecycle State Machine

WHY: A proposal or bill moves through its states only through the entry
points in this module. FinancialDocument.status is read-only; the one
writer is _transition(), which checks the per-kind table below. Callers
cannot skip a state by assigning the column.

PROPOSAL:
    DRAFT -> SUBMITTED -> PENDING_CLIENT -> APPROVED
                       |                 -> REJECTED
                       -> APPROVED        (no internal approval required)
                       -> REJECTED        (internal veto)

BILL:
    DRAFT -> SUBMITTED -> APPROVED -> PAID
                       -> DRAFT           (internal veto)

TRIGGERS:
- submit / resubmit / mark_paid               explicit user actions
- on_consensus_satisfied / on_consensus_vetoed consensus_service signals
- apply_client_decision                        token_service signal

The signal handlers run INSIDE the caller's unit of work and never commit.
They collect PendingNotification values that the caller dispatches after
commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from flask import current_app

from ..errors import AuthorizationError, PolicyViolation, ValidationError
from ..extensions import db
from ..models import ApprovalRecord, Client, FinancialDocument, Lead, Project, User
from ..models.auth import ROLE_CLIENT
from ..models.documents import (
    KIND_PROPOSAL,
    KIND_BILL,
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    STATUS_PENDING_CLIENT,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_PAID,
    POLICY_ALL,
    VALID_POLICIES,
    CLIENT_NOT_REQUESTED,
    CLIENT_APPROVED,
    CLIENT_REJECTED,
    DECISION_APPROVED,
    DECISION_REJECTED,
)
from ..models.parties import LEAD_STATUS_CONVERTED
from ..permissions import EDIT_ALL_DOCUMENTS, MARK_BILLS_PAID
from . import permission_service
from .concurrency import run_in_document_transaction
from .ledger_service import ensure_can_edit
from .notification_service import PendingNotification
from .token_service import IssuedToken, mint
from praxis.time_utils import utcnow


TRANSITIONS = {
    KIND_PROPOSAL: {
        STATUS_DRAFT: {STATUS_SUBMITTED},
        STATUS_SUBMITTED: {STATUS_PENDING_CLIENT, STATUS_APPROVED, STATUS_REJECTED},
        STATUS_PENDING_CLIENT: {STATUS_APPROVED, STATUS_REJECTED},
        STATUS_APPROVED: set(),
        STATUS_REJECTED: set(),
    },
    KIND_BILL: {
        STATUS_DRAFT: {STATUS_SUBMITTED},
        STATUS_SUBMITTED: {STATUS_APPROVED, STATUS_DRAFT},
        STATUS_APPROVED: {STATUS_PAID},
        STATUS_PAID: set(),
    },
}


@dataclass
class TransitionResult:
    document: FinancialDocument
    notifications: list[PendingNotification] = field(default_factory=list)
    client_token: IssuedToken | None = None


def allowed_transitions(kind: str, status: str) -> set[str]:
    return set(TRANSITIONS.get(kind, {}).get(status, set()))


def can_transition(document: FinancialDocument, to_status: str) -> bool:
    return to_status in allowed_transitions(document.kind, document.status)


def _transition(document: FinancialDocument, to_status: str, *, now: datetime) -> None:
    from_status = document.status
    if not can_transition(document, to_status):
        raise PolicyViolation(f"Cannot move {document.kind.lower()} from {from_status} to {to_status}")

    document._status = to_status
    document.updated_at = now
    if to_status == STATUS_SUBMITTED:
        document.submitted_at = now
    elif to_status == STATUS_APPROVED:
        document.approved_at = now
    elif to_status == STATUS_REJECTED:
        document.rejected_at = now
    elif to_status == STATUS_PAID:
        document.paid_at = now

    current_app.logger.info(
        "Document %s (%s %s) %s -> %s", document.id, document.kind, document.number, from_status, to_status
    )


def _resolve_approvers(approver_ids: Iterable) -> list[int]:
    ids = []
    for raw in approver_ids:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError("approver_ids must be a list of user ids", field="approver_ids")
        if raw not in ids:
            ids.append(raw)
    if not ids:
        return ids

    found = db.session.query(User).filter(
        User.id.in_(ids),
        User.is_active.is_(True),
        User.role != ROLE_CLIENT,
    ).count()
    if found != len(ids):
        raise ValidationError("One or more selected approvers are invalid", field="approver_ids")
    return ids


def configure_approval(document: FinancialDocument, approver_ids, policy) -> None:
    """approver_ids/policy of None keep what the document already has."""
    if approver_ids is None:
        approver_ids = document.required_approver_ids or []
    if policy is None:
        policy = document.internal_approval_type or POLICY_ALL
    policy = str(policy).upper()
    if policy not in VALID_POLICIES:
        raise ValidationError(f"policy must be one of {', '.join(sorted(VALID_POLICIES))}", field="policy")

    ids = _resolve_approvers(approver_ids)
    document.required_approver_ids = ids
    document.internal_approval_type = policy
    document.internal_approval_required = bool(ids)
    document.internal_approvals_complete = False


def _clear_approval_records(document: FinancialDocument) -> None:
    records = db.session.query(ApprovalRecord).filter_by(document_id=document.id).all()
    for record in records:
        db.session.delete(record)
    db.session.flush()


def _reset_client_decision(document: FinancialDocument) -> None:
    document.client_approval_status = CLIENT_NOT_REQUESTED
    document.client_approval_token_hash = None
    document.client_approval_token_expires_at = None
    document.client_decided_at = None
    document.client_rejection_reason = None
    document.client_decision_by_user_id = None


def _internal_requests(document: FinancialDocument) -> list[PendingNotification]:
    approvers = db.session.query(User).filter(User.id.in_(document.required_approver_ids or [])).all()
    return [PendingNotification("send_internal_approval_request", (approver, document)) for approver in approvers]


def _start_consensus(document: FinancialDocument, result: TransitionResult, now: datetime) -> None:
    if document.internal_approval_required:
        result.notifications.extend(_internal_requests(document))
    else:
        # Nothing to wait for: consensus is satisfied on submission
        on_consensus_satisfied(document, result, now=now)


def submit(
    document_id: int,
    approver_ids: list[int] | None = None,
    policy: str | None = None,
    *,
    actor_id: int | None = None,
) -> TransitionResult:
    """DRAFT -> SUBMITTED, then start (or skip) internal consensus."""
    def _op(document: FinancialDocument) -> TransitionResult:
        now = utcnow()
        ensure_can_edit(document, actor_id)
        if document.is_bill and document.client_id is None:
            raise PolicyViolation("A bill needs a client before it can be submitted")
        if document.is_proposal and (document.client_id is None) == (document.lead_id is None):
            raise PolicyViolation("A proposal needs exactly one of client or lead before it can be submitted")

        configure_approval(document, approver_ids, policy)
        _clear_approval_records(document)
        _reset_client_decision(document)
        _transition(document, STATUS_SUBMITTED, now=now)

        result = TransitionResult(document=document)
        _start_consensus(document, result, now)
        return result

    return run_in_document_transaction(document_id, _op)


def resubmit(
    document_id: int,
    approver_ids: list[int] | None = None,
    policy: str | None = None,
    *,
    actor_id: int | None = None,
) -> TransitionResult:
    """
    Restart internal consensus on a SUBMITTED document, optionally with a new
    approver set or policy. Earlier decisions are discarded.
    """
    def _op(document: FinancialDocument) -> TransitionResult:
        now = utcnow()
        if actor_id is not None and actor_id != document.created_by_user_id:
            if not permission_service.user_has_permission(actor_id, EDIT_ALL_DOCUMENTS):
                raise AuthorizationError("Only the creator or an editor with EDIT_ALL_DOCUMENTS may resubmit")
        if document.status != STATUS_SUBMITTED:
            raise PolicyViolation("Only submitted documents can be resubmitted")

        configure_approval(document, approver_ids, policy)
        _clear_approval_records(document)
        document.resubmission_count = (document.resubmission_count or 0) + 1
        document.submitted_at = now
        document.updated_at = now
        current_app.logger.info("Document %s resubmitted (%s)", document.id, document.resubmission_count)

        result = TransitionResult(document=document)
        _start_consensus(document, result, now)
        return result

    return run_in_document_transaction(document_id, _op)


def on_consensus_satisfied(document: FinancialDocument, result: TransitionResult, *, now: datetime) -> None:
    document.internal_approvals_complete = True

    if document.is_bill:
        _transition(document, STATUS_APPROVED, now=now)
        return

    if not document.internal_approval_required:
        _transition(document, STATUS_APPROVED, now=now)
        _after_proposal_approved(document, now=now)
        return

    _transition(document, STATUS_PENDING_CLIENT, now=now)
    issued = mint(document, now=now)
    result.client_token = issued
    recipient = document.client or document.lead
    result.notifications.append(PendingNotification("send_approval_request", (recipient, document, issued.token)))


def on_consensus_vetoed(document: FinancialDocument, result: TransitionResult, *, now: datetime) -> None:
    document.internal_approvals_complete = False
    if document.is_bill:
        _transition(document, STATUS_DRAFT, now=now)
    else:
        _transition(document, STATUS_REJECTED, now=now)
    if document.created_by is not None:
        result.notifications.append(
            PendingNotification("send_decision_notice", (document.created_by, document, DECISION_REJECTED))
        )


def apply_client_decision(
    document: FinancialDocument,
    decision: str,
    reason: str | None,
    *,
    decided_by_user_id: int | None,
    now: datetime,
) -> list[PendingNotification]:
    """PENDING_CLIENT -> APPROVED | REJECTED. The caller has validated the token."""
    document.client_decided_at = now
    document.client_decision_by_user_id = decided_by_user_id

    if decision == DECISION_APPROVED:
        document.client_approval_status = CLIENT_APPROVED
        _transition(document, STATUS_APPROVED, now=now)
        _after_proposal_approved(document, now=now)
    else:
        document.client_approval_status = CLIENT_REJECTED
        document.client_rejection_reason = reason
        _transition(document, STATUS_REJECTED, now=now)

    notifications = []
    if document.created_by is not None:
        notifications.append(PendingNotification("send_decision_notice", (document.created_by, document, decision)))
    return notifications


def _convert_lead(document: FinancialDocument, now: datetime) -> None:
    lead = db.session.get(Lead, document.lead_id)
    if lead is None:
        return
    if lead.status == LEAD_STATUS_CONVERTED and lead.converted_to_client_id:
        document.client_id = lead.converted_to_client_id
        return

    client = Client(
        name=lead.name,
        email=lead.email,
        company=lead.company,
        billing_address_line=lead.address_line,
        billing_city=lead.city,
        billing_country=lead.country,
        created_by_user_id=document.created_by_user_id,
    )
    db.session.add(client)
    db.session.flush()

    lead.status = LEAD_STATUS_CONVERTED
    lead.converted_to_client_id = client.id
    lead.converted_at = now
    document.client_id = client.id
    current_app.logger.info("Lead %s converted to client %s", lead.id, client.id)


def _after_proposal_approved(document: FinancialDocument, *, now: datetime) -> None:
    """An approved proposal owns a client and a project. Same unit of work."""
    if document.client_id is None and document.lead_id is not None:
        _convert_lead(document, now)

    if document.client_id is None:
        return

    project = db.session.query(Project).filter_by(proposal_id=document.id).first()
    if project is None:
        project = Project(
            name=document.title,
            description=document.description,
            client_id=document.client_id,
            proposal_id=document.id,
            currency=document.currency,
            start_date=now.date(),
        )
        db.session.add(project)
        db.session.flush()
        current_app.logger.info("Project %s created from proposal %s", project.id, document.id)
    document.project_id = project.id


def mark_paid(document_id: int, *, actor_id: int | None = None) -> FinancialDocument:
    """APPROVED bill -> PAID. Bookkeeping only; no money moves."""
    if actor_id is not None:
        permission_service.require_permission(actor_id, MARK_BILLS_PAID)

    def _op(document: FinancialDocument) -> FinancialDocument:
        if not document.is_bill:
            raise PolicyViolation("Only bills can be marked paid")
        _transition(document, STATUS_PAID, now=utcnow())
        return document

    return run_in_document_transaction(document_id, _op)
