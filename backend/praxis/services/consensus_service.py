# Overview: Service-layer operations for internal approval consensus.

"""
Internal approval consensus.

One ApprovalRecord per (document, approver); a second decision by the same
approver updates the record in place. After every upsert the document's
policy is evaluated over the REQUIRED approvers' records only:

    need(ALL)      = total
    need(ANY)      = 1
    need(MAJORITY) = total // 2 + 1          (approved > total / 2)

    satisfied  <=>  approved >= need
    vetoed     <=>  total - rejected < need  (can no longer be satisfied)

Under ALL a single rejection vetoes. Under ANY only a unanimous rejection
does; under MAJORITY rejections must make a majority unreachable. The two
outcomes are mutually exclusive.

Once the document leaves SUBMITTED (satisfied or vetoed) further decisions
are refused, so a satisfied consensus cannot be undone by a late vote.

Records from approvers outside the required set (acting through
APPROVE_ANY_DOCUMENT) are stored with via_override=True and not counted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Sequence

from ..errors import AuthorizationError, NotFoundError, PolicyViolation, ValidationError
from ..extensions import db
from ..models import ApprovalRecord, FinancialDocument, User
from ..models.documents import (
    POLICY_ALL,
    POLICY_ANY,
    POLICY_MAJORITY,
    STATUS_SUBMITTED,
    DECISION_APPROVED,
    DECISION_REJECTED,
    VALID_DECISIONS,
)
from ..permissions import APPROVE_ANY_DOCUMENT
from . import lifecycle_service, permission_service
from .concurrency import run_in_document_transaction
from .lifecycle_service import TransitionResult
from .notification_service import PendingNotification
from .token_service import IssuedToken
from praxis.time_utils import utcnow


@dataclass(frozen=True)
class ConsensusStatus:
    policy: str
    required: tuple[int, ...]
    approved: int
    rejected: int
    satisfied: bool
    vetoed: bool

    @property
    def pending(self) -> int:
        return len(self.required) - self.approved - self.rejected

    def to_dict(self) -> dict:
        return {
            "policy": self.policy,
            "required": list(self.required),
            "approved": self.approved,
            "rejected": self.rejected,
            "pending": self.pending,
            "satisfied": self.satisfied,
            "vetoed": self.vetoed,
        }


@dataclass
class ConsensusResult:
    record: ApprovalRecord
    status: ConsensusStatus
    document: FinancialDocument
    notifications: list[PendingNotification] = field(default_factory=list)
    client_token: IssuedToken | None = None


def threshold(policy: str, total: int) -> int:
    if policy == POLICY_ALL:
        return total
    if policy == POLICY_ANY:
        return 1
    if policy == POLICY_MAJORITY:
        return total // 2 + 1
    raise ValidationError(f"Unknown policy '{policy}'", field="policy")


def evaluate_policy(policy: str, required_ids: Sequence[int], decisions: Mapping[int, str]) -> ConsensusStatus:
    """Pure evaluation. `decisions` maps approver id -> APPROVED/REJECTED."""
    required = tuple(dict.fromkeys(required_ids))
    approved = sum(1 for approver_id in required if decisions.get(approver_id) == DECISION_APPROVED)
    rejected = sum(1 for approver_id in required if decisions.get(approver_id) == DECISION_REJECTED)
    total = len(required)

    if total == 0:
        return ConsensusStatus(policy, required, 0, 0, satisfied=True, vetoed=False)

    need = threshold(policy, total)
    return ConsensusStatus(
        policy=policy,
        required=required,
        approved=approved,
        rejected=rejected,
        satisfied=approved >= need,
        vetoed=(total - rejected) < need,
    )


def _decisions_for(document_id: int) -> dict[int, str]:
    records = db.session.query(ApprovalRecord).filter_by(document_id=document_id).all()
    return {record.approver_id: record.decision for record in records}


def _status_of(document: FinancialDocument) -> ConsensusStatus:
    return evaluate_policy(
        document.internal_approval_type,
        document.required_approver_ids or [],
        _decisions_for(document.id),
    )


def status(document_id: int) -> ConsensusStatus:
    document = db.session.get(FinancialDocument, document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    return _status_of(document)


def list_records(document_id: int) -> list[ApprovalRecord]:
    return (
        db.session.query(ApprovalRecord)
        .filter_by(document_id=document_id)
        .order_by(ApprovalRecord.id.asc())
        .all()
    )


def submit(
    document_id: int,
    approver_id: int,
    decision: str,
    comments: str | None = None,
    *,
    now: datetime | None = None,
) -> ConsensusResult:
    """
    Record one internal decision and evaluate the policy, as one unit of work.

    Raises:
        ValidationError: decision is not APPROVED/REJECTED
        NotFoundError: unknown document or approver
        AuthorizationError: approver is neither required nor holds APPROVE_ANY_DOCUMENT
        PolicyViolation: the document is not waiting for internal approval
    """
    decision = (decision or "").strip().upper()
    if decision not in VALID_DECISIONS:
        raise ValidationError("decision must be APPROVED or REJECTED", field="decision")
    comments = (comments or "").strip() or None

    def _op(document: FinancialDocument) -> ConsensusResult:
        current = now or utcnow()
        approver = db.session.get(User, approver_id)
        if approver is None or not approver.is_active:
            raise NotFoundError(f"Approver {approver_id} not found")

        is_required = approver_id in (document.required_approver_ids or [])
        if not is_required and not permission_service.user_has_permission(approver_id, APPROVE_ANY_DOCUMENT):
            raise AuthorizationError("You are not a required approver for this document")

        if (
            document.status != STATUS_SUBMITTED
            or not document.internal_approval_required
            or document.internal_approvals_complete
        ):
            raise PolicyViolation(f"Document is {document.status} and not awaiting internal approval")

        record = db.session.query(ApprovalRecord).filter_by(
            document_id=document.id,
            approver_id=approver_id,
        ).first()
        if record is None:
            record = ApprovalRecord(document_id=document.id, approver_id=approver_id)
            db.session.add(record)
        record.decision = decision
        record.comments = comments
        record.via_override = not is_required
        record.decided_at = current
        db.session.flush()

        consensus = _status_of(document)
        transition = TransitionResult(document=document)
        if consensus.vetoed:
            lifecycle_service.on_consensus_vetoed(document, transition, now=current)
        elif consensus.satisfied:
            lifecycle_service.on_consensus_satisfied(document, transition, now=current)

        return ConsensusResult(
            record=record,
            status=consensus,
            document=document,
            notifications=transition.notifications,
            client_token=transition.client_token,
        )

    return run_in_document_transaction(document_id, _op)
