"""
Document state machine tests.

Verifies:
- status is only changed through lifecycle entry points
- No-approval shortcut: SUBMITTED -> APPROVED directly, no client link
- Bills: DRAFT -> SUBMITTED -> APPROVED -> PAID, veto back to DRAFT
- Resubmission restarts consensus
"""

import pytest

from praxis.errors import AuthorizationError, PolicyViolation, ValidationError
from praxis.models import ApprovalRecord, Project
from praxis.models.auth import ROLE_CLIENT
from praxis.models.documents import (
    CLIENT_NOT_REQUESTED,
    KIND_BILL,
    KIND_PROPOSAL,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_PAID,
    STATUS_PENDING_CLIENT,
    STATUS_REJECTED,
    STATUS_SUBMITTED,
)
from praxis.services import consensus_service, ledger_service, lifecycle_service


class TestTransitionTable:

    def test_status_cannot_be_assigned(self, make_proposal):
        proposal = make_proposal()
        with pytest.raises(AttributeError):
            proposal.status = STATUS_APPROVED

    @pytest.mark.parametrize(
        "kind,status,expected",
        [
            (KIND_PROPOSAL, STATUS_DRAFT, {STATUS_SUBMITTED}),
            (KIND_PROPOSAL, STATUS_PENDING_CLIENT, {STATUS_APPROVED, STATUS_REJECTED}),
            (KIND_PROPOSAL, STATUS_APPROVED, set()),
            (KIND_BILL, STATUS_SUBMITTED, {STATUS_APPROVED, STATUS_DRAFT}),
            (KIND_BILL, STATUS_APPROVED, {STATUS_PAID}),
            (KIND_BILL, STATUS_PAID, set()),
        ],
    )
    def test_allowed_transitions(self, kind, status, expected):
        assert lifecycle_service.allowed_transitions(kind, status) == expected

    def test_bills_never_wait_on_client(self):
        assert STATUS_PENDING_CLIENT not in lifecycle_service.allowed_transitions(KIND_BILL, STATUS_SUBMITTED)


class TestSubmit:

    def test_proposal_without_approvers_is_approved_directly(self, make_proposal, staff, db_session):
        proposal = make_proposal(items=[{"description": "X", "amount": "500"}])

        result = lifecycle_service.submit(proposal.id, [], actor_id=staff.id)

        assert proposal.status == STATUS_APPROVED
        assert proposal.internal_approvals_complete is True
        assert proposal.client_approval_status == CLIENT_NOT_REQUESTED
        assert proposal.client_approval_token_hash is None
        assert result.client_token is None
        assert proposal.approved_at is not None
        assert db_session.query(Project).filter_by(proposal_id=proposal.id).count() == 1

    def test_bill_without_approvers_is_approved_then_paid(self, make_bill, staff, manager):
        bill = make_bill(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(bill.id, actor_id=staff.id)
        assert bill.status == STATUS_APPROVED

        lifecycle_service.mark_paid(bill.id, actor_id=manager.id)
        assert bill.status == STATUS_PAID
        assert bill.paid_at is not None

    def test_approvers_configured_on_draft_are_kept(self, make_proposal, staff, approvers):
        proposal = make_proposal(approver_ids=[approvers[0].id], policy="any")
        assert proposal.internal_approval_type == "ANY"

        lifecycle_service.submit(proposal.id, actor_id=staff.id)

        assert proposal.status == STATUS_SUBMITTED
        assert proposal.required_approver_ids == [approvers[0].id]
        assert proposal.internal_approval_required is True

    def test_cannot_submit_twice(self, make_proposal, staff, approvers):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [approvers[0].id], actor_id=staff.id)
        with pytest.raises(PolicyViolation):
            lifecycle_service.submit(proposal.id, [approvers[0].id], actor_id=staff.id)

    def test_non_owner_cannot_submit(self, make_proposal, make_user):
        proposal = make_proposal()
        with pytest.raises(AuthorizationError):
            lifecycle_service.submit(proposal.id, [], actor_id=make_user().id)
        assert proposal.status == STATUS_DRAFT

    def test_client_user_cannot_approve_internally(self, make_proposal, make_user, staff):
        proposal = make_proposal()
        portal_user = make_user(ROLE_CLIENT)
        with pytest.raises(ValidationError) as exc:
            lifecycle_service.submit(proposal.id, [portal_user.id], actor_id=staff.id)
        assert exc.value.field == "approver_ids"
        assert proposal.status == STATUS_DRAFT

    @pytest.mark.parametrize("approver_ids", [[99999], ["1"], [True]])
    def test_invalid_approver_ids(self, make_proposal, staff, approver_ids):
        proposal = make_proposal()
        with pytest.raises(ValidationError):
            lifecycle_service.submit(proposal.id, approver_ids, actor_id=staff.id)

    def test_inactive_approver_rejected(self, make_proposal, make_user, staff):
        proposal = make_proposal()
        gone = make_user(is_active=False)
        with pytest.raises(ValidationError):
            lifecycle_service.submit(proposal.id, [gone.id], actor_id=staff.id)

    def test_unknown_policy(self, make_proposal, staff, approvers):
        proposal = make_proposal()
        with pytest.raises(ValidationError) as exc:
            lifecycle_service.submit(proposal.id, [approvers[0].id], "UNANIMOUS", actor_id=staff.id)
        assert exc.value.field == "policy"


class TestVetoAndResubmit:

    def test_vetoed_bill_can_be_fixed_and_resubmitted(self, make_bill, staff, approvers):
        bill = make_bill(items=[{"description": "X", "amount": "100"}])
        lifecycle_service.submit(bill.id, [approvers[0].id], actor_id=staff.id)
        consensus_service.submit(bill.id, approvers[0].id, "REJECTED", "Rate too high")
        assert bill.status == STATUS_DRAFT

        ledger_service.edit_item(bill.id, bill.items[0].id, {"amount": "80"}, actor_id=staff.id)
        lifecycle_service.submit(bill.id, actor_id=staff.id)

        assert bill.status == STATUS_SUBMITTED
        assert consensus_service.list_records(bill.id) == []

    def test_vetoed_proposal_is_final(self, make_proposal, staff, approvers):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [approvers[0].id], actor_id=staff.id)
        consensus_service.submit(proposal.id, approvers[0].id, "REJECTED", "No")
        assert proposal.status == STATUS_REJECTED
        with pytest.raises(PolicyViolation):
            lifecycle_service.submit(proposal.id, actor_id=staff.id)

    def test_resubmit_clears_records_and_counts(self, make_proposal, staff, approvers, db_session):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [a.id for a in approvers], "ALL", actor_id=staff.id)
        consensus_service.submit(proposal.id, approvers[0].id, "APPROVED")

        result = lifecycle_service.resubmit(proposal.id, [approvers[1].id], "ALL", actor_id=staff.id)

        assert proposal.status == STATUS_SUBMITTED
        assert proposal.resubmission_count == 1
        assert proposal.required_approver_ids == [approvers[1].id]
        assert db_session.query(ApprovalRecord).filter_by(document_id=proposal.id).count() == 0
        assert [n.args[0].id for n in result.notifications] == [approvers[1].id]

    def test_resubmit_without_approvers_completes_consensus(self, make_proposal, staff, approvers):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [approvers[0].id], actor_id=staff.id)

        lifecycle_service.resubmit(proposal.id, [], actor_id=staff.id)

        assert proposal.status == STATUS_APPROVED

    def test_resubmit_requires_submitted(self, make_proposal, staff):
        proposal = make_proposal()
        with pytest.raises(PolicyViolation):
            lifecycle_service.resubmit(proposal.id, actor_id=staff.id)


class TestMarkPaid:

    def test_staff_cannot_mark_paid(self, make_bill, staff):
        bill = make_bill()
        lifecycle_service.submit(bill.id, actor_id=staff.id)
        with pytest.raises(AuthorizationError):
            lifecycle_service.mark_paid(bill.id, actor_id=staff.id)

    def test_draft_bill_cannot_be_paid(self, make_bill, manager):
        bill = make_bill()
        with pytest.raises(PolicyViolation):
            lifecycle_service.mark_paid(bill.id, actor_id=manager.id)

    def test_proposals_are_never_paid(self, make_proposal, manager, staff):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [], actor_id=staff.id)
        with pytest.raises(PolicyViolation):
            lifecycle_service.mark_paid(proposal.id, actor_id=manager.id)
