"""
Client approval link tests.

Verifies:
- A link validates before its expiry and fails with Expired after it
- Check order: Invalid -> Expired -> AlreadyDecided
- One decision per link; a second one fails with AlreadyDecided
- Rejection needs a reason
- Reissue invalidates the old link
- Staff decisions on behalf of the client follow the same single-use rule
- Approval converts a lead and creates the project
"""

from datetime import timedelta

import pytest

from praxis.errors import (
    AuthorizationError,
    PolicyViolation,
    TokenAlreadyDecided,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from praxis.models import Client, Lead, Project
from praxis.models.documents import (
    CLIENT_APPROVED,
    CLIENT_REJECTED,
    STATUS_APPROVED,
    STATUS_PENDING_CLIENT,
    STATUS_REJECTED,
)
from praxis.models.parties import LEAD_STATUS_CONVERTED
from praxis.services import consensus_service, lifecycle_service, token_service
from praxis.services.session_service import hash_token
from praxis.time_utils import utcnow


@pytest.fixture
def pending_proposal(make_proposal, staff, approvers):
    """A proposal past internal consensus, waiting on the client. Returns (proposal, token)."""
    def _make(**fields):
        proposal = make_proposal(items=[{"description": "Retainer", "amount": "1000"}], **fields)
        lifecycle_service.submit(proposal.id, [approvers[0].id], "ANY", actor_id=staff.id)
        result = consensus_service.submit(proposal.id, approvers[0].id, "APPROVED")
        assert proposal.status == STATUS_PENDING_CLIENT
        return proposal, result.client_token

    return _make


class TestIssue:

    def test_only_hash_is_stored(self, pending_proposal):
        proposal, issued = pending_proposal()
        assert len(issued.token) == 64
        assert proposal.client_approval_token_hash == hash_token(issued.token)
        assert proposal.client_approval_token_hash != issued.token

    def test_thirty_day_horizon(self, pending_proposal):
        proposal, issued = pending_proposal()
        horizon = issued.expires_at - utcnow()
        assert timedelta(days=29, hours=23) < horizon <= timedelta(days=30)
        assert proposal.client_approval_token_expires_at == issued.expires_at

    def test_issue_requires_pending_client(self, make_proposal):
        proposal = make_proposal()
        with pytest.raises(PolicyViolation):
            token_service.issue(proposal.id)

    def test_issue_replaces_previous_link(self, pending_proposal):
        proposal, old = pending_proposal()
        new = token_service.issue(proposal.id)
        assert new.token != old.token
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, old.token)
        token_service.validate(proposal.id, new.token)


class TestValidate:

    def test_valid_before_expiry(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)
        assert authorization.document_id == proposal.id

    def test_expired_after_horizon(self, pending_proposal):
        proposal, issued = pending_proposal()
        with pytest.raises(TokenExpired):
            token_service.validate(proposal.id, issued.token, now=issued.expires_at + timedelta(seconds=1))

    def test_whitespace_is_trimmed(self, pending_proposal):
        proposal, issued = pending_proposal()
        token_service.validate(proposal.id, f"  {issued.token}\n")

    def test_comparison_is_case_sensitive(self, pending_proposal):
        proposal, issued = pending_proposal()
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, issued.token.upper())

    @pytest.mark.parametrize("presented", ["", None, "not-the-token"])
    def test_wrong_or_missing_token(self, pending_proposal, presented):
        proposal, _ = pending_proposal()
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, presented)

    def test_unknown_document_looks_invalid(self, pending_proposal):
        _, issued = pending_proposal()
        with pytest.raises(TokenInvalid):
            token_service.validate(987654, issued.token)

    def test_no_link_stored(self, make_proposal):
        proposal = make_proposal()
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, "anything")

    def test_invalid_checked_before_expired(self, pending_proposal):
        proposal, issued = pending_proposal()
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, "wrong", now=issued.expires_at + timedelta(days=1))

    def test_expired_checked_before_already_decided(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)
        token_service.record_decision(authorization, "APPROVED")
        with pytest.raises(TokenExpired):
            token_service.validate(proposal.id, issued.token, now=issued.expires_at + timedelta(days=1))


class TestRecordDecision:

    def test_single_use(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)

        result = token_service.record_decision(authorization, "APPROVED")
        assert result.decision == "APPROVED"
        assert proposal.status == STATUS_APPROVED
        assert proposal.client_approval_status == CLIENT_APPROVED

        with pytest.raises(TokenAlreadyDecided):
            token_service.record_decision(authorization, "REJECTED", "Changed my mind")
        with pytest.raises(TokenAlreadyDecided):
            token_service.validate(proposal.id, issued.token)
        assert proposal.status == STATUS_APPROVED

    def test_expired_between_validate_and_record(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)
        with pytest.raises(TokenExpired):
            token_service.record_decision(authorization, "APPROVED", now=issued.expires_at + timedelta(minutes=1))
        assert proposal.status == STATUS_PENDING_CLIENT

    def test_rejection_requires_reason(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)
        with pytest.raises(ValidationError) as exc:
            token_service.record_decision(authorization, "REJECTED", "   ")
        assert exc.value.field == "reason"
        assert proposal.status == STATUS_PENDING_CLIENT

    def test_rejection_stores_reason(self, pending_proposal, notifier, staff):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)

        result = token_service.record_decision(authorization, "rejected", "Budget cut")

        assert proposal.status == STATUS_REJECTED
        assert proposal.client_approval_status == CLIENT_REJECTED
        assert proposal.client_rejection_reason == "Budget cut"
        assert proposal.client_decision_by_user_id is None
        [pending] = result.notifications
        assert pending.method == "send_decision_notice"
        assert pending.args[0].id == staff.id

    def test_reissued_link_voids_old_authorization(self, pending_proposal):
        proposal, issued = pending_proposal()
        authorization = token_service.validate(proposal.id, issued.token)
        token_service.issue(proposal.id)
        with pytest.raises(TokenInvalid):
            token_service.record_decision(authorization, "APPROVED")


class TestPostApproval:

    def test_client_proposal_gets_project(self, pending_proposal, db_session, client_party):
        proposal, issued = pending_proposal()
        token_service.record_decision(token_service.validate(proposal.id, issued.token), "APPROVED")

        project = db_session.query(Project).filter_by(proposal_id=proposal.id).one()
        assert project.client_id == client_party.id
        assert proposal.project_id == project.id

    def test_lead_is_converted(self, pending_proposal, lead, db_session):
        proposal, issued = pending_proposal(lead_id=lead.id)
        token_service.record_decision(token_service.validate(proposal.id, issued.token), "APPROVED")

        db_session.expire_all()
        converted = db_session.get(Lead, lead.id)
        assert converted.status == LEAD_STATUS_CONVERTED
        assert converted.converted_to_client_id == proposal.client_id
        client = db_session.get(Client, proposal.client_id)
        assert client.name == "Beta Prospect"
        assert proposal.lead_id == lead.id
        assert db_session.query(Project).filter_by(proposal_id=proposal.id).one().client_id == client.id

    def test_lead_receives_link_until_converted(self, pending_proposal, lead, manager):
        proposal, _ = pending_proposal(lead_id=lead.id)
        assert proposal.client_id is None

        _, [pending] = token_service.reissue(proposal.id, actor_id=manager.id)

        assert isinstance(pending.args[0], Lead)
        assert pending.args[0].id == lead.id


class TestReissue:

    def test_reissue_sends_new_link(self, pending_proposal, manager):
        proposal, old = pending_proposal()
        issued, notifications = token_service.reissue(proposal.id, actor_id=manager.id)

        assert issued.token != old.token
        [pending] = notifications
        assert pending.method == "send_approval_request"
        assert pending.args[2] == issued.token
        with pytest.raises(TokenInvalid):
            token_service.validate(proposal.id, old.token)

    def test_reissue_after_expiry_restores_access(self, pending_proposal, manager, db_session):
        proposal, old = pending_proposal()
        proposal.client_approval_token_expires_at = utcnow() - timedelta(days=1)
        db_session.commit()
        with pytest.raises(TokenExpired):
            token_service.validate(proposal.id, old.token)

        issued, _ = token_service.reissue(proposal.id, actor_id=manager.id)
        token_service.validate(proposal.id, issued.token)

    def test_reissue_needs_permission(self, pending_proposal, make_user):
        proposal, _ = pending_proposal()
        with pytest.raises(AuthorizationError):
            token_service.reissue(proposal.id, actor_id=make_user().id)

    def test_reissue_after_decision_refused(self, pending_proposal, manager):
        proposal, issued = pending_proposal()
        token_service.record_decision(token_service.validate(proposal.id, issued.token), "APPROVED")
        with pytest.raises(PolicyViolation):
            token_service.reissue(proposal.id, actor_id=manager.id)


class TestOnBehalf:

    def test_manager_records_decision_with_attribution(self, pending_proposal, manager):
        proposal, issued = pending_proposal()

        token_service.record_decision_on_behalf(proposal.id, "APPROVED", actor_id=manager.id)

        assert proposal.status == STATUS_APPROVED
        assert proposal.client_decision_by_user_id == manager.id
        with pytest.raises(TokenAlreadyDecided):
            token_service.validate(proposal.id, issued.token)

    def test_second_decision_on_behalf_refused(self, pending_proposal, manager):
        proposal, _ = pending_proposal()
        token_service.record_decision_on_behalf(proposal.id, "REJECTED", "By phone", actor_id=manager.id)
        with pytest.raises(TokenAlreadyDecided):
            token_service.record_decision_on_behalf(proposal.id, "APPROVED", actor_id=manager.id)

    def test_staff_without_permission_refused(self, pending_proposal, staff):
        proposal, _ = pending_proposal()
        with pytest.raises(AuthorizationError):
            token_service.record_decision_on_behalf(proposal.id, "APPROVED", actor_id=staff.id)

    def test_not_waiting_on_client(self, make_proposal, manager):
        proposal = make_proposal()
        with pytest.raises(PolicyViolation):
            token_service.record_decision_on_behalf(proposal.id, "APPROVED", actor_id=manager.id)
