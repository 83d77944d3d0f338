"""
HTTP API tests.

Verifies:
- Bearer session required on internal routes
- Permission failures report the missing permission
- Client link failures map to 404 / 410 / 409 with distinct codes
- Notifier failures surface as notification_errors, not 500s
"""

from datetime import timedelta

from praxis.models.documents import STATUS_APPROVED, STATUS_PENDING_CLIENT, STATUS_SUBMITTED
from praxis.services import consensus_service, lifecycle_service
from praxis.time_utils import utcnow


TEST_PASSWORD = "Password123!"


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _pending_client(make_proposal, staff, approvers):
    proposal = make_proposal(items=[{"description": "Retainer", "amount": "1000"}])
    lifecycle_service.submit(proposal.id, [approvers[0].id], "ANY", actor_id=staff.id)
    result = consensus_service.submit(proposal.id, approvers[0].id, "APPROVED")
    return proposal, result.client_token.token


class TestAuthRoutes:

    def test_login_me_logout(self, client, make_user):
        user = make_user(email="login@praxis.test")

        response = client.post("/api/auth/login", json={"email": "Login@praxis.test", "password": TEST_PASSWORD})
        assert response.status_code == 200
        body = response.get_json()
        assert body["user"]["id"] == user.id
        assert "CREATE_DOCUMENTS" in body["permissions"]
        headers = auth_headers(body["token"])

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.get_json()["user"]["email"] == "login@praxis.test"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_wrong_password(self, client, make_user):
        make_user(email="someone@praxis.test")
        response = client.post("/api/auth/login", json={"email": "someone@praxis.test", "password": "nope"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid credentials"

    def test_missing_credentials(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "x@praxis.test"}).status_code == 400

    def test_bearer_required(self, client, db_session):
        assert client.get("/api/documents").status_code == 401
        assert client.get("/api/documents", headers=auth_headers("forged")).status_code == 401


class TestDocumentRoutes:

    def test_create_and_fetch_proposal(self, client, headers_for, staff, client_party):
        headers = headers_for(staff)
        response = client.post(
            "/api/documents/proposals",
            headers=headers,
            json={
                "title": "Brand refresh",
                "client_id": client_party.id,
                "tax_rate": "20",
                "items": [{"description": "Workshop", "quantity": "2", "rate": "500"}],
            },
        )
        assert response.status_code == 201
        document = response.get_json()["document"]
        assert document["subtotal"] == "1000.00"
        assert document["tax_amount"] == "200.00"
        assert document["amount"] == "1200.00"
        assert document["status"] == "DRAFT"
        assert document["consensus"]["satisfied"] is True

        fetched = client.get(f"/api/documents/{document['id']}", headers=headers)
        assert fetched.status_code == 200
        assert len(fetched.get_json()["document"]["items"]) == 1

        listed = client.get("/api/documents?kind=PROPOSAL", headers=headers)
        assert [d["id"] for d in listed.get_json()["documents"]] == [document["id"]]

    def test_validation_error_names_field(self, client, headers_for, staff):
        response = client.post("/api/documents/bills", headers=headers_for(staff), json={"title": "No client"})
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "validation_error"
        assert body["field"] == "client_id"

    def test_missing_document(self, client, headers_for, staff):
        response = client.get("/api/documents/4242", headers=headers_for(staff))
        assert response.status_code == 404

    def test_mark_paid_needs_permission(self, client, headers_for, staff, make_bill):
        bill = make_bill(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(bill.id, actor_id=staff.id)

        response = client.post(f"/api/documents/{bill.id}/mark-paid", headers=headers_for(staff))

        assert response.status_code == 403
        assert response.get_json()["required_permission"] == "MARK_BILLS_PAID"

    def test_manager_marks_bill_paid(self, client, headers_for, staff, manager, make_bill):
        bill = make_bill(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(bill.id, actor_id=staff.id)

        response = client.post(f"/api/documents/{bill.id}/mark-paid", headers=headers_for(manager))

        assert response.status_code == 200
        assert response.get_json()["document"]["status"] == "PAID"

    def test_edit_after_submit_conflicts(self, client, headers_for, staff, make_bill, approvers):
        bill = make_bill(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(bill.id, [approvers[0].id], actor_id=staff.id)

        response = client.post(
            f"/api/documents/{bill.id}/items",
            headers=headers_for(staff),
            json={"description": "Extra", "amount": "5"},
        )
        assert response.status_code == 409

    def test_submit_route(self, client, headers_for, staff, approvers, make_proposal, notifier):
        proposal = make_proposal(items=[{"description": "X", "amount": "10"}])

        response = client.post(
            f"/api/documents/{proposal.id}/submit",
            headers=headers_for(staff),
            json={"approver_ids": [a.id for a in approvers], "policy": "MAJORITY"},
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["document"]["status"] == STATUS_SUBMITTED
        assert body["notification_errors"] == []
        assert len(notifier.of("send_internal_approval_request")) == 3

    def test_submit_rejects_non_integer_ids(self, client, headers_for, staff, make_proposal):
        proposal = make_proposal()
        response = client.post(
            f"/api/documents/{proposal.id}/submit",
            headers=headers_for(staff),
            json={"approver_ids": ["2"]},
        )
        assert response.status_code == 400


class TestApprovalRoutes:

    def test_approver_decides(self, client, headers_for, staff, approvers, make_proposal):
        proposal = make_proposal(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(proposal.id, [a.id for a in approvers[:2]], "ALL", actor_id=staff.id)

        response = client.post(
            f"/api/documents/{proposal.id}/approvals",
            headers=headers_for(approvers[0]),
            json={"decision": "APPROVED", "comments": "Fine"},
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["approval"]["decision"] == "APPROVED"
        assert body["consensus"]["approved"] == 1
        assert body["document"]["status"] == STATUS_SUBMITTED

        listed = client.get(f"/api/documents/{proposal.id}/approvals", headers=headers_for(staff))
        assert len(listed.get_json()["approvals"]) == 1

    def test_outsider_forbidden(self, client, headers_for, staff, approvers, make_proposal, make_user):
        proposal = make_proposal()
        lifecycle_service.submit(proposal.id, [approvers[0].id], actor_id=staff.id)

        response = client.post(
            f"/api/documents/{proposal.id}/approvals",
            headers=headers_for(make_user()),
            json={"decision": "APPROVED"},
        )
        assert response.status_code == 403

    def test_notifier_failure_is_reported(self, client, headers_for, staff, approvers, make_proposal, failing_notifier):
        proposal = make_proposal(items=[{"description": "X", "amount": "10"}])
        lifecycle_service.submit(proposal.id, [approvers[0].id], "ANY", actor_id=staff.id)

        response = client.post(
            f"/api/documents/{proposal.id}/approvals",
            headers=headers_for(approvers[0]),
            json={"decision": "APPROVED"},
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["document"]["status"] == STATUS_PENDING_CLIENT
        assert len(body["notification_errors"]) == 1

    def test_manager_reissues_link(self, client, headers_for, manager, staff, approvers, make_proposal, notifier):
        proposal, old_token = _pending_client(make_proposal, staff, approvers)

        response = client.post(f"/api/documents/{proposal.id}/client-link", headers=headers_for(manager))

        assert response.status_code == 200
        assert response.get_json()["expires_at"].endswith("Z")
        stale = client.get(f"/api/client-approval/{proposal.id}?token={old_token}")
        assert stale.status_code == 404

    def test_decision_on_behalf(self, client, headers_for, manager, staff, approvers, make_proposal):
        proposal, _ = _pending_client(make_proposal, staff, approvers)

        response = client.post(
            f"/api/documents/{proposal.id}/client-decision",
            headers=headers_for(manager),
            json={"decision": "APPROVED"},
        )

        assert response.status_code == 200
        assert response.get_json()["document"]["status"] == STATUS_APPROVED


class TestClientApprovalRoutes:

    def test_view_hides_internal_fields(self, client, staff, approvers, make_proposal):
        proposal, token = _pending_client(make_proposal, staff, approvers)

        response = client.get(f"/api/client-approval/{proposal.id}?token={token}")

        assert response.status_code == 200
        view = response.get_json()["proposal"]
        assert view["amount"] == "1000.00"
        assert "required_approver_ids" not in view
        assert "client_approval_token_hash" not in view

    def test_approve_then_already_decided(self, client, staff, approvers, make_proposal, notifier):
        proposal, token = _pending_client(make_proposal, staff, approvers)

        response = client.post(f"/api/client-approval/{proposal.id}", json={"token": token, "decision": "APPROVED"})
        assert response.status_code == 200
        assert response.get_json()["proposal"]["status"] == STATUS_APPROVED
        assert notifier.of("send_decision_notice")

        again = client.post(f"/api/client-approval/{proposal.id}", json={"token": token, "decision": "APPROVED"})
        assert again.status_code == 409
        assert again.get_json()["code"] == "already_decided"

    def test_wrong_token(self, client, staff, approvers, make_proposal):
        proposal, _ = _pending_client(make_proposal, staff, approvers)
        response = client.get(f"/api/client-approval/{proposal.id}?token=deadbeef")
        assert response.status_code == 404
        assert response.get_json()["code"] == "invalid"

    def test_expired_link(self, client, staff, approvers, make_proposal, db_session):
        proposal, token = _pending_client(make_proposal, staff, approvers)
        proposal.client_approval_token_expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        response = client.post(f"/api/client-approval/{proposal.id}", json={"token": token, "decision": "APPROVED"})

        assert response.status_code == 410
        assert response.get_json()["code"] == "expired"

    def test_rejection_without_reason(self, client, staff, approvers, make_proposal):
        proposal, token = _pending_client(make_proposal, staff, approvers)
        response = client.post(f"/api/client-approval/{proposal.id}", json={"token": token, "decision": "REJECTED"})
        assert response.status_code == 400
        assert response.get_json()["field"] == "reason"


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "client_links", "notifier"}

    def test_expired_links_degrade_health(self, client, staff, approvers, make_proposal, db_session):
        proposal, _ = _pending_client(make_proposal, staff, approvers)
        proposal.client_approval_token_expires_at = utcnow() - timedelta(days=1)
        db_session.commit()

        body = client.get("/health").get_json()

        assert body["status"] == "degraded"
        assert body["checks"]["client_links"]["details"]["expired_links"] == 1

    def test_version(self, client):
        assert client.get("/version").get_json()["api_version"] == "1.0.0"
