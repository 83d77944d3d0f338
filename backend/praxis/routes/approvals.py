# Overview: Flask API routes for internal approvals and staff-recorded client decisions.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PraxisError, ValidationError
from ..services import consensus_service, token_service
from ..services.notification_service import dispatch
from ..permissions import APPROVE_ON_BEHALF_OF_CLIENT
from ..decorators import require_auth, require_permission


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/documents")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@approvals_bp.get("/<int:document_id>/approvals")
@require_auth
def list_approvals_route(document_id: int):
    try:
        status = consensus_service.status(document_id)
        records = consensus_service.list_records(document_id)
        return jsonify({
            "approvals": [record.to_dict() for record in records],
            "consensus": status.to_dict(),
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list approvals of document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.post("/<int:document_id>/approvals")
@require_auth
def submit_approval_route(document_id: int):
    """
    Record the current user's internal decision.

    Request body:
    {
        "decision": "APPROVED" | "REJECTED",
        "comments": "Looks good"   (optional)
    }

    Returns:
        200: record stored; consensus re-evaluated
        403: not a required approver and no APPROVE_ANY_DOCUMENT
        409: document is not waiting for internal approval
    """
    try:
        data = _json_body()
        result = consensus_service.submit(
            document_id,
            g.current_user.id,
            data.get("decision"),
            data.get("comments"),
        )
        errors = dispatch(result.notifications)
        return jsonify({
            "approval": result.record.to_dict(),
            "consensus": result.status.to_dict(),
            "document": result.document.to_dict(),
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record approval on document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.post("/<int:document_id>/client-decision")
@require_auth
@require_permission(APPROVE_ON_BEHALF_OF_CLIENT)
def client_decision_on_behalf_route(document_id: int):
    """{"decision": "APPROVED" | "REJECTED", "reason": "..."} (reason required to reject)"""
    try:
        data = _json_body()
        result = token_service.record_decision_on_behalf(
            document_id,
            data.get("decision"),
            data.get("reason"),
            actor_id=g.current_user.id,
        )
        errors = dispatch(result.notifications)
        return jsonify({
            "document": result.document.to_dict(),
            "decision": result.decision,
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record client decision on document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.post("/<int:document_id>/client-link")
@require_auth
@require_permission(APPROVE_ON_BEHALF_OF_CLIENT)
def reissue_client_link_route(document_id: int):
    """Mint a fresh 30-day link and send it to the client. The old link stops working."""
    try:
        issued, notifications = token_service.reissue(document_id, actor_id=g.current_user.id)
        errors = dispatch(notifications)
        return jsonify({
            "expires_at": issued.to_dict()["expires_at"],
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reissue client link for document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500
