# Overview: Public (token-authenticated) routes for the client's decision on a proposal.

"""
Client Approval API Routes

No session: the link token IS the credential. Each failure mode is
reported with its own status and code so the client sees an accurate
message:

    404 invalid          unknown document, no link, or wrong token
    410 expired          link older than its horizon
    409 already_decided  a decision was already recorded
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PraxisError, ValidationError
from ..services import token_service, document_service
from ..services.notification_service import dispatch


client_approval_bp = Blueprint("client_approval", __name__, url_prefix="/api/client-approval")


def _public_view(document) -> dict:
    """What the client may see: no internal approval data."""
    data = document.to_dict(include_items=True)
    return {
        key: data[key]
        for key in (
            "id", "number", "title", "description", "currency", "items",
            "subtotal", "discount_value", "tax_rate", "tax_inclusive", "tax_amount", "amount",
            "status", "client_approval_status", "client_approval_token_expires_at",
        )
    }


@client_approval_bp.get("/<int:document_id>")
def view_proposal_route(document_id: int):
    """GET /api/client-approval/<id>?token=..."""
    try:
        token_service.validate(document_id, request.args.get("token"))
        document = document_service.get_document(document_id)
        return jsonify({"proposal": _public_view(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load proposal %s for client", document_id)
        return jsonify({"error": "Internal server error"}), 500


@client_approval_bp.post("/<int:document_id>")
def record_client_decision_route(document_id: int):
    """
    Request body:
    {
        "token": "<from the link>",
        "decision": "APPROVED" | "REJECTED",
        "reason": "..."    (required when rejecting)
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        authorization = token_service.validate(document_id, data.get("token"))
        result = token_service.record_decision(authorization, data.get("decision"), data.get("reason"))
        errors = dispatch(result.notifications)
        return jsonify({
            "proposal": _public_view(result.document),
            "decision": result.decision,
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record client decision on proposal %s", document_id)
        return jsonify({"error": "Internal server error"}), 500
