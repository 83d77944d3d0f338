# Overview: Flask API routes for proposals, bills and their line items; parses input and returns JSON responses.

"""
Financial Document API Routes

DESIGN:
- Create proposals and bills (DRAFT), edit header, pricing and items
- Every item/pricing change re-runs the totals engine in the same transaction
- Submit / resubmit / mark paid go through the lifecycle state machine

SECURITY:
- CREATE_DOCUMENTS required to create documents
- Only the creator or EDIT_ALL_DOCUMENTS may change a draft
- MARK_BILLS_PAID required to mark bills paid
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PraxisError, ValidationError
from ..services import document_service, ledger_service, lifecycle_service, consensus_service
from ..services.notification_service import dispatch
from ..permissions import CREATE_DOCUMENTS, EDIT_ALL_DOCUMENTS, MARK_BILLS_PAID
from ..decorators import require_auth, require_permission
from praxis.time_utils import parse_iso_date


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _document_payload(document) -> dict:
    payload = document.to_dict(include_items=True)
    payload["consensus"] = consensus_service.status(document.id).to_dict()
    return payload


def _id_list(data: dict, key: str) -> list[int]:
    values = data.get(key)
    if not isinstance(values, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        raise ValidationError(f"{key} must be a list of ids", field=key)
    return values


# =============================================================================
# DOCUMENTS
# =============================================================================

@documents_bp.get("")
@require_auth
def list_documents_route():
    """
    Query params: kind (PROPOSAL|BILL), status, client_id, limit, offset
    """
    try:
        client_id = request.args.get("client_id", type=int)
        limit = min(request.args.get("limit", 100, type=int), 500)
        offset = max(request.args.get("offset", 0, type=int), 0)
        documents = document_service.list_documents(
            kind=request.args.get("kind"),
            status=request.args.get("status"),
            client_id=client_id,
            limit=limit,
            offset=offset,
        )
        return jsonify({"documents": [d.to_dict() for d in documents]}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list documents")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/proposals")
@require_auth
@require_permission(CREATE_DOCUMENTS)
def create_proposal_route():
    """
    Request body:
    {
        "title": "Website redesign",
        "client_id": 1,             (or "lead_id", exactly one)
        "currency": "EUR",          (optional)
        "discount_percent": "10",   (optional)
        "tax_rate": "20", "tax_inclusive": false,
        "items": [{"description": "...", "quantity": "2", "rate": "150.00"}],
        "approver_ids": [2, 3], "policy": "MAJORITY"   (optional)
    }
    """
    try:
        document = document_service.create_proposal(_json_body(), actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create proposal")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/bills")
@require_auth
@require_permission(CREATE_DOCUMENTS)
def create_bill_route():
    try:
        document = document_service.create_bill(_json_body(), actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create bill")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/projects/<int:project_id>/bill")
@require_auth
@require_permission(CREATE_DOCUMENTS)
def generate_bill_route(project_id: int):
    """Bill all unbilled time and charges of a project."""
    try:
        data = _json_body()
        try:
            due_date = parse_iso_date(data.get("due_date"))
        except ValueError:
            raise ValidationError("due_date must be an ISO-8601 date", field="due_date")
        document = document_service.generate_bill_from_project(
            project_id,
            actor_id=g.current_user.id,
            title=data.get("title"),
            due_date=due_date,
        )
        return jsonify({"document": _document_payload(document)}), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to generate bill for project %s", project_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/<int:document_id>")
@require_auth
def get_document_route(document_id: int):
    try:
        document = document_service.get_document(document_id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.patch("/<int:document_id>")
@require_auth
def update_document_route(document_id: int):
    """Header fields: title, description, due_date, currency."""
    try:
        document = document_service.update_document(document_id, _json_body(), actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.patch("/<int:document_id>/pricing")
@require_auth
def update_pricing_route(document_id: int):
    """discount_percent, discount_amount, tax_rate, tax_inclusive."""
    try:
        document = ledger_service.update_pricing(document_id, _json_body(), actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update pricing of document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.put("/<int:document_id>/manual-subtotal")
@require_auth
def set_manual_subtotal_route(document_id: int):
    """{"manual_subtotal": "1500.00"} or null to clear. Only without line items."""
    try:
        data = _json_body()
        if "manual_subtotal" not in data:
            raise ValidationError("manual_subtotal is required", field="manual_subtotal")
        document = ledger_service.set_manual_subtotal(
            document_id, data["manual_subtotal"], actor_id=g.current_user.id
        )
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to set manual subtotal of document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/recompute")
@require_auth
@require_permission(EDIT_ALL_DOCUMENTS)
def recompute_totals_route(document_id: int):
    try:
        totals = ledger_service.recompute_totals(document_id)
        return jsonify({"totals": totals.to_dict()}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to recompute totals of document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@documents_bp.post("/<int:document_id>/submit")
@require_auth
def submit_document_route(document_id: int):
    """
    Request body (optional):
    {
        "approver_ids": [2, 3],   (omit to keep the draft's approvers, [] for none)
        "policy": "ALL" | "ANY" | "MAJORITY"
    }
    """
    try:
        data = _json_body()
        approver_ids = data.get("approver_ids")
        if approver_ids is not None:
            approver_ids = _id_list(data, "approver_ids")
        result = lifecycle_service.submit(
            document_id,
            approver_ids=approver_ids,
            policy=data.get("policy"),
            actor_id=g.current_user.id,
        )
        errors = dispatch(result.notifications)
        return jsonify({
            "document": _document_payload(result.document),
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to submit document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/resubmit")
@require_auth
def resubmit_document_route(document_id: int):
    try:
        data = _json_body()
        approver_ids = data.get("approver_ids")
        if approver_ids is not None:
            approver_ids = _id_list(data, "approver_ids")
        result = lifecycle_service.resubmit(
            document_id,
            approver_ids=approver_ids,
            policy=data.get("policy"),
            actor_id=g.current_user.id,
        )
        errors = dispatch(result.notifications)
        return jsonify({
            "document": _document_payload(result.document),
            "notification_errors": errors,
        }), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resubmit document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/mark-paid")
@require_auth
@require_permission(MARK_BILLS_PAID)
def mark_paid_route(document_id: int):
    try:
        document = lifecycle_service.mark_paid(document_id, actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark document %s paid", document_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINE ITEMS
# =============================================================================

@documents_bp.post("/<int:document_id>/items")
@require_auth
def add_item_route(document_id: int):
    """
    Request body:
    {
        "description": "Design work",
        "quantity": "10", "rate": "95.00",       (amount computed)
        "amount": "500.00",                      (only when quantity or rate is missing)
        "discount_percent": "5", "is_credit": false, "person_id": 4
    }
    """
    try:
        item = ledger_service.add_item(document_id, _json_body(), actor_id=g.current_user.id)
        document = document_service.get_document(document_id)
        return jsonify({"item": item.to_dict(), "document": _document_payload(document)}), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add item to document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.patch("/<int:document_id>/items/<int:item_id>")
@require_auth
def edit_item_route(document_id: int, item_id: int):
    try:
        item = ledger_service.edit_item(document_id, item_id, _json_body(), actor_id=g.current_user.id)
        document = document_service.get_document(document_id)
        return jsonify({"item": item.to_dict(), "document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit item %s of document %s", item_id, document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.delete("/<int:document_id>/items/<int:item_id>")
@require_auth
def remove_item_route(document_id: int, item_id: int):
    """Timesheet items are refused (409); unbill them instead."""
    try:
        document = ledger_service.remove_item(document_id, item_id, actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove item %s of document %s", item_id, document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/items/<int:item_id>/unbill")
@require_auth
def unbill_item_route(document_id: int, item_id: int):
    try:
        document = ledger_service.unbill_item(document_id, item_id, actor_id=g.current_user.id)
        return jsonify({"document": _document_payload(document)}), 200
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to unbill item %s of document %s", item_id, document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/items/timesheet")
@require_auth
def add_timesheet_items_route(document_id: int):
    """{"entry_ids": [1, 2, 3]}"""
    try:
        entry_ids = _id_list(_json_body(), "entry_ids")
        items = ledger_service.add_timesheet_items(document_id, entry_ids, actor_id=g.current_user.id)
        document = document_service.get_document(document_id)
        return jsonify({
            "items": [item.to_dict() for item in items],
            "document": _document_payload(document),
        }), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add timesheet items to document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/items/charges")
@require_auth
def add_charge_items_route(document_id: int):
    """{"charge_ids": [1, 2]}"""
    try:
        charge_ids = _id_list(_json_body(), "charge_ids")
        items = ledger_service.add_charge_items(document_id, charge_ids, actor_id=g.current_user.id)
        document = document_service.get_document(document_id)
        return jsonify({
            "items": [item.to_dict() for item in items],
            "document": _document_payload(document),
        }), 201
    except PraxisError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add charge items to document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500
