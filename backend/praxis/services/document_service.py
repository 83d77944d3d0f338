# Overview: Service-layer operations for document; creation, header edits, numbering and lookups.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import NotFoundError, PolicyViolation, StorageError, ValidationError
from ..extensions import db
from ..models import Client, DocumentSequence, FinancialDocument, Lead, Project, ProjectCharge, TimesheetEntry
from ..models.documents import KIND_PROPOSAL, KIND_BILL, VALID_KINDS
from ..permissions import CREATE_DOCUMENTS
from ..validation import (
    DOCUMENT_HEADER_FIELDS,
    DOCUMENT_POLICY,
    ModelValidationPolicy,
    enforce_rules_currency,
    enforce_rules_pricing,
    validate_payload,
)
from . import ledger_service, lifecycle_service, permission_service
from .concurrency import run_in_document_transaction, run_with_retry
from praxis.time_utils import utcnow


NUMBER_FORMATS = {
    KIND_PROPOSAL: "{year}-{number:03d}",
    KIND_BILL: "INV-{year}-{number:03d}",
}

HEADER_POLICY = ModelValidationPolicy(writable_fields=DOCUMENT_HEADER_FIELDS)


def next_document_number(kind: str, *, year: int | None = None) -> str:
    """
    Atomically allocate the next number for a kind and year.

    "2026-001" for proposals, "INV-2026-001" for bills. The counter row is
    bumped with a single UPDATE so two writers never read the same value;
    the first allocation of a year inserts the row and falls back to the
    UPDATE if another writer inserted it first.
    """
    if kind not in VALID_KINDS:
        raise ValidationError(f"Unknown document kind '{kind}'", field="kind")
    year = year or utcnow().year
    sequence_key = f"{kind}-{year}"

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_key == sequence_key)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(sequence_key=sequence_key)
            .scalar()
        ) - 1

    def _op() -> int:
        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            return _current()

        savepoint = db.session.begin_nested()
        try:
            db.session.add(DocumentSequence(sequence_key=sequence_key, next_number=2))
            savepoint.commit()
            return 1
        except IntegrityError:
            savepoint.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            return _current()

    number = run_with_retry(_op)
    return NUMBER_FORMATS[kind].format(year=year, number=number)


def _parse_document_payload(payload: dict) -> tuple[dict, list[dict], list | None, str | None]:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    raw_items = payload.pop("items", None) or []
    approver_ids = payload.pop("approver_ids", None)
    policy = payload.pop("policy", None)

    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list", field="items")
    if approver_ids is not None and not isinstance(approver_ids, list):
        raise ValidationError("approver_ids must be a list of user ids", field="approver_ids")

    patch = validate_payload(model=FinancialDocument, payload=payload, policy=DOCUMENT_POLICY, partial=False)
    enforce_rules_pricing(patch)
    enforce_rules_currency(patch)
    items = [ledger_service.parse_item_payload(item) for item in raw_items]
    if items and patch.get("manual_subtotal") is not None:
        raise ValidationError("manual_subtotal is only allowed when there are no items", field="manual_subtotal")
    return patch, items, approver_ids, policy


def _require(model, object_id: int, label: str):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{label} {object_id} not found")
    return obj


def _create(kind: str, patch: dict, items: list[dict], approver_ids, policy, *, actor_id: int) -> FinancialDocument:
    try:
        fields = {"currency": current_app.config.get("DEFAULT_CURRENCY", "EUR"), **patch}
        document = FinancialDocument(
            kind=kind,
            created_by_user_id=actor_id,
            required_approver_ids=[],
            **fields,
        )
        if approver_ids is not None or policy is not None:
            lifecycle_service.configure_approval(document, approver_ids or [], policy)
        document.number = next_document_number(kind)
        for item_patch in items:
            document.items.append(ledger_service.build_manual_item(item_patch))
        db.session.add(document)
        ledger_service.ensure_discount_within_subtotal(ledger_service.apply_totals(document))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Failed to create %s: %s", kind.lower(), exc)
        raise StorageError("The document could not be saved. No changes were applied.") from exc
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Created %s %s (id=%s)", kind.lower(), document.number, document.id)
    return document


def create_proposal(payload: dict, *, actor_id: int) -> FinancialDocument:
    """A DRAFT proposal for exactly one of a client or a lead."""
    permission_service.require_permission(actor_id, CREATE_DOCUMENTS)
    patch, items, approver_ids, policy = _parse_document_payload(payload)

    for key in ("project_id", "proposal_id", "due_date"):
        if patch.get(key) is not None:
            raise ValidationError(f"{key} is not allowed on proposals", field=key)
    client_id = patch.get("client_id")
    lead_id = patch.get("lead_id")
    if (client_id is None) == (lead_id is None):
        raise ValidationError("Provide exactly one of client_id or lead_id", field="client_id")
    if client_id is not None:
        _require(Client, client_id, "Client")
    else:
        _require(Lead, lead_id, "Lead")

    return _create(KIND_PROPOSAL, patch, items, approver_ids, policy, actor_id=actor_id)


def create_bill(payload: dict, *, actor_id: int) -> FinancialDocument:
    """A DRAFT bill. Bills always belong to a client."""
    permission_service.require_permission(actor_id, CREATE_DOCUMENTS)
    patch, items, approver_ids, policy = _parse_document_payload(payload)

    if patch.get("lead_id") is not None:
        raise ValidationError("Bills are addressed to clients, not leads", field="lead_id")
    client_id = patch.get("client_id")
    if client_id is None:
        raise ValidationError("client_id is required", field="client_id")
    _require(Client, client_id, "Client")

    if patch.get("project_id") is not None:
        project = _require(Project, patch["project_id"], "Project")
        if project.client_id != client_id:
            raise ValidationError("Project belongs to another client", field="project_id")
    if patch.get("proposal_id") is not None:
        proposal = _require(FinancialDocument, patch["proposal_id"], "Proposal")
        if not proposal.is_proposal:
            raise ValidationError("proposal_id must reference a proposal", field="proposal_id")

    return _create(KIND_BILL, patch, items, approver_ids, policy, actor_id=actor_id)


def generate_bill_from_project(
    project_id: int,
    *,
    actor_id: int,
    title: str | None = None,
    due_date=None,
) -> FinancialDocument:
    """
    A DRAFT bill for the project's client carrying every unbilled, billable
    timesheet entry and every unbilled charge of the project.
    """
    permission_service.require_permission(actor_id, CREATE_DOCUMENTS)
    project = _require(Project, project_id, "Project")

    entry_ids = [
        entry_id for (entry_id,) in db.session.query(TimesheetEntry.id)
        .filter_by(project_id=project_id, billable=True, billed=False)
        .order_by(TimesheetEntry.date.asc(), TimesheetEntry.id.asc())
        .all()
    ]
    charge_ids = [
        charge_id for (charge_id,) in db.session.query(ProjectCharge.id)
        .filter_by(project_id=project_id, billed=False)
        .order_by(ProjectCharge.id.asc())
        .all()
    ]
    if not entry_ids and not charge_ids:
        raise PolicyViolation("Project has no unbilled work")

    patch = {"title": title or f"{project.name} - {utcnow():%B %Y}"}
    if due_date is not None:
        patch["due_date"] = due_date
    patch = validate_payload(model=FinancialDocument, payload=patch, policy=DOCUMENT_POLICY, partial=False)

    try:
        document = FinancialDocument(
            kind=KIND_BILL,
            created_by_user_id=actor_id,
            client_id=project.client_id,
            project_id=project.id,
            proposal_id=project.proposal_id,
            currency=project.currency,
            required_approver_ids=[],
            **patch,
        )
        document.number = next_document_number(KIND_BILL)
        db.session.add(document)
        if entry_ids:
            ledger_service.attach_timesheet_entries(document, entry_ids)
        if charge_ids:
            ledger_service.attach_charges(document, charge_ids)
        ledger_service.apply_totals(document)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Failed to generate bill for project %s: %s", project_id, exc)
        raise StorageError("The bill could not be saved. No changes were applied.") from exc
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Generated bill %s from project %s (%s entries, %s charges)",
        document.number, project_id, len(entry_ids), len(charge_ids),
    )
    return document


def update_document(document_id: int, payload: dict, *, actor_id: int | None = None) -> FinancialDocument:
    """Header fields only (title, description, due date, currency). DRAFT only."""
    patch = validate_payload(model=FinancialDocument, payload=payload, policy=HEADER_POLICY, partial=True)
    enforce_rules_currency(patch)

    def _op(document: FinancialDocument) -> FinancialDocument:
        ledger_service.ensure_can_edit(document, actor_id)
        if document.is_proposal and patch.get("due_date") is not None:
            raise ValidationError("due_date is not allowed on proposals", field="due_date")
        for key, value in patch.items():
            setattr(document, key, value)
        document.updated_at = utcnow()
        return document

    return run_in_document_transaction(document_id, _op)


def get_document(document_id: int) -> FinancialDocument:
    return _require(FinancialDocument, document_id, "Document")


def list_documents(
    *,
    kind: str | None = None,
    status: str | None = None,
    client_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[FinancialDocument]:
    query = db.session.query(FinancialDocument)
    if kind:
        if kind not in VALID_KINDS:
            raise ValidationError(f"Unknown document kind '{kind}'", field="kind")
        query = query.filter(FinancialDocument.kind == kind)
    if status:
        query = query.filter(FinancialDocument.status == status)
    if client_id is not None:
        query = query.filter(FinancialDocument.client_id == client_id)
    return (
        query.order_by(FinancialDocument.created_at.desc(), FinancialDocument.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
