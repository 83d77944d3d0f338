# Overview: Service-layer operations for ledger; line items of one document and their totals.

"""
Line item ledger.

Every mutation here is one unit of work scoped to a single document
(run_in_document_transaction):

    lock document -> check actor/state -> change items -> recompute totals
    over the FULL item set -> commit

If any step raises (validation, policy, storage), nothing is written:
the item change and the totals update commit together or not at all.

RULES:
- Only DRAFT documents accept item or pricing changes.
- The creator may edit their own drafts; EDIT_ALL_DOCUMENTS may edit any.
- TIMESHEET items are never deleted by remove_item. They go back to the
  timesheet through unbill_item, which also clears the entry's billed flag.
- manual_subtotal only exists while the document has no items.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ..errors import AuthorizationError, NotFoundError, PolicyViolation, ValidationError
from ..extensions import db
from ..models import FinancialDocument, LineItem, ProjectCharge, TimesheetEntry, User
from ..models.documents import (
    STATUS_DRAFT,
    ITEM_MANUAL,
    ITEM_TIMESHEET,
    ITEM_CHARGE,
)
from ..permissions import EDIT_ALL_DOCUMENTS
from ..validation import (
    LINE_ITEM_POLICY,
    PRICING_POLICY,
    coerce_decimal,
    enforce_rules_line_item,
    enforce_rules_pricing,
    validate_payload,
)
from . import permission_service
from .concurrency import lock_for_update, run_in_document_transaction
from .totals_service import Totals, line_amount, quantize_money, totals_for_document
from praxis.time_utils import utcnow


def ensure_can_edit(document: FinancialDocument, actor_id: int | None) -> None:
    """
    actor_id None means a trusted internal caller (CLI, document creation).

    Raises AuthorizationError for non-owners without EDIT_ALL_DOCUMENTS,
    PolicyViolation once the document has left DRAFT.
    """
    if actor_id is not None and actor_id != document.created_by_user_id:
        if not permission_service.user_has_permission(actor_id, EDIT_ALL_DOCUMENTS):
            raise AuthorizationError("Only the creator or an editor with EDIT_ALL_DOCUMENTS may change this document")
    if document.status != STATUS_DRAFT:
        raise PolicyViolation(f"Document is {document.status}; only DRAFT documents can be edited")


def apply_totals(document: FinancialDocument) -> Totals:
    """Recompute and store totals from the document's current items and pricing."""
    totals = totals_for_document(document)
    document.subtotal = totals.subtotal
    document.discount_value = totals.discount_value
    document.tax_amount = totals.tax_amount
    document.amount = totals.total
    document.updated_at = utcnow()
    return totals


def ensure_discount_within_subtotal(totals: Totals) -> None:
    """A fixed discount set through pricing may not push the document below zero."""
    if totals.discount_value > 0 and totals.discount_value > totals.subtotal:
        raise ValidationError("discount_amount cannot exceed the subtotal", field="discount_amount")


def _find_item(document: FinancialDocument, item_id: int) -> LineItem:
    for item in document.items:
        if item.id == item_id:
            return item
    raise NotFoundError(f"Line item {item_id} not found on document {document.id}")


def _ensure_person_exists(person_id: int | None) -> None:
    if person_id is not None and db.session.get(User, person_id) is None:
        raise NotFoundError(f"User {person_id} not found")


def _item_price(item: LineItem) -> Decimal | None:
    return item.rate if item.rate is not None else item.unit_price


def _refresh_item_amount(item: LineItem, explicit_amount: Decimal | None) -> None:
    """
    quantity x (rate or unit_price) minus item discount when both are known,
    otherwise the explicit amount.
    """
    price = _item_price(item)
    if item.quantity is not None and price is not None:
        amount = line_amount(
            item.quantity,
            price,
            discount_percent=item.discount_percent,
            discount_amount=item.discount_amount,
        )
        if amount < 0:
            raise ValidationError("Item discount cannot exceed quantity x rate", field="discount_amount")
        item.amount = amount
    elif explicit_amount is not None:
        item.amount = quantize_money(explicit_amount)
    elif item.amount is None:
        raise ValidationError("amount is required unless quantity and rate are given", field="amount")


def _reject_amount_with_pricing(item: LineItem, explicit_amount: Decimal | None) -> None:
    """An amount is derived once quantity and a price are known; it cannot be set alongside them."""
    if explicit_amount is not None and item.quantity is not None and _item_price(item) is not None:
        raise ValidationError("amount is derived from quantity and rate; send one or the other", field="amount")


def parse_item_payload(payload: dict, *, partial: bool = False) -> dict:
    patch = validate_payload(model=LineItem, payload=payload, policy=LINE_ITEM_POLICY, partial=partial)
    enforce_rules_line_item(patch)
    return patch


def build_manual_item(patch: dict) -> LineItem:
    """A MANUAL item from a parsed payload. Checks the assignee exists."""
    fields = dict(patch)
    _ensure_person_exists(fields.get("person_id"))
    explicit_amount = fields.pop("amount", None)
    fields.setdefault("is_credit", False)
    item = LineItem(kind=ITEM_MANUAL, **fields)
    _reject_amount_with_pricing(item, explicit_amount)
    _refresh_item_amount(item, explicit_amount)
    return item


def add_item(document_id: int, payload: dict, *, actor_id: int | None = None) -> LineItem:
    patch = parse_item_payload(payload)

    def _op(document: FinancialDocument) -> LineItem:
        ensure_can_edit(document, actor_id)
        item = build_manual_item(patch)

        document.items.append(item)
        # The override only stands in for an empty item list
        document.manual_subtotal = None
        apply_totals(document)
        db.session.flush()
        return item

    return run_in_document_transaction(document_id, _op)


def edit_item(document_id: int, item_id: int, payload: dict, *, actor_id: int | None = None) -> LineItem:
    patch = parse_item_payload(payload, partial=True)

    def _op(document: FinancialDocument) -> LineItem:
        ensure_can_edit(document, actor_id)
        item = _find_item(document, item_id)
        fields = dict(patch)
        if "person_id" in fields:
            _ensure_person_exists(fields["person_id"])

        explicit_amount = fields.pop("amount", None)

        # Billed hours are the quantity of a timesheet item; either key edits both
        if item.kind == ITEM_TIMESHEET and ("billed_hours" in fields or "quantity" in fields):
            key = "billed_hours" if "billed_hours" in fields else "quantity"
            new_hours = fields[key]
            if new_hours is None:
                raise ValidationError(f"{key} cannot be cleared on a timesheet item", field=key)
            if "quantity" in fields and "billed_hours" in fields:
                if fields["quantity"] is None or Decimal(fields["quantity"]) != Decimal(new_hours):
                    raise ValidationError("quantity and billed_hours must match on a timesheet item", field="quantity")
            if item.billed_hours is None or Decimal(new_hours) != Decimal(item.billed_hours):
                item.is_manually_edited = True
                if item.original_timesheet_entry_id is None:
                    item.original_timesheet_entry_id = item.timesheet_entry_id
            fields["quantity"] = new_hours
            fields["billed_hours"] = new_hours

        for key, value in fields.items():
            setattr(item, key, value)

        _reject_amount_with_pricing(item, explicit_amount)
        _refresh_item_amount(item, explicit_amount)
        item.updated_at = utcnow()
        apply_totals(document)
        return item

    return run_in_document_transaction(document_id, _op)


def remove_item(document_id: int, item_id: int, *, actor_id: int | None = None) -> FinancialDocument:
    def _op(document: FinancialDocument) -> FinancialDocument:
        ensure_can_edit(document, actor_id)
        item = _find_item(document, item_id)
        if item.kind == ITEM_TIMESHEET:
            raise PolicyViolation("Timesheet items cannot be deleted; unbill the time entry instead")

        if item.kind == ITEM_CHARGE and item.charge is not None:
            item.charge.billed = False

        document.items.remove(item)
        apply_totals(document)
        return document

    return run_in_document_transaction(document_id, _op)


def unbill_item(document_id: int, item_id: int, *, actor_id: int | None = None) -> FinancialDocument:
    """
    Take a derived item off the document and hand its source back to the
    project as unbilled work.
    """
    def _op(document: FinancialDocument) -> FinancialDocument:
        ensure_can_edit(document, actor_id)
        item = _find_item(document, item_id)

        if item.kind == ITEM_TIMESHEET:
            entry_id = item.timesheet_entry_id or item.original_timesheet_entry_id
            entry = db.session.get(TimesheetEntry, entry_id) if entry_id else None
            if entry is not None:
                entry.billed = False
        elif item.kind == ITEM_CHARGE:
            if item.charge is not None:
                item.charge.billed = False
        else:
            raise PolicyViolation("Only timesheet or charge items can be unbilled")

        document.items.remove(item)
        apply_totals(document)
        return document

    return run_in_document_transaction(document_id, _op)


def recompute_totals(document_id: int) -> Totals:
    """Re-run the totals engine over the stored items. Allowed in any state."""
    return run_in_document_transaction(document_id, apply_totals)


def update_pricing(document_id: int, payload: dict, *, actor_id: int | None = None) -> FinancialDocument:
    patch = validate_payload(model=FinancialDocument, payload=payload, policy=PRICING_POLICY, partial=True)
    enforce_rules_pricing(patch)

    def _op(document: FinancialDocument) -> FinancialDocument:
        ensure_can_edit(document, actor_id)
        for key, value in patch.items():
            setattr(document, key, value)
        ensure_discount_within_subtotal(apply_totals(document))
        return document

    return run_in_document_transaction(document_id, _op)


def set_manual_subtotal(document_id: int, value, *, actor_id: int | None = None) -> FinancialDocument:
    """
    Set (or clear, with None) the subtotal of a document that has no items.
    """
    subtotal = None if value is None else coerce_decimal(value, "manual_subtotal")
    enforce_rules_pricing({"manual_subtotal": subtotal})

    def _op(document: FinancialDocument) -> FinancialDocument:
        ensure_can_edit(document, actor_id)
        if document.items:
            raise PolicyViolation("A manual subtotal is only allowed while the document has no line items")
        document.manual_subtotal = None if subtotal is None else quantize_money(subtotal)
        ensure_discount_within_subtotal(apply_totals(document))
        return document

    return run_in_document_transaction(document_id, _op)


def _require_bill_project(document: FinancialDocument) -> int:
    if not document.is_bill:
        raise PolicyViolation("Only bills can carry timesheet or charge items")
    if document.project_id is None:
        raise PolicyViolation("Bill is not linked to a project")
    return document.project_id


def timesheet_item_for(entry: TimesheetEntry) -> LineItem:
    rate = entry.rate if entry.rate is not None else Decimal("0")
    return LineItem(
        kind=ITEM_TIMESHEET,
        description=entry.description or f"Time on {entry.date.isoformat()}",
        quantity=entry.hours,
        billed_hours=entry.hours,
        rate=rate,
        amount=line_amount(entry.hours, rate),
        is_credit=False,
        person_id=entry.user_id,
        date=entry.date,
        timesheet_entry_id=entry.id,
        original_timesheet_entry_id=entry.id,
    )


def charge_item_for(charge: ProjectCharge) -> LineItem:
    item = LineItem(
        kind=ITEM_CHARGE,
        description=charge.description,
        quantity=charge.quantity,
        unit_price=charge.unit_price,
        is_credit=False,
        charge_id=charge.id,
    )
    _refresh_item_amount(item, charge.amount)
    return item


def attach_timesheet_entries(document: FinancialDocument, entry_ids: Iterable[int]) -> list[LineItem]:
    """Inside an open unit of work: entries -> TIMESHEET items, entries marked billed."""
    project_id = _require_bill_project(document)
    entry_ids = list(dict.fromkeys(entry_ids))
    entries = lock_for_update(
        db.session.query(TimesheetEntry).filter(TimesheetEntry.id.in_(entry_ids))
    ).all()
    found = {entry.id: entry for entry in entries}

    items = []
    for entry_id in entry_ids:
        entry = found.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Timesheet entry {entry_id} not found")
        if entry.project_id != project_id:
            raise PolicyViolation(f"Timesheet entry {entry_id} belongs to another project")
        if not entry.billable:
            raise PolicyViolation(f"Timesheet entry {entry_id} is not billable")
        if entry.billed:
            raise PolicyViolation(f"Timesheet entry {entry_id} is already billed")
        item = timesheet_item_for(entry)
        document.items.append(item)
        entry.billed = True
        items.append(item)
    return items


def attach_charges(document: FinancialDocument, charge_ids: Iterable[int]) -> list[LineItem]:
    project_id = _require_bill_project(document)
    charge_ids = list(dict.fromkeys(charge_ids))
    charges = lock_for_update(
        db.session.query(ProjectCharge).filter(ProjectCharge.id.in_(charge_ids))
    ).all()
    found = {charge.id: charge for charge in charges}

    items = []
    for charge_id in charge_ids:
        charge = found.get(charge_id)
        if charge is None:
            raise NotFoundError(f"Charge {charge_id} not found")
        if charge.project_id != project_id:
            raise PolicyViolation(f"Charge {charge_id} belongs to another project")
        if charge.billed:
            raise PolicyViolation(f"Charge {charge_id} is already billed")
        item = charge_item_for(charge)
        document.items.append(item)
        charge.billed = True
        items.append(item)
    return items


def add_timesheet_items(document_id: int, entry_ids: Iterable[int], *, actor_id: int | None = None) -> list[LineItem]:
    entry_ids = list(entry_ids)
    if not entry_ids:
        raise ValidationError("entry_ids must not be empty", field="entry_ids")

    def _op(document: FinancialDocument) -> list[LineItem]:
        ensure_can_edit(document, actor_id)
        items = attach_timesheet_entries(document, entry_ids)
        document.manual_subtotal = None
        apply_totals(document)
        db.session.flush()
        return items

    return run_in_document_transaction(document_id, _op)


def add_charge_items(document_id: int, charge_ids: Iterable[int], *, actor_id: int | None = None) -> list[LineItem]:
    charge_ids = list(charge_ids)
    if not charge_ids:
        raise ValidationError("charge_ids must not be empty", field="charge_ids")

    def _op(document: FinancialDocument) -> list[LineItem]:
        ensure_can_edit(document, actor_id)
        items = attach_charges(document, charge_ids)
        document.manual_subtotal = None
        apply_totals(document)
        db.session.flush()
        return items

    return run_in_document_transaction(document_id, _op)
