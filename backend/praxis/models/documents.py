from __future__ import annotations

from decimal import Decimal

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from praxis.time_utils import to_utc_z, to_iso_date


# Document kinds (tagged variant)
KIND_PROPOSAL = "PROPOSAL"
KIND_BILL = "BILL"
VALID_KINDS = {KIND_PROPOSAL, KIND_BILL}

# Lifecycle states (union of both kinds; per-kind tables live in lifecycle_service)
STATUS_DRAFT = "DRAFT"
STATUS_SUBMITTED = "SUBMITTED"
STATUS_PENDING_CLIENT = "PENDING_CLIENT"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_PAID = "PAID"

# Internal consensus policies
POLICY_ALL = "ALL"
POLICY_ANY = "ANY"
POLICY_MAJORITY = "MAJORITY"
VALID_POLICIES = {POLICY_ALL, POLICY_ANY, POLICY_MAJORITY}

# Client decision status (proposals only)
CLIENT_NOT_REQUESTED = "NOT_REQUESTED"
CLIENT_PENDING = "PENDING"
CLIENT_APPROVED = "APPROVED"
CLIENT_REJECTED = "REJECTED"

# Line item kinds
ITEM_MANUAL = "MANUAL"
ITEM_TIMESHEET = "TIMESHEET"
ITEM_CHARGE = "CHARGE"
VALID_ITEM_KINDS = {ITEM_MANUAL, ITEM_TIMESHEET, ITEM_CHARGE}

# Approval decisions
DECISION_APPROVED = "APPROVED"
DECISION_REJECTED = "REJECTED"
VALID_DECISIONS = {DECISION_APPROVED, DECISION_REJECTED}


def _money(value) -> str | None:
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal("0.01")))


class FinancialDocument(db.Model):
    """
    Proposal or Bill (tagged by `kind`).

    Both kinds share the money fields, the approval policy fields and the
    lifecycle column; kind-specific columns are nullable and only populated
    for their kind.

    ENGINE-OWNED FIELDS:
    - subtotal / tax_amount / amount: written only by ledger_service via the
      totals engine. amount is always recomputable from subtotal, discount
      and tax fields.
    - status: read-only here. Only lifecycle_service moves it (through
      _status), so no other code path can skip a transition.
    - internal_approvals_complete / client_approval_*: written only by the
      consensus, token and lifecycle services.

    CONCURRENCY:
    version_id is the optimistic-lock column; any two writers that both
    read the same version cannot both commit.
    """
    __tablename__ = "financial_documents"
    __table_args__ = (
        db.UniqueConstraint("kind", "number", name="uq_financial_documents_kind_number"),
        db.Index("ix_financial_documents_kind_status", "kind", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, index=True)

    # "2026-001" for proposals, "INV-2026-001" for bills
    number = db.Column(db.String(32), nullable=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Owner: exactly one of client/lead for proposals; bills require a client
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    lead_id = db.Column(db.Integer, db.ForeignKey("leads.id"), nullable=True, index=True)

    # Bill provenance
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=True, index=True)
    proposal_id = db.Column(db.Integer, db.ForeignKey("financial_documents.id"), nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="EUR")

    # Money (engine-owned)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    manual_subtotal = db.Column(db.Numeric(14, 2), nullable=True)
    discount_percent = db.Column(db.Numeric(7, 4), nullable=True)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=True)
    discount_value = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    tax_rate = db.Column(db.Numeric(7, 4), nullable=True)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Lifecycle (engine-owned)
    _status = db.Column("status", db.String(24), nullable=False, default=STATUS_DRAFT, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resubmission_count = db.Column(db.Integer, nullable=False, default=0)

    # Internal consensus
    internal_approval_required = db.Column(db.Boolean, nullable=False, default=False)
    required_approver_ids = db.Column(db.JSON, nullable=False, default=list)
    internal_approval_type = db.Column(db.String(16), nullable=False, default=POLICY_ALL)
    internal_approvals_complete = db.Column(db.Boolean, nullable=False, default=False)

    # External client decision (proposals)
    client_approval_status = db.Column(db.String(16), nullable=False, default=CLIENT_NOT_REQUESTED)
    client_approval_token_hash = db.Column(db.String(64), nullable=True, index=True)
    client_approval_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    client_decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    client_rejection_reason = db.Column(db.Text, nullable=True)
    client_decision_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("documents", lazy=True))
    lead = db.relationship("Lead", backref=db.backref("proposals", lazy=True))
    project = db.relationship("Project", foreign_keys=[project_id], backref=db.backref("bills", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "LineItem",
        backref="document",
        lazy=True,
        order_by="LineItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def status(self) -> str:
        return self._status

    @property
    def is_proposal(self) -> bool:
        return self.kind == KIND_PROPOSAL

    @property
    def is_bill(self) -> bool:
        return self.kind == KIND_BILL

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "kind": self.kind,
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "client_id": self.client_id,
            "lead_id": self.lead_id,
            "project_id": self.project_id,
            "proposal_id": self.proposal_id,
            "due_date": to_iso_date(self.due_date),
            "currency": self.currency,
            "subtotal": _money(self.subtotal),
            "manual_subtotal": _money(self.manual_subtotal),
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "discount_amount": _money(self.discount_amount),
            "discount_value": _money(self.discount_value),
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "tax_inclusive": self.tax_inclusive,
            "tax_amount": _money(self.tax_amount),
            "amount": _money(self.amount),
            "status": self.status,
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "paid_at": to_utc_z(self.paid_at),
            "resubmission_count": self.resubmission_count,
            "internal_approval_required": self.internal_approval_required,
            "required_approver_ids": list(self.required_approver_ids or []),
            "internal_approval_type": self.internal_approval_type,
            "internal_approvals_complete": self.internal_approvals_complete,
            "client_approval_status": self.client_approval_status,
            "client_approval_token_expires_at": to_utc_z(self.client_approval_token_expires_at),
            "client_decided_at": to_utc_z(self.client_decided_at),
            "client_rejection_reason": self.client_rejection_reason,
            "client_decision_by_user_id": self.client_decision_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class LineItem(db.Model):
    """
    One billable (or credit) row of a FinancialDocument.

    amount is stored non-negative; is_credit flips its contribution to the
    subtotal (see signed_amount).

    Derived items (TIMESHEET / CHARGE) keep a link to their source so the
    source's billed flag can be reset when the item is unbilled.
    original_timesheet_entry_id preserves the source reference once the
    billed quantity has been overridden (is_manually_edited).
    """
    __tablename__ = "line_items"
    __table_args__ = (
        db.Index("ix_line_items_document", "document_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("financial_documents.id"), nullable=False)

    kind = db.Column(db.String(16), nullable=False, default=ITEM_MANUAL)
    description = db.Column(db.Text, nullable=False)

    quantity = db.Column(db.Numeric(10, 2), nullable=True)
    rate = db.Column(db.Numeric(14, 2), nullable=True)
    unit_price = db.Column(db.Numeric(14, 2), nullable=True)
    discount_percent = db.Column(db.Numeric(7, 4), nullable=True)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    is_credit = db.Column(db.Boolean, nullable=False, default=False)

    billed_hours = db.Column(db.Numeric(8, 2), nullable=True)
    person_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    date = db.Column(db.Date, nullable=True)

    # Provenance
    timesheet_entry_id = db.Column(db.Integer, db.ForeignKey("timesheet_entries.id"), nullable=True, index=True)
    original_timesheet_entry_id = db.Column(db.Integer, db.ForeignKey("timesheet_entries.id"), nullable=True)
    charge_id = db.Column(db.Integer, db.ForeignKey("project_charges.id"), nullable=True, index=True)
    is_manually_edited = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    person = db.relationship("User")
    timesheet_entry = db.relationship("TimesheetEntry", foreign_keys=[timesheet_entry_id])
    charge = db.relationship("ProjectCharge")

    @property
    def signed_amount(self) -> Decimal:
        value = Decimal(self.amount)
        return -value if self.is_credit else value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "kind": self.kind,
            "description": self.description,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "rate": _money(self.rate),
            "unit_price": _money(self.unit_price),
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "discount_amount": _money(self.discount_amount),
            "amount": _money(self.amount),
            "is_credit": self.is_credit,
            "billed_hours": str(self.billed_hours) if self.billed_hours is not None else None,
            "person_id": self.person_id,
            "date": to_iso_date(self.date),
            "timesheet_entry_id": self.timesheet_entry_id,
            "original_timesheet_entry_id": self.original_timesheet_entry_id,
            "charge_id": self.charge_id,
            "is_manually_edited": self.is_manually_edited,
            "created_at": to_utc_z(self.created_at),
        }


class ApprovalRecord(db.Model):
    """
    One internal decision per (document, approver).

    A second decision by the same approver updates the row in place
    (unique constraint below); the engine never deletes records except when
    a document is resubmitted with a fresh approver set.
    """
    __tablename__ = "approval_records"
    __table_args__ = (
        db.UniqueConstraint("document_id", "approver_id", name="uq_approval_records_document_approver"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("financial_documents.id"), nullable=False, index=True)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    decision = db.Column(db.String(16), nullable=False)
    comments = db.Column(db.Text, nullable=True)

    # True when the approver was not in required_approver_ids and acted via APPROVE_ANY_DOCUMENT
    via_override = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False)

    document = db.relationship("FinancialDocument", backref=db.backref("approval_records", lazy=True))
    approver = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "approver_id": self.approver_id,
            "decision": self.decision,
            "comments": self.comments,
            "via_override": self.via_override,
            "created_at": to_utc_z(self.created_at),
            "decided_at": to_utc_z(self.decided_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic numbering sequences keyed by e.g. "PROPOSAL-2026" / "BILL-2026".

    WHY: Prevent race conditions when generating document numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_key", name="uq_document_sequences_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_key = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_key": self.sequence_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
