from __future__ import annotations

from ..extensions import db
from praxis.time_utils import to_utc_z, to_iso_date


PROJECT_STATUS_ACTIVE = "ACTIVE"


class Project(db.Model):
    """
    Engagement for a client. Source of billable work (timesheet entries and
    charges) that becomes TIMESHEET / CHARGE line items on bills.
    """
    __tablename__ = "projects"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    # Plain reference (no FK) keeps projects <-> financial_documents acyclic
    proposal_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=PROJECT_STATUS_ACTIVE)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    start_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("Client", backref=db.backref("projects", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "client_id": self.client_id,
            "proposal_id": self.proposal_id,
            "status": self.status,
            "currency": self.currency,
            "start_date": to_iso_date(self.start_date),
            "created_at": to_utc_z(self.created_at),
        }


class TimesheetEntry(db.Model):
    """
    Hours worked on a project by one person.

    `billed` flips to True when the entry is pulled onto a bill and back to
    False only through ledger_service.unbill_item.
    """
    __tablename__ = "timesheet_entries"
    __table_args__ = (
        db.Index("ix_timesheet_entries_project_billed", "project_id", "billed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Numeric(8, 2), nullable=False)
    rate = db.Column(db.Numeric(14, 2), nullable=True)
    description = db.Column(db.Text, nullable=True)
    billable = db.Column(db.Boolean, nullable=False, default=True)
    billed = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project", backref=db.backref("timesheet_entries", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "date": to_iso_date(self.date),
            "hours": str(self.hours),
            "rate": str(self.rate) if self.rate is not None else None,
            "description": self.description,
            "billable": self.billable,
            "billed": self.billed,
        }


class ProjectCharge(db.Model):
    """A fixed charge (fee, disbursement) on a project; becomes a CHARGE line item."""
    __tablename__ = "project_charges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    quantity = db.Column(db.Numeric(10, 2), nullable=True)
    unit_price = db.Column(db.Numeric(14, 2), nullable=True)
    billed = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project", backref=db.backref("charges", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "description": self.description,
            "amount": str(self.amount),
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "billed": self.billed,
        }
