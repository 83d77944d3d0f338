from __future__ import annotations

from ..extensions import db
from praxis.time_utils import to_utc_z


LEAD_STATUS_NEW = "NEW"
LEAD_STATUS_CONVERTED = "CONVERTED"


class Client(db.Model):
    """A billable counterparty. Bills always belong to a client."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    company = db.Column(db.String(255), nullable=True)

    billing_address_line = db.Column(db.String(255), nullable=True)
    billing_city = db.Column(db.String(128), nullable=True)
    billing_country = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "billing_address_line": self.billing_address_line,
            "billing_city": self.billing_city,
            "billing_country": self.billing_country,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Lead(db.Model):
    """
    A prospective client. Proposals may be addressed to a lead; when the
    lead approves one, it is converted into a Client (converted_to_client_id).
    """
    __tablename__ = "leads"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    address_line = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    country = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=LEAD_STATUS_NEW, index=True)
    converted_to_client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    converted_to_client = db.relationship("Client")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "status": self.status,
            "converted_to_client_id": self.converted_to_client_id,
            "converted_at": to_utc_z(self.converted_at) if self.converted_at else None,
            "created_at": to_utc_z(self.created_at),
        }
