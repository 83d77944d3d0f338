"""initial schema: users, parties, project work, financial documents

Revision ID: 20261017_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates:
- users, session_tokens, user_permission_overrides: auth and per-user permission overrides
- clients, leads: document counterparties
- projects, timesheet_entries, project_charges: billable work
- financial_documents: proposals and bills (totals, lifecycle, consensus, client link)
- line_items, approval_records, document_sequences
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        _created_at(),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(length=255), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"], unique=False)
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"], unique=False)
    op.create_index("ix_session_tokens_is_revoked", "session_tokens", ["is_revoked"], unique=False)
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"], unique=False)

    op.create_table(
        "user_permission_overrides",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission_code", sa.String(length=64), nullable=False),
        sa.Column("override_type", sa.String(length=8), nullable=False),
        sa.Column("granted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["granted_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "permission_code", name="uq_user_perm_override"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_user_permission_overrides_user_id", "user_permission_overrides", ["user_id"], unique=False)
    op.create_index("ix_user_permission_overrides_permission_code", "user_permission_overrides", ["permission_code"], unique=False)
    op.create_index("ix_user_permission_overrides_is_active", "user_permission_overrides", ["is_active"], unique=False)

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("billing_address_line", sa.String(length=255), nullable=True),
        sa.Column("billing_city", sa.String(length=128), nullable=True),
        sa.Column("billing_country", sa.String(length=128), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("address_line", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("converted_to_client_id", sa.Integer(), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["converted_to_client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_leads_status", "leads", ["status"], unique=False)

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("proposal_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_projects_client_id", "projects", ["client_id"], unique=False)
    op.create_index("ix_projects_proposal_id", "projects", ["proposal_id"], unique=False)

    op.create_table(
        "timesheet_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("hours", sa.Numeric(8, 2), nullable=False),
        sa.Column("rate", sa.Numeric(14, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("billable", sa.Boolean(), nullable=False),
        sa.Column("billed", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_timesheet_entries_project_id", "timesheet_entries", ["project_id"], unique=False)
    op.create_index("ix_timesheet_entries_user_id", "timesheet_entries", ["user_id"], unique=False)
    op.create_index("ix_timesheet_entries_billed", "timesheet_entries", ["billed"], unique=False)
    op.create_index("ix_timesheet_entries_project_billed", "timesheet_entries", ["project_id", "billed"], unique=False)

    op.create_table(
        "project_charges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("billed", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_project_charges_project_id", "project_charges", ["project_id"], unique=False)
    op.create_index("ix_project_charges_billed", "project_charges", ["billed"], unique=False)

    op.create_table(
        "financial_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("number", sa.String(length=32), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_id", sa.Integer(), nullable=True),
        sa.Column("lead_id", sa.Integer(), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("proposal_id", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        # Money: Numeric(14, 2); rates and percentages: Numeric(7, 4)
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("manual_subtotal", sa.Numeric(14, 2), nullable=True),
        sa.Column("discount_percent", sa.Numeric(7, 4), nullable=True),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("discount_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("tax_inclusive", sa.Boolean(), nullable=False),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resubmission_count", sa.Integer(), nullable=False),
        sa.Column("internal_approval_required", sa.Boolean(), nullable=False),
        sa.Column("required_approver_ids", sa.JSON(), nullable=False),
        sa.Column("internal_approval_type", sa.String(length=16), nullable=False),
        sa.Column("internal_approvals_complete", sa.Boolean(), nullable=False),
        sa.Column("client_approval_status", sa.String(length=16), nullable=False),
        sa.Column("client_approval_token_hash", sa.String(length=64), nullable=True),
        sa.Column("client_approval_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_rejection_reason", sa.Text(), nullable=True),
        sa.Column("client_decision_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"]),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["proposal_id"], ["financial_documents.id"]),
        sa.ForeignKeyConstraint(["client_decision_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "number", name="uq_financial_documents_kind_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_financial_documents_kind", "financial_documents", ["kind"], unique=False)
    op.create_index("ix_financial_documents_status", "financial_documents", ["status"], unique=False)
    op.create_index("ix_financial_documents_kind_status", "financial_documents", ["kind", "status"], unique=False)
    op.create_index("ix_financial_documents_client_id", "financial_documents", ["client_id"], unique=False)
    op.create_index("ix_financial_documents_lead_id", "financial_documents", ["lead_id"], unique=False)
    op.create_index("ix_financial_documents_project_id", "financial_documents", ["project_id"], unique=False)
    op.create_index("ix_financial_documents_created_by_user_id", "financial_documents", ["created_by_user_id"], unique=False)
    op.create_index(
        "ix_financial_documents_client_approval_token_hash",
        "financial_documents",
        ["client_approval_token_hash"],
        unique=False,
    )

    op.create_table(
        "line_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate", sa.Numeric(14, 2), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("discount_percent", sa.Numeric(7, 4), nullable=True),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("is_credit", sa.Boolean(), nullable=False),
        sa.Column("billed_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("person_id", sa.Integer(), nullable=True),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("timesheet_entry_id", sa.Integer(), nullable=True),
        sa.Column("original_timesheet_entry_id", sa.Integer(), nullable=True),
        sa.Column("charge_id", sa.Integer(), nullable=True),
        sa.Column("is_manually_edited", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["financial_documents.id"]),
        sa.ForeignKeyConstraint(["person_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["timesheet_entry_id"], ["timesheet_entries.id"]),
        sa.ForeignKeyConstraint(["original_timesheet_entry_id"], ["timesheet_entries.id"]),
        sa.ForeignKeyConstraint(["charge_id"], ["project_charges.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_line_items_document", "line_items", ["document_id"], unique=False)
    op.create_index("ix_line_items_timesheet_entry_id", "line_items", ["timesheet_entry_id"], unique=False)
    op.create_index("ix_line_items_charge_id", "line_items", ["charge_id"], unique=False)

    op.create_table(
        "approval_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Integer(), nullable=False),
        sa.Column("decision", sa.String(length=16), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("via_override", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["financial_documents.id"]),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "approver_id", name="uq_approval_records_document_approver"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_approval_records_document_id", "approval_records", ["document_id"], unique=False)
    op.create_index("ix_approval_records_approver_id", "approval_records", ["approver_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sequence_key", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sequence_key", name="uq_document_sequences_key"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("approval_records")
    op.drop_table("line_items")
    op.drop_table("financial_documents")
    op.drop_table("project_charges")
    op.drop_table("timesheet_entries")
    op.drop_table("projects")
    op.drop_table("leads")
    op.drop_table("clients")
    op.drop_table("user_permission_overrides")
    op.drop_table("session_tokens")
    op.drop_table("users")
