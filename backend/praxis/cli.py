# Overview: Flask CLI command groups for bootstrap and document maintenance.

# backend/praxis/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--password "Password123!"]
#   Idempotent: creates tables and the default admin/manager/staff users.
#
# Users:
# - python -m flask users create --name "Ada" --email ada@praxis.local --password "Password123!" --role STAFF
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#
# Documents:
# - python -m flask documents recompute-totals [--document-id 12] [--dry-run]
#   Re-run the totals engine over stored documents and report drift.
# - python -m flask documents expire-tokens
#   List proposals waiting on the client behind an expired approval link.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PraxisError
from .models import FinancialDocument, User
from .models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, VALID_ROLES
from .models.documents import STATUS_PENDING_CLIENT, CLIENT_PENDING
from .services.auth_service import create_user, PasswordValidationError
from .services import ledger_service
from .services.concurrency import run_in_document_transaction
from .services.totals_service import totals_for_document
from .time_utils import utcnow, to_utc_z


DEFAULT_USERS = (
    ("Administrator", "admin@praxis.local", ROLE_ADMIN),
    ("Manager", "manager@praxis.local", ROLE_MANAGER),
    ("Staff", "staff@praxis.local", ROLE_STAFF),
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--password', default='Password123!', show_default=True, help='Password for the default users')
@with_appcontext
def init_system(password):
    """
    Create tables and the default users.

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Praxis...")
    db.create_all()
    click.echo("PASS Tables created")

    for name, email, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"SKIP User {email} already exists")
            continue
        try:
            create_user(name, email, password, role)
        except PasswordValidationError as e:
            raise click.ClickException(f"Password validation failed: {e.message}")
        click.echo(f"PASS Created user {email} ({role})")

    click.echo("DONE System initialized")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        user = create_user(name, email, password, role)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit")
        return
    except PraxisError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        return

    click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    click.echo(f"{'ID':<6} {'Email':<35} {'Role':<10} {'Active'}")
    click.echo("-" * 60)
    for user in users:
        click.echo(f"{user.id:<6} {user.email:<35} {user.role:<10} {'yes' if user.is_active else 'no'}")
    click.echo(f"\n Total: {len(users)} users\n")


@click.group('documents')
def documents_group():
    """Document maintenance commands."""


@documents_group.command('recompute-totals')
@click.option('--document-id', type=int, help='Only this document')
@click.option('--dry-run', is_flag=True, help='Report drift only; do not write changes')
@with_appcontext
def recompute_totals_cli(document_id, dry_run):
    """
    Compare stored totals with a fresh run of the totals engine.

    Documents whose stored subtotal/discount/tax/total differ are reported
    and, unless --dry-run, rewritten inside their own unit of work.
    """
    query = db.session.query(FinancialDocument.id).order_by(FinancialDocument.id.asc())
    if document_id is not None:
        query = query.filter(FinancialDocument.id == document_id)
    ids = [doc_id for (doc_id,) in query.all()]
    if document_id is not None and not ids:
        raise click.ClickException(f"Document {document_id} not found")

    drifted = 0
    for doc_id in ids:
        document = db.session.get(FinancialDocument, doc_id)
        fresh = totals_for_document(document)
        stored = (document.subtotal, document.discount_value, document.tax_amount, document.amount)
        expected = (fresh.subtotal, fresh.discount_value, fresh.tax_amount, fresh.total)
        if stored == expected:
            continue

        drifted += 1
        click.echo(f"DRIFT {document.number}: stored total {document.amount} -> {fresh.total}")
        if not dry_run:
            run_in_document_transaction(doc_id, ledger_service.apply_totals)

    verb = "found" if dry_run else "fixed"
    click.echo(f"DONE Checked {len(ids)} documents, {verb} {drifted} with drift")


@documents_group.command('expire-tokens')
@with_appcontext
def expire_tokens_cli():
    """List proposals whose client link expired while the client decision is still pending."""
    now = utcnow()
    documents = db.session.query(FinancialDocument).filter(
        FinancialDocument.status == STATUS_PENDING_CLIENT,
        FinancialDocument.client_approval_status == CLIENT_PENDING,
        FinancialDocument.client_approval_token_expires_at < now,
    ).order_by(FinancialDocument.client_approval_token_expires_at.asc()).all()

    for document in documents:
        click.echo(
            f"EXPIRED {document.number} (id={document.id}) "
            f"link expired {to_utc_z(document.client_approval_token_expires_at)}"
        )
    click.echo(f"\n Total: {len(documents)} expired links. Reissue with POST /api/documents/<id>/client-link\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(documents_group)
