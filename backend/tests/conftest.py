"""
Pytest fixtures for Praxis backend tests.

Provides the in-memory app, a clean database per test, a recording
notifier, and factories for users, clients, leads, projects and documents.
"""

from datetime import date
from decimal import Decimal

import pytest

from praxis import create_app
from praxis.config import TestingConfig
from praxis.extensions import db, NOTIFIER_EXTENSION_KEY
from praxis.models import Client, Lead, Project, ProjectCharge, TimesheetEntry, User
from praxis.models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF
from praxis.services import document_service, session_service
from praxis.services.auth_service import hash_password
from praxis.services.notification_service import Notifier


TEST_PASSWORD = "Password123!"


class RecordingNotifier(Notifier):
    """Keeps every outbound message in memory instead of sending it."""

    def __init__(self):
        self.sent = []

    def send_internal_approval_request(self, approver, document):
        self.sent.append(("send_internal_approval_request", approver.id, document.id, None))

    def send_approval_request(self, recipient, document, token):
        self.sent.append(("send_approval_request", recipient.id, document.id, token))

    def send_decision_notice(self, recipient, document, decision):
        self.sent.append(("send_decision_notice", recipient.id, document.id, decision))

    def of(self, method):
        return [message for message in self.sent if message[0] == method]


class FailingNotifier(Notifier):
    def send_internal_approval_request(self, approver, document):
        raise ConnectionError("mail relay down")

    def send_approval_request(self, recipient, document, token):
        raise ConnectionError("mail relay down")

    def send_decision_notice(self, recipient, document, decision):
        raise ConnectionError("mail relay down")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig, notifier=RecordingNotifier())

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions[NOTIFIER_EXTENSION_KEY].sent.clear()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app, db_session):
    return app.extensions[NOTIFIER_EXTENSION_KEY]


@pytest.fixture(scope='function')
def failing_notifier(app, db_session, monkeypatch):
    failing = FailingNotifier()
    monkeypatch.setitem(app.extensions, NOTIFIER_EXTENSION_KEY, failing)
    return failing


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=ROLE_STAFF, *, name=None, email=None, is_active=True):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"{role.title()} {n}",
            email=email or f"{role.lower()}{n}@praxis.test",
            # Low bcrypt cost keeps the suite fast
            password_hash=hash_password(TEST_PASSWORD, rounds=4),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(ROLE_ADMIN, name="Admin", email="admin@praxis.test")


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user(ROLE_MANAGER, name="Manager", email="manager@praxis.test")


@pytest.fixture(scope='function')
def staff(make_user):
    return make_user(ROLE_STAFF, name="Staff", email="staff@praxis.test")


@pytest.fixture(scope='function')
def approvers(make_user):
    """Three active staff approvers: A, B, C."""
    return [make_user(ROLE_STAFF, name=name) for name in ("Approver A", "Approver B", "Approver C")]


@pytest.fixture(scope='function')
def client_party(db_session):
    party = Client(name="Acme Ltd", email="billing@acme.test", company="Acme")
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def lead(db_session):
    party = Lead(name="Beta Prospect", email="hello@beta.test", company="Beta", city="Lisbon")
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def project(db_session, client_party):
    proj = Project(name="Website", client_id=client_party.id, currency="EUR")
    db_session.add(proj)
    db_session.commit()
    return proj


@pytest.fixture(scope='function')
def make_timesheet_entry(db_session):
    def _make(project, user, hours="2", rate="100", *, billable=True, billed=False):
        entry = TimesheetEntry(
            project_id=project.id,
            user_id=user.id,
            date=date(2026, 10, 1),
            hours=Decimal(hours),
            rate=Decimal(rate) if rate is not None else None,
            description="Design work",
            billable=billable,
            billed=billed,
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make


@pytest.fixture(scope='function')
def make_charge(db_session):
    def _make(project, amount="50", *, description="Hosting", billed=False):
        charge = ProjectCharge(
            project_id=project.id,
            description=description,
            amount=Decimal(amount),
            billed=billed,
        )
        db_session.add(charge)
        db_session.commit()
        return charge

    return _make


@pytest.fixture(scope='function')
def make_proposal(db_session, client_party, staff):
    def _make(*, owner=None, items=None, **fields):
        payload = {"title": "Website redesign", **fields}
        if "client_id" not in fields and "lead_id" not in fields:
            payload["client_id"] = client_party.id
        if items is not None:
            payload["items"] = items
        return document_service.create_proposal(payload, actor_id=(owner or staff).id)

    return _make


@pytest.fixture(scope='function')
def make_bill(db_session, client_party, staff):
    def _make(*, owner=None, items=None, **fields):
        payload = {"title": "October services", "client_id": client_party.id, **fields}
        if items is not None:
            payload["items"] = items
        return document_service.create_bill(payload, actor_id=(owner or staff).id)

    return _make


# =============================================================================
# AUTH HELPERS
# =============================================================================


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(db_session):
    def _headers(user):
        _, token = session_service.create_session(user_id=user.id)
        return auth_headers(token)

    return _headers
