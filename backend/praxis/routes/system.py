# Overview: Flask API routes for system health and version.

"""
System health and version endpoints.

Health reports on the store (database) and on the notification collaborator
so an operator can tell a dead database from a misconfigured mail relay.
"""

import sys
import time
from flask import Blueprint, current_app

from ..extensions import db, NOTIFIER_EXTENSION_KEY
from ..models import FinancialDocument, SessionToken, User
from ..models.documents import STATUS_PENDING_CLIENT, CLIENT_PENDING
from praxis.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        document_count = db.session.query(FinancialDocument).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "documents": document_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_client_links_health() -> dict:
    """
    Degraded when proposals sit with the client behind an expired link:
    nobody can answer them until the link is reissued.
    """
    try:
        expired_links = db.session.query(FinancialDocument).filter(
            FinancialDocument.status == STATUS_PENDING_CLIENT,
            FinancialDocument.client_approval_status == CLIENT_PENDING,
            FinancialDocument.client_approval_token_expires_at < utcnow(),
        ).count()
    except Exception:
        current_app.logger.exception("Client link health check failed")
        return {"status": "unhealthy", "error": "Database error"}

    if expired_links:
        return {
            "status": "degraded",
            "warning": f"{expired_links} proposal(s) awaiting the client have an expired link",
            "details": {"expired_links": expired_links},
        }
    return {"status": "healthy", "details": {"expired_links": 0}}


def check_notifier_health() -> dict:
    notifier = current_app.extensions.get(NOTIFIER_EXTENSION_KEY)
    if notifier is None:
        return {"status": "degraded", "warning": "No notifier configured"}
    return {"status": "healthy", "details": {"backend": type(notifier).__name__}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "client_links": check_client_links_health(),
        "notifier": check_notifier_health(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info. No secrets, credentials or paths."""
    return {
        "api_version": API_VERSION,
        "environment": "production" if not current_app.debug else "development",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
