# Overview: Service-layer operations for client approval links; issue, validate and consume.

"""
Client approval tokens.

A token is a 256-bit random value handed to the client inside a link. It
authorizes exactly ONE decision (approve or reject) on ONE proposal, until
it expires.

SECURITY NOTES:
- Only the SHA-256 hash is stored (same scheme as session tokens)
- The presented token is whitespace-trimmed, then compared in constant time
- Tokens are never deleted: "used" means the document left the PENDING
  client-decision state, which every later check rejects

Check order for a presented token:
    Invalid (no token stored / mismatch) -> Expired -> AlreadyDecided
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import (
    AuthorizationError,
    PolicyViolation,
    TokenAlreadyDecided,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from ..extensions import db
from ..models import FinancialDocument
from ..models.documents import (
    CLIENT_PENDING,
    DECISION_APPROVED,
    DECISION_REJECTED,
    STATUS_PENDING_CLIENT,
)
from ..permissions import APPROVE_ON_BEHALF_OF_CLIENT
from . import permission_service
from .concurrency import run_in_document_transaction
from .notification_service import PendingNotification
from .session_service import generate_token, hash_token
from praxis.time_utils import days_from, to_utc_z, utcnow


DEFAULT_TOKEN_TTL_DAYS = 30


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {"token": self.token, "expires_at": to_utc_z(self.expires_at)}


@dataclass(frozen=True)
class ClientDecisionAuthorization:
    """Proof that a presented token passed validation at `validated_at`."""
    document_id: int
    token_hash: str
    expires_at: datetime
    validated_at: datetime


@dataclass
class ClientDecisionResult:
    document: FinancialDocument
    decision: str
    notifications: list[PendingNotification] = field(default_factory=list)


def _ttl_days() -> int:
    return int(current_app.config.get("CLIENT_APPROVAL_TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS))


def mint(document: FinancialDocument, *, now: datetime | None = None) -> IssuedToken:
    """
    Inside an open unit of work: replace the document's token with a fresh
    one and put the client decision back to PENDING.
    """
    now = now or utcnow()
    token = generate_token()
    expires_at = days_from(now, _ttl_days())

    document.client_approval_token_hash = hash_token(token)
    document.client_approval_token_expires_at = expires_at
    document.client_approval_status = CLIENT_PENDING
    document.client_decided_at = None
    document.client_rejection_reason = None
    document.client_decision_by_user_id = None
    return IssuedToken(token=token, expires_at=expires_at)


def _require_awaiting_client(document: FinancialDocument) -> None:
    if not document.is_proposal or document.status != STATUS_PENDING_CLIENT:
        raise PolicyViolation("Only proposals awaiting the client have an approval link")


def issue(document_id: int) -> IssuedToken:
    """Mint a new link for a proposal awaiting the client. The old link stops working."""
    def _op(document: FinancialDocument) -> IssuedToken:
        _require_awaiting_client(document)
        return mint(document)

    return run_in_document_transaction(document_id, _op)


def reissue(document_id: int, *, actor_id: int | None = None) -> tuple[IssuedToken, list[PendingNotification]]:
    """
    Re-send the client link (e.g. after it expired): fresh token, fresh
    horizon, and an approval request to the client.
    """
    if actor_id is not None:
        permission_service.require_permission(actor_id, APPROVE_ON_BEHALF_OF_CLIENT)

    def _op(document: FinancialDocument):
        _require_awaiting_client(document)
        if document.client_approval_status != CLIENT_PENDING:
            raise TokenAlreadyDecided("The client has already decided on this proposal")
        issued = mint(document)
        recipient = document.client or document.lead
        return issued, [PendingNotification("send_approval_request", (recipient, document, issued.token))]

    return run_in_document_transaction(document_id, _op)


def _matches(stored_hash: str | None, presented: str | None) -> bool:
    presented = (presented or "").strip()
    if not stored_hash or not presented:
        return False
    return hmac.compare_digest(hash_token(presented), stored_hash)


def _check_open(document: FinancialDocument, now: datetime) -> None:
    expires_at = document.client_approval_token_expires_at
    if expires_at is None or now > expires_at:
        raise TokenExpired("This approval link has expired")
    if document.client_approval_status != CLIENT_PENDING:
        raise TokenAlreadyDecided("A decision has already been recorded for this proposal")


def validate(document_id: int, presented_token: str | None, *, now: datetime | None = None) -> ClientDecisionAuthorization:
    """Read-only check of a presented token. Unknown documents look like bad tokens."""
    now = now or utcnow()
    document = db.session.get(FinancialDocument, document_id)
    if document is None or not _matches(document.client_approval_token_hash, presented_token):
        raise TokenInvalid("This approval link is not valid")
    _check_open(document, now)
    return ClientDecisionAuthorization(
        document_id=document.id,
        token_hash=document.client_approval_token_hash,
        expires_at=document.client_approval_token_expires_at,
        validated_at=now,
    )


def _normalize_decision(decision: str | None, reason: str | None) -> tuple[str, str | None]:
    normalized = (decision or "").strip().upper()
    if normalized not in {DECISION_APPROVED, DECISION_REJECTED}:
        raise ValidationError("decision must be APPROVED or REJECTED", field="decision")
    reason = (reason or "").strip() or None
    if normalized == DECISION_REJECTED and not reason:
        raise ValidationError("A reason is required when rejecting", field="reason")
    return normalized, reason


def record_decision(
    authorization: ClientDecisionAuthorization,
    decision: str,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> ClientDecisionResult:
    """
    Consume a validated token. The checks run again under the document lock,
    so of two concurrent decisions only the first one lands; the second gets
    TokenAlreadyDecided.
    """
    from . import lifecycle_service

    decision, reason = _normalize_decision(decision, reason)

    def _op(document: FinancialDocument) -> ClientDecisionResult:
        current = now or utcnow()
        stored = document.client_approval_token_hash
        if not stored or not hmac.compare_digest(stored, authorization.token_hash):
            raise TokenInvalid("This approval link is not valid")
        _check_open(document, current)
        notifications = lifecycle_service.apply_client_decision(
            document, decision, reason, decided_by_user_id=None, now=current
        )
        return ClientDecisionResult(document=document, decision=decision, notifications=notifications)

    return run_in_document_transaction(authorization.document_id, _op)


def record_decision_on_behalf(
    document_id: int,
    decision: str,
    reason: str | None = None,
    *,
    actor_id: int,
    now: datetime | None = None,
) -> ClientDecisionResult:
    """Staff records the client's answer (phone, meeting). Same single-use rule as the link."""
    from . import lifecycle_service

    if not permission_service.user_has_permission(actor_id, APPROVE_ON_BEHALF_OF_CLIENT):
        raise AuthorizationError("Permission denied: APPROVE_ON_BEHALF_OF_CLIENT")
    decision, reason = _normalize_decision(decision, reason)

    def _op(document: FinancialDocument) -> ClientDecisionResult:
        current = now or utcnow()
        if document.is_proposal and document.client_decided_at is not None:
            raise TokenAlreadyDecided("A decision has already been recorded for this proposal")
        _require_awaiting_client(document)
        if not document.internal_approvals_complete:
            raise PolicyViolation("Internal approvals must be complete first")
        notifications = lifecycle_service.apply_client_decision(
            document, decision, reason, decided_by_user_id=actor_id, now=current
        )
        return ClientDecisionResult(document=document, decision=decision, notifications=notifications)

    return run_in_document_transaction(document_id, _op)
