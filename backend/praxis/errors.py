# Overview: Domain error taxonomy shared by services and mapped to HTTP by routes.

"""
Error taxonomy for the financial document engine.

Every service raises one of these; nothing in the services layer knows about
HTTP. The app-level error handler (see praxis/__init__.py) turns them into
JSON responses using `http_status` and `to_dict()`.

    PraxisError
    |- ValidationError       400  malformed input, carries the offending field
    |- AuthorizationError    403  actor may not perform this operation
    |- NotFoundError         404  unknown document / item / user
    |- PolicyViolation       409  business rule refuses the operation
    |- StorageError          503  persistence failed; nothing was applied
    |- TokenError            400  client approval link problems
       |- TokenInvalid       404
       |- TokenExpired       410
       |- TokenAlreadyDecided 409
"""

from __future__ import annotations


class PraxisError(Exception):
    """Base class for all domain errors."""

    http_status = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(PraxisError):
    """400-level input problem."""

    http_status = 400
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


class AuthorizationError(PraxisError):
    """Actor lacks the right to perform the operation."""

    http_status = 403
    code = "forbidden"


class NotFoundError(PraxisError):
    http_status = 404
    code = "not_found"


class PolicyViolation(PraxisError):
    """
    The request is well-formed and authorized, but a business rule refuses it
    (e.g. editing a submitted document, deleting a timesheet-derived item).
    """

    http_status = 409
    code = "policy_violation"


class StorageError(PraxisError):
    """Persistence collaborator failed. The unit of work was rolled back."""

    http_status = 503
    code = "storage_error"


class TokenError(PraxisError):
    """Base for client approval link failures."""

    http_status = 400
    code = "token_error"


class TokenInvalid(TokenError):
    http_status = 404
    code = "invalid"


class TokenExpired(TokenError):
    http_status = 410
    code = "expired"


class TokenAlreadyDecided(TokenError):
    http_status = 409
    code = "already_decided"
