# Overview: Service-layer operations for notification; outbound messages about documents.

"""
Notification collaborator.

Services never send anything while a unit of work is open. They return
PendingNotification values; the caller dispatches them AFTER commit:

    result = consensus_service.submit(...)      # committed
    errors = dispatch(result.notifications)     # fire-and-forget

A failed send is logged and reported back as a string. It never undoes the
committed state change and is not retried here.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage

from flask import current_app

from ..extensions import NOTIFIER_EXTENSION_KEY


class Notifier:
    """Interface. Implementations must not touch the database session."""

    def send_internal_approval_request(self, approver, document) -> None:
        raise NotImplementedError

    def send_approval_request(self, recipient, document, token: str) -> None:
        raise NotImplementedError

    def send_decision_notice(self, recipient, document, decision: str) -> None:
        raise NotImplementedError


def approval_link(document, token: str) -> str:
    base = current_app.config.get("PUBLIC_BASE_URL", "").rstrip("/")
    return f"{base}/client-approval/{document.id}?token={token}"


def _label(document) -> str:
    kind = "Proposal" if document.is_proposal else "Bill"
    return f"{kind} {document.number or document.id}"


def _messages_for_internal_request(approver, document) -> tuple[str, str]:
    subject = f"Approval requested: {_label(document)}"
    body = (
        f"Hello {approver.name},\n\n"
        f"{_label(document)} \"{document.title}\" ({document.amount} {document.currency}) "
        f"is waiting for your internal approval.\n"
    )
    return subject, body


def _messages_for_client_request(recipient, document, token: str) -> tuple[str, str]:
    subject = f"Please review {_label(document)}"
    body = (
        f"Hello {recipient.name},\n\n"
        f"{_label(document)} \"{document.title}\" for {document.amount} {document.currency} "
        f"is ready for your decision:\n\n{approval_link(document, token)}\n\n"
        f"The link expires on {document.client_approval_token_expires_at:%Y-%m-%d}.\n"
    )
    return subject, body


def _messages_for_decision(recipient, document, decision: str) -> tuple[str, str]:
    subject = f"{_label(document)} {decision.lower()}"
    body = f"Hello {recipient.name},\n\n{_label(document)} \"{document.title}\" was {decision.lower()}.\n"
    if document.client_rejection_reason:
        body += f"\nReason: {document.client_rejection_reason}\n"
    return subject, body


class LogNotifier(Notifier):
    """Default backend: writes each message to the application log."""

    def _log(self, to: str | None, subject: str) -> None:
        current_app.logger.info("Notification to %s: %s", to or "<no address>", subject)

    def send_internal_approval_request(self, approver, document) -> None:
        subject, _ = _messages_for_internal_request(approver, document)
        self._log(approver.email, subject)

    def send_approval_request(self, recipient, document, token: str) -> None:
        subject, _ = _messages_for_client_request(recipient, document, token)
        self._log(recipient.email, subject)

    def send_decision_notice(self, recipient, document, decision: str) -> None:
        subject, _ = _messages_for_decision(recipient, document, decision)
        self._log(recipient.email, subject)


class SmtpNotifier(Notifier):
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        timeout: float,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _send(self, to: str | None, subject: str, body: str) -> None:
        if not to:
            raise ValueError(f"No email address for '{subject}'")
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)

    def send_internal_approval_request(self, approver, document) -> None:
        self._send(approver.email, *_messages_for_internal_request(approver, document))

    def send_approval_request(self, recipient, document, token: str) -> None:
        self._send(recipient.email, *_messages_for_client_request(recipient, document, token))

    def send_decision_notice(self, recipient, document, decision: str) -> None:
        self._send(recipient.email, *_messages_for_decision(recipient, document, decision))


def build_notifier(config) -> Notifier:
    backend = (config.get("NOTIFIER_BACKEND") or "log").lower()
    if backend == "log":
        return LogNotifier()
    if backend == "smtp":
        return SmtpNotifier(
            host=config["SMTP_HOST"],
            port=config["SMTP_PORT"],
            sender=config["MAIL_FROM"],
            timeout=config["NOTIFIER_TIMEOUT_SECONDS"],
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=config.get("SMTP_USE_TLS", False),
        )
    raise ValueError(f"Unknown NOTIFIER_BACKEND '{backend}'")


def get_notifier() -> Notifier:
    return current_app.extensions[NOTIFIER_EXTENSION_KEY]


@dataclass(frozen=True)
class PendingNotification:
    method: str
    args: tuple = field(default_factory=tuple)


def notify(method: str, *args) -> str | None:
    """Send one message. Returns an error string instead of raising."""
    try:
        getattr(get_notifier(), method)(*args)
    except Exception as exc:
        current_app.logger.exception("Notification %s failed", method)
        return f"{method} failed: {exc}"
    return None


def dispatch(notifications) -> list[str]:
    errors = []
    for pending in notifications:
        error = notify(pending.method, *pending.args)
        if error:
            errors.append(error)
    return errors
