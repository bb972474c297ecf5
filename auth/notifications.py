"""
auth/notifications.py -- Outbound account email: verification codes and welcome.

The workflows never talk to SMTP directly. They receive an EmailSender --
anything with a send(OutgoingEmail) method -- built once at startup by
build_email_sender() and stored on app.state. Tests pass a recording fake.

Contract for every sender: raise EmailSendFailed on any delivery failure
(connection refused, timeout, auth rejected, recipient refused). Workflows
decide whether that failure is fatal (resend-otp) or only logged
(registration, welcome).

Message bodies are Jinja2 templates in auth/templates/, rendered with
autoescaping so a display name cannot inject markup.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from jinja2 import Environment, PackageLoader, select_autoescape

from core.config import Settings
from core.errors import EmailSendFailed

logger = logging.getLogger("noteapp.auth.email")

_templates = Environment(
    loader=PackageLoader("auth", "templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class OutgoingEmail:
    recipient: str
    subject: str
    html_body: str
    text_body: str


class EmailSender(Protocol):
    def send(self, message: OutgoingEmail) -> None: ...


# ---------------------------------------------------------------------------
# Senders
# ---------------------------------------------------------------------------


class SmtpEmailSender:
    """Deliver mail through an SMTP relay with optional STARTTLS and login.

    One connection per message. Account mail volume is a handful of messages
    per registration, so pooling buys nothing.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def send(self, message: OutgoingEmail) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = message.recipient
        msg["Subject"] = message.subject
        msg.set_content(message.text_body)
        msg.add_alternative(message.html_body, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", message.recipient, exc)
            raise EmailSendFailed() from exc
        logger.info("Email sent to %s (%s)", message.recipient, message.subject)


class LogEmailSender:
    """Development sender: writes the plain-text body to the log instead of mailing it.

    Selected when SMTP_HOST is empty. The log line contains the verification
    code, so this sender must never be used in production.
    """

    def send(self, message: OutgoingEmail) -> None:
        logger.warning("SMTP not configured -- email to %s (%s):\n%s", message.recipient, message.subject, message.text_body)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.smtp_host:
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.email_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.smtp_timeout_seconds,
        )
    if not settings.debug:
        logger.warning("SMTP_HOST is not set -- verification codes will only be written to the log")
    return LogEmailSender()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def send_verification_code(sender: EmailSender, recipient: str, code: str, ttl_minutes: int) -> None:
    """Render and send the OTP email. Raises EmailSendFailed."""
    context = {"code": code, "ttl_minutes": ttl_minutes}
    sender.send(
        OutgoingEmail(
            recipient=recipient,
            subject="Your OTP for Note App Verification",
            html_body=_templates.get_template("verification_code.html").render(**context),
            text_body=_templates.get_template("verification_code.txt").render(**context),
        )
    )


def send_welcome(sender: EmailSender, recipient: str, name: str) -> None:
    """Render and send the welcome email. Raises EmailSendFailed."""
    sender.send(
        OutgoingEmail(
            recipient=recipient,
            subject="Welcome to Note App!",
            html_body=_templates.get_template("welcome.html").render(name=name),
            text_body=_templates.get_template("welcome.txt").render(name=name),
        )
    )


def try_send_welcome(sender: EmailSender, recipient: str, name: str) -> bool:
    """Best-effort welcome email. Logs and returns False on delivery failure."""
    try:
        send_welcome(sender, recipient, name)
    except EmailSendFailed:
        logger.warning("Welcome email to %s could not be delivered", recipient)
        return False
    return True


def try_send_verification_code(sender: EmailSender, recipient: str, code: str, ttl_minutes: int) -> bool:
    """Best-effort OTP email. Logs and returns False on delivery failure."""
    try:
        send_verification_code(sender, recipient, code, ttl_minutes)
    except EmailSendFailed:
        logger.warning("Verification code email to %s could not be delivered", recipient)
        return False
    return True
