"""Outbound email over SMTP."""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email

from .auth import create_email_verification_token
from .config import get_settings
from .models import User

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Raised when a message is malformed or cannot be delivered."""


@dataclass
class EmailMessage:
    subject: str
    to: List[str]
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    headers: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.subject.strip():
            raise EmailError("Subject cannot be empty")
        if not self.to:
            raise EmailError("At least one recipient is required")
        if not self.body_text and not self.body_html:
            raise EmailError("Either body_text or body_html must be provided")
        for address in self.to:
            try:
                validate_email(address, check_deliverability=False)
            except EmailNotValidError as exc:
                raise EmailError(f"Invalid recipient email: {address}") from exc


def send_email(message: EmailMessage) -> None:
    settings = get_settings()
    if not settings.smtp_host:
        raise EmailError("SMTP is not configured")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = message.subject
    msg["From"] = settings.mail_from
    msg["To"] = ", ".join(message.to)
    for key, value in message.headers.items():
        msg[key] = value
    if message.body_text:
        msg.attach(MIMEText(message.body_text, "plain"))
    if message.body_html:
        msg.attach(MIMEText(message.body_html, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg, to_addrs=message.to)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", ", ".join(message.to), exc)
        raise EmailError(f"Failed to send email: {exc}") from exc
    logger.info("Email '%s' sent to %s", message.subject, ", ".join(message.to))


def verification_link(user: User) -> str:
    token = create_email_verification_token(user)
    return f"{get_settings().backend_url.rstrip('/')}/auth/verify-email?token={token}"


def send_verification_email(user: User) -> bool:
    """Send the verification link; returns False instead of raising so registration can proceed."""

    link = verification_link(user)
    message = EmailMessage(
        subject="Verify your RentEase account",
        to=[user.email],
        body_text=(
            f"Hello {user.full_name},\n\n"
            f"Please confirm your email address by opening the link below:\n{link}\n\n"
            f"The link expires in {get_settings().email_token_expire_hours} hours."
        ),
        body_html=(
            f"<p>Hello {user.full_name},</p>"
            f'<p>Please confirm your email address: <a href="{link}">Verify email</a></p>'
            f"<p>The link expires in {get_settings().email_token_expire_hours} hours.</p>"
        ),
    )
    try:
        send_email(message)
    except EmailError as exc:
        logger.warning("Verification email for user %s not sent: %s", user.id, exc)
        return False
    return True
