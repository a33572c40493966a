"""
Gatekeeper - Outbound Mail

Mailer collaborator used by the auth flows for verification, password
reset and welcome messages.

Delivery is best effort: callers catch and log failures, they never
fail the request that triggered the mail.

Implementations:
- SMTPMailer: aiosmtplib
- LoggingMailer: writes the message to the log (development, no SMTP_HOST)
"""

from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import aiosmtplib

from backend.config import settings
from backend.logging import get_logger


logger = get_logger(__name__)


class MailTemplate(str, Enum):
    VERIFY_EMAIL = "verify_email"
    PASSWORD_RESET = "password_reset"
    WELCOME = "welcome"


_TEMPLATES: Dict[MailTemplate, Tuple[str, str]] = {
    MailTemplate.VERIFY_EMAIL: (
        "Verify your email address",
        "Hello {name},\n\n"
        "Please confirm your email address by opening the link below:\n"
        "{frontend_url}/verify-email/{token}\n\n"
        "The link expires in {expires_hours} hours.\n",
    ),
    MailTemplate.PASSWORD_RESET: (
        "Reset your password",
        "Hello {name},\n\n"
        "A password reset was requested for your account. Open the link below to choose a new password:\n"
        "{frontend_url}/reset-password/{token}\n\n"
        "The link expires in {expires_minutes} minutes. If you did not request this, ignore this email.\n",
    ),
    MailTemplate.WELCOME: (
        "Welcome!",
        "Hello {name},\n\nYour account is ready.\n",
    ),
}


def render(template: MailTemplate, params: Dict[str, Any]) -> Tuple[str, str]:
    """
    Render a template to (subject, text body).

    Raises:
        KeyError: A parameter referenced by the template is missing
    """
    subject, body = _TEMPLATES[template]
    values = {
        "frontend_url": settings.FRONTEND_URL.rstrip("/"),
        "expires_hours": settings.EMAIL_VERIFICATION_EXPIRE_HOURS,
        "expires_minutes": settings.PASSWORD_RESET_EXPIRE_MINUTES,
        **params,
    }
    return subject, body.format(**values)


class Mailer(ABC):
    """Collaborator contract for outbound mail."""

    @abstractmethod
    async def send(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        """Deliver one message. May raise on transport failure."""


class LoggingMailer(Mailer):
    """Logs messages instead of sending them. Tokens are not logged."""

    async def send(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        subject, _ = render(template, params)
        logger.info("mail.logged", recipient=recipient, template=template.value, subject=subject)


class SMTPMailer(Mailer):
    """
    Sends plain-text mail over SMTP.

    Args:
        host / port: SMTP server
        username / password: Credentials (optional)
        use_tls: STARTTLS on connect
        from_email / from_name: Sender
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: str = "no-reply@example.com",
        from_name: str = "Gatekeeper",
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username or None
        self.password = password or None
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    async def send(self, recipient: str, template: MailTemplate, params: Dict[str, Any]) -> None:
        subject, text_body = render(template, params)

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = recipient
        message.attach(MIMEText(text_body, "plain", "utf-8"))

        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=self.use_tls if self.port != 465 else None,
            use_tls=self.port == 465,
            timeout=self.timeout,
        )
        logger.info("mail.sent", recipient=recipient, template=template.value)


def build_mailer() -> Mailer:
    """Mailer selected from configuration."""
    if not settings.SMTP_HOST:
        return LoggingMailer()
    return SMTPMailer(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        from_email=settings.EMAIL_FROM,
        from_name=settings.EMAIL_FROM_NAME,
    )
