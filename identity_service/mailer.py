"""SMTP dispatch of verification, password reset and invitation emails."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from urllib.parse import urlencode

from .config import Settings
from .errors import EmailDeliveryError

logger = logging.getLogger(__name__)


class EmailKind(str, Enum):
    verification = "verification"
    password_reset = "password_reset"
    organization_invite = "organization_invite"


# kind -> (frontend path, subject, call to action)
_TEMPLATES: dict[EmailKind, tuple[str, str, str]] = {
    EmailKind.verification: (
        "/verify-email",
        "Verify your email address",
        "Confirm your email address to activate your account. The link expires in 24 hours.",
    ),
    EmailKind.password_reset: (
        "/reset-password",
        "Reset your password",
        "Use the link below to choose a new password. The link expires in 20 minutes. "
        "If you did not request a reset you can ignore this email.",
    ),
    EmailKind.organization_invite: (
        "/activate-account",
        "You have been invited to set up your organization account",
        "An administrator created an organization account for you. Set your password "
        "to activate it. The link expires in 48 hours.",
    ),
}


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailDispatcher:
    """Sends transactional emails carrying single-use links.

    Without an SMTP host the message is only logged when ``allow_log_only`` is
    set (development); otherwise, like any delivery failure, it raises
    :class:`EmailDeliveryError`.
    """

    def __init__(
        self,
        *,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_use_tls: bool = True,
        from_email: str | None = None,
        from_name: str = "Identity Service",
        base_url: str = "http://localhost:5173",
        allow_log_only: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.allow_log_only = allow_log_only

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailDispatcher":
        return cls(
            smtp_host=settings.smtp_host or None,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user or None,
            smtp_password=settings.smtp_password or None,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from or None,
            base_url=settings.app_base_url,
            allow_log_only=settings.is_development,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def build_link(self, kind: EmailKind, token: str) -> str:
        path = _TEMPLATES[kind][0]
        return f"{self.base_url}{path}?{urlencode({'token': token})}"

    def send(self, kind: EmailKind, recipient: str, token: str) -> None:
        """Send the ``kind`` email carrying ``token`` to ``recipient``."""
        _, subject, intro = _TEMPLATES[kind]
        link = self.build_link(kind, token)
        text_body = f"{intro}\n\n{link}\n"
        html_body = f'<p>{intro}</p>\n<p><a href="{link}">{link}</a></p>\n'

        if not self.is_configured:
            if not self.allow_log_only:
                logger.error("smtp not configured, cannot send %s email to %s", kind.value, redact_email(recipient))
                raise EmailDeliveryError("Email delivery is not configured")
            logger.info("smtp not configured, skipping %s email to %s", kind.value, redact_email(recipient))
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, recipient, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    self._login(server)
                    server.sendmail(self.from_email, recipient, msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "failed to send %s email to %s: %s",
                kind.value,
                redact_email(recipient),
                type(exc).__name__,
            )
            raise EmailDeliveryError("Failed to send email") from exc

        logger.info("%s email sent to %s", kind.value, redact_email(recipient))

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
