from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from communityhub.logging import get_logger

logger = get_logger(__name__)

OTP_SUBJECT = "Your password reset OTP"

_OTP_TEXT = """Password reset

Use the following OTP to reset your password. It expires in {ttl_minutes} minutes.

{code}

If you didn't request this, you can ignore this email.
"""

_OTP_HTML = """<!DOCTYPE html>
<html>
<body style="font-family: sans-serif; color: #1f2933;">
  <h1>Password reset</h1>
  <p>Use the following OTP to reset your password. It expires in {ttl_minutes} minutes.</p>
  <p style="font-size: 28px; font-weight: 700; letter-spacing: 6px;">{code}</p>
  <p>If you didn't request this, you can ignore this email.</p>
</body>
</html>
"""


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailNotifier:
    """Delivers one-time codes over SMTP.

    Without an SMTP host the message is only logged, so development and
    tests never need a mail server.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Community Hub",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to_email: str, subject: str, text: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if not self.smtp_use_tls:
            return smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            )
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        server.starttls(context=context)
        return server

    def _deliver(self, msg: EmailMessage) -> bool:
        """Send ``msg``; False on any SMTP or network failure."""
        to_email = msg["To"]
        if not self.is_configured:
            logger.info("email_dev_mode", to=redact_email(to_email), subject=msg["Subject"])
            return True
        try:
            with self._connect() as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPException as exc:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(exc).__name__,
                smtp_code=getattr(exc, "smtp_code", None),
            )
            return False
        except OSError as exc:
            # Covers refused connections, DNS failures, timeouts and TLS errors
            logger.error(
                "email_connect_failed",
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        logger.info("email_sent", to=redact_email(to_email), subject=msg["Subject"])
        return True

    def send_otp(self, to_email: str, code: str, *, ttl_minutes: int = 10) -> bool:
        """Send the password reset code."""
        msg = self._build_message(
            to_email,
            OTP_SUBJECT,
            _OTP_TEXT.format(code=code, ttl_minutes=ttl_minutes),
            _OTP_HTML.format(code=code, ttl_minutes=ttl_minutes),
        )
        return self._deliver(msg)
