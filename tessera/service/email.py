from __future__ import annotations

import smtplib
import ssl
from contextlib import contextmanager
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Dict, Iterator, Optional

from tessera.logging import get_logger

logger = get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class Theme:
    body_bg_color: str
    text_color: str
    text_color_faded: str
    panel_bg_color: str
    panel_border_color: str
    code_bg_color: str
    code_text_color: str


THEMES: Dict[str, Theme] = {
    "whiteBlue": Theme(
        body_bg_color="#e9ecef",
        text_color="#000",
        text_color_faded="#666",
        panel_bg_color="#ffffff",
        panel_border_color="#d4dadf",
        code_bg_color="#2980b9",
        code_text_color="#ffffff",
    ),
    "darkGreen": Theme(
        body_bg_color="#1f2933",
        text_color="#f5f7fa",
        text_color_faded="#9aa5b1",
        panel_bg_color="#323f4b",
        panel_border_color="#3e4c59",
        code_bg_color="#10a37f",
        code_text_color="#ffffff",
    ),
}
DEFAULT_THEME = "whiteBlue"


class EmailService:
    """Delivers the password reset code over SMTP.

    STARTTLS is used when ``smtp_use_tls`` is set, implicit TLS otherwise.
    Without an SMTP host the message is only logged, which keeps local
    development and tests free of a mail server.
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
        company_name: str = "Tessera",
        theme: str = DEFAULT_THEME,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.company_name = company_name
        self.theme = THEMES.get(theme, THEMES[DEFAULT_THEME])

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f'"{self.company_name}" <{self.from_email}>'
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    @contextmanager
    def _smtp_session(self) -> Iterator[smtplib.SMTP]:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=SMTP_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=SMTP_TIMEOUT_SECONDS
            )
        with server:
            if self.smtp_use_tls:
                server.starttls(context=context)
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            yield server

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Hand one message to the SMTP server; ``False`` means it was not accepted."""
        recipient = self._redact_email(to_email)
        if not self.is_configured:
            logger.info("email_dev_mode", recipient=recipient, subject=subject)
            return True

        msg = self._build_message(to_email, subject, html_body, text_body)
        try:
            with self._smtp_session() as server:
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("email_auth_failed", host=self.smtp_host, error=str(exc))
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error("email_recipient_refused", recipient=recipient)
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            # OSError covers refused connections, DNS failures and timeouts
            logger.error(
                "email_delivery_failed",
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

        logger.info("email_sent", recipient=recipient, subject=subject)
        return True

    def render_password_reset(self, code: int | str, expire_hours: int) -> tuple[str, str, str]:
        """Return ``(subject, text_body, html_body)`` for a reset-code email."""
        company = self.company_name
        subject = f"Change the password of your {company} account"
        text_body = (
            f"Type the code {code} in the application to change your account password.\n"
            f"The code is only valid for {expire_hours} hours.\n"
            "If you didn't request a new password, you can safely delete this email.\n"
        )
        t = self.theme
        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ background: {t.body_bg_color}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: {t.text_color}; }}
        .card {{ max-width: 600px; margin: 40px auto; padding: 36px; background: {t.panel_bg_color}; border: 1px solid {t.panel_border_color}; border-radius: 8px; }}
        .code {{ display: inline-block; background: {t.code_bg_color}; color: {t.code_text_color}; padding: 12px 24px; border-radius: 6px; font-size: 24px; letter-spacing: 6px; font-weight: 600; }}
        .footer {{ margin-top: 32px; font-size: 12px; color: {t.text_color_faded}; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Change your password</h1>
        <p>Type the code below in the application to change your account password:</p>
        <p style="margin: 30px 0;"><span class="code">{escape(str(code))}</span></p>
        <p>The code is only valid for {expire_hours} hours.</p>
        <p>If you didn't request a new password, you can safely delete this email.</p>
        <div class="footer">
            <p>{escape(company)}</p>
        </div>
    </div>
</body>
</html>
"""
        return subject, text_body, html_body

    def send_password_reset_code(self, to_email: str, code: int | str, expire_hours: int) -> bool:
        """Send the one-time password reset code."""
        subject, text_body, html_body = self.render_password_reset(code, expire_hours)
        return self._send_email(to_email, subject, html_body, text_body)
