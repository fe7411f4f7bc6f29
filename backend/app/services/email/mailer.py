"""
Mail sender collaborator: send(to, subject, html, from_email) -> provider message id or None.

Any failure raises MailSendError; the executor records it as a failed attempt and moves on (no retry).
Transport is chosen by MAIL_TRANSPORT: "resend" (HTTP API, default) or "smtp" (e.g. Gmail app password).
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Protocol

import httpx

from app.config import settings
from app.core.errors import MailSendError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str, from_email: str) -> str | None:
        ...


class ResendMailer:
    """Resend HTTP API. Returns the Resend email id."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or settings.resend_api_key).strip()
        self._timeout = timeout
        self._transport = transport

    def send(self, to: str, subject: str, html: str, from_email: str) -> str | None:
        if not self._api_key:
            raise MailSendError("RESEND_API_KEY is not set")
        body = {"from": from_email, "to": [to], "subject": subject, "html": html}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as c:
                r = c.post(
                    RESEND_API_URL,
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as e:
            raise MailSendError(f"Failed to send email: {e}") from e
        if not r.is_success:
            detail = ""
            try:
                detail = (r.json() or {}).get("message") or ""
            except ValueError:
                detail = (r.text or "")[:200]
            raise MailSendError(f"Failed to send email: {r.status_code} {detail}".strip())
        try:
            data = r.json() if r.content else {}
        except ValueError:
            data = {}
        return data.get("id") if isinstance(data, dict) else None


class SmtpMailer:
    """SMTP with STARTTLS. Returns the generated Message-ID."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._host = host or settings.smtp_host
        self._port = port or settings.smtp_port
        self._user = (user or settings.smtp_user).strip()
        self._password = (password or settings.smtp_password).strip()
        self._timeout = timeout

    def send(self, to: str, subject: str, html: str, from_email: str) -> str | None:
        if not self._user or not self._password:
            raise MailSendError("SMTP_USER or SMTP_PASSWORD not set")
        message_id = make_msgid()
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_email
        msg["To"] = to
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html, "html"))
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls()
                server.login(self._user, self._password)
                server.sendmail(self._user, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise MailSendError(f"Failed to send email: {e}") from e
        return message_id


def get_mailer() -> Mailer:
    """Default mailer for routes and scheduler (FastAPI dependency; override in tests)."""
    if settings.mail_transport == "smtp":
        return SmtpMailer()
    return ResendMailer()
