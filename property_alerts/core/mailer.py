from __future__ import annotations

import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid, parseaddr
from typing import Any, Protocol

import httpx

from property_alerts.core.settings import env_flag, env_float, env_int


LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class DeliveryError(RuntimeError):
    """Raised when the transport did not accept a message."""


class MailTransport(Protocol):
    def send(self, to_email: str, subject: str, html_body: str, text_body: str | None = None) -> str: ...


class SmtpTransport:
    def __init__(
        self,
        host: str,
        from_email: str,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        use_ssl: bool | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.use_ssl = port == 465 if use_ssl is None else use_ssl
        self.timeout = timeout

    def send(self, to_email: str, subject: str, html_body: str, text_body: str | None = None) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        message_id = make_msgid(domain=parseaddr(self.from_email)[1].rpartition("@")[2] or None)
        msg["Message-ID"] = message_id
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            if self.use_ssl:
                server: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if not self.use_ssl:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls()
                        server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery to {to_email} failed: {exc}") from exc
        return message_id


class HttpMailTransport:
    """JSON mail API (Resend-style): POST {from, to, subject, html, text} with a bearer key."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_email: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self._client = client

    def send(self, to_email: str, subject: str, html_body: str, text_body: str | None = None) -> str:
        request_body: dict[str, Any] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        }
        if text_body:
            request_body["text"] = text_body
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=request_body, headers=headers, timeout=self.timeout)
                response.raise_for_status()
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.api_url, json=request_body, headers=headers)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Mail API delivery to {to_email} failed: {exc}") from exc
        return _message_id_from_response(response)


def transport_from_env() -> MailTransport | None:
    backend = (os.environ.get("MAIL_BACKEND") or "").strip().lower()
    from_email = os.environ.get("EMAIL_FROM")
    timeout = env_float("MAIL_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
    api_url = os.environ.get("MAIL_API_URL")
    api_key = os.environ.get("MAIL_API_KEY")
    smtp_host = os.environ.get("SMTP_HOST")

    if not backend:
        backend = "http" if api_url and api_key else "smtp" if smtp_host else ""
    if not backend or not from_email:
        return None

    if backend == "http":
        if not api_url or not api_key:
            return None
        return HttpMailTransport(api_url=api_url, api_key=api_key, from_email=from_email, timeout=timeout)
    if backend == "smtp":
        if not smtp_host:
            return None
        return SmtpTransport(
            host=smtp_host,
            port=env_int("SMTP_PORT", 587),
            user=os.environ.get("SMTP_USER"),
            password=os.environ.get("SMTP_PASSWORD"),
            from_email=from_email,
            use_ssl=env_flag("SMTP_USE_SSL"),
            timeout=timeout,
        )
    LOGGER.warning("Unknown MAIL_BACKEND=%s", backend)
    return None


def _message_id_from_response(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        value = data.get("id") or data.get("message_id") or data.get("messageId")
        if value:
            return str(value)
    return response.headers.get("x-message-id", "")

