from __future__ import annotations

import smtplib
import socket
import uuid
from email.message import EmailMessage
from typing import Optional

import httpx

from dunning.core.settings import Settings, settings as default_settings
from dunning.models.enums import ReminderFailureCategory
from dunning.services.notifications import NotificationSendError, SendResult


_DOMAIN_MARKERS = ("domain", "testing emails", "verify", "not authorized to send")


def classify_http_error(status_code: int, body: str) -> ReminderFailureCategory:
    lowered = (body or "").lower()
    if status_code == 429:
        return ReminderFailureCategory.RATE_LIMITED
    if status_code == 403 and any(marker in lowered for marker in _DOMAIN_MARKERS):
        return ReminderFailureCategory.DOMAIN_RESTRICTED
    if status_code >= 500:
        return ReminderFailureCategory.TRANSPORT
    if status_code == 422 or ("invalid" in lowered and any(word in lowered for word in ("email", "recipient", "address"))):
        return ReminderFailureCategory.INVALID_RECIPIENT
    return ReminderFailureCategory.PROVIDER_REJECTED


class EmailNotificationSender:
    """Delivers reminder emails through the configured provider.

    Every provider call is bounded by ``email_timeout_seconds``; timeouts and
    connection failures surface as ``transport`` errors.
    """

    def __init__(self, config: Settings | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = config or default_settings
        self._transport = transport

    def send(self, *, to: str, subject: str, body: str, text: Optional[str] = None) -> SendResult:
        provider = (self.settings.email_provider or "disabled").lower()
        if provider in {"disabled", "none"}:
            raise NotificationSendError("EMAIL_PROVIDER disabled", ReminderFailureCategory.VALIDATION)
        if not self.settings.email_from:
            raise NotificationSendError("EMAIL_FROM not configured", ReminderFailureCategory.VALIDATION)
        if not to or "@" not in to:
            raise NotificationSendError(f"Invalid recipient address: {to!r}", ReminderFailureCategory.INVALID_RECIPIENT)

        if provider == "resend":
            return self._send_resend(to_address=to, subject=subject, html=body, text=text)
        if provider == "postmark":
            return self._send_postmark(to_address=to, subject=subject, html=body, text=text)
        if provider == "smtp":
            return self._send_smtp(to_address=to, subject=subject, html=body, text=text)

        raise NotificationSendError(f"Unsupported EMAIL_PROVIDER: {provider}", ReminderFailureCategory.VALIDATION)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.settings.email_timeout_seconds, transport=self._transport)

    def _post(self, provider: str, url: str, *, payload: dict, headers: dict) -> httpx.Response:
        try:
            with self._client() as client:
                resp = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise NotificationSendError(f"{provider} timeout: {exc}", ReminderFailureCategory.TRANSPORT) from exc
        except httpx.HTTPError as exc:
            raise NotificationSendError(f"{provider} transport error: {exc}", ReminderFailureCategory.TRANSPORT) from exc
        if resp.status_code >= 400:
            raise NotificationSendError(
                f"{provider} error: {resp.status_code} {resp.text}",
                classify_http_error(resp.status_code, resp.text),
            )
        return resp

    def _send_resend(self, *, to_address: str, subject: str, html: str, text: str | None) -> SendResult:
        if not self.settings.email_api_key:
            raise NotificationSendError("EMAIL_API_KEY not configured for Resend", ReminderFailureCategory.VALIDATION)
        payload = {
            "from": self.settings.email_from,
            "to": [to_address],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        headers = {
            "Authorization": f"Bearer {self.settings.email_api_key}",
            "Content-Type": "application/json",
        }
        resp = self._post("Resend", "https://api.resend.com/emails", payload=payload, headers=headers)
        data = resp.json()
        return SendResult(provider="resend", message_id=data.get("id"))

    def _send_postmark(self, *, to_address: str, subject: str, html: str, text: str | None) -> SendResult:
        if not self.settings.email_api_key:
            raise NotificationSendError("EMAIL_API_KEY not configured for Postmark", ReminderFailureCategory.VALIDATION)
        payload = {
            "From": self.settings.email_from,
            "To": to_address,
            "Subject": subject,
            "HtmlBody": html,
        }
        if text:
            payload["TextBody"] = text
        headers = {
            "X-Postmark-Server-Token": self.settings.email_api_key,
            "Content-Type": "application/json",
        }
        resp = self._post("Postmark", "https://api.postmarkapp.com/email", payload=payload, headers=headers)
        data = resp.json()
        return SendResult(provider="postmark", message_id=data.get("MessageID"))

    def _send_smtp(self, *, to_address: str, subject: str, html: str, text: str | None) -> SendResult:
        if not self.settings.smtp_host:
            raise NotificationSendError("SMTP_HOST not configured", ReminderFailureCategory.VALIDATION)
        message = EmailMessage()
        message_id = f"<{uuid.uuid4()}@{self.settings.smtp_host}>"
        message["Subject"] = subject
        message["From"] = self.settings.email_from
        message["To"] = to_address
        message["Message-ID"] = message_id
        message.set_content(text or "This email requires an HTML-capable client.")
        message.add_alternative(html, subtype="html")

        try:
            server = smtplib.SMTP(
                self.settings.smtp_host,
                self.settings.smtp_port,
                timeout=self.settings.email_timeout_seconds,
            )
            try:
                if self.settings.smtp_use_tls:
                    server.starttls()
                if self.settings.smtp_username and self.settings.smtp_password:
                    server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.send_message(message)
            finally:
                server.quit()
        except smtplib.SMTPRecipientsRefused as exc:
            raise NotificationSendError(f"SMTP recipient refused: {exc}", ReminderFailureCategory.INVALID_RECIPIENT) from exc
        except (smtplib.SMTPException, socket.timeout, OSError) as exc:
            raise NotificationSendError(f"SMTP error: {exc}", ReminderFailureCategory.TRANSPORT) from exc
        return SendResult(provider="smtp", message_id=message_id)
