"""Async HTTP client for the mail submission service (Resend-compatible API)."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import structlog

from .config import SubmissionConfig
from .errors import SubmissionError
from .models import OutgoingAttachment

logger = structlog.get_logger()

SANDBOX_ERROR_MARKER = "You can only send testing emails to your own email address"
SANDBOX_REASON = "You can only send emails to the account bound to the Resend API Free Plan."


@dataclass
class OutgoingEmail:
    """One message handed to the submission service."""

    sender: str
    to: str
    subject: str
    html: str
    reply_to: str | None = None
    attachments: list[OutgoingAttachment] = field(default_factory=list)


@dataclass
class SubmissionResponse:
    """Provider answer: an accepted message id, or an error reason."""

    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MailSubmitter(Protocol):
    async def send(self, email: OutgoingEmail) -> SubmissionResponse: ...


class ResendClient:
    """Submits messages to ``POST /emails``.

    Provider-level rejections come back as a :class:`SubmissionResponse`
    carrying ``error``; transport failures raise :class:`SubmissionError`.
    """

    def __init__(self, config: SubmissionConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_seconds),
            headers={"Authorization": f"Bearer {self._config.api_key.get_secret_value()}"},
        )
        logger.info("submission_client_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("submission_client_stopped")

    async def send(self, email: OutgoingEmail) -> SubmissionResponse:
        if self._client is None:
            raise AssertionError("Client not started")

        payload: dict = {
            "from": email.sender,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
        }
        if email.reply_to:
            payload["reply_to"] = email.reply_to
        if email.attachments:
            payload["attachments"] = [_attachment_payload(a) for a in email.attachments]

        try:
            response = await self._client.post("/emails", json=payload)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"Submission service unreachable: {exc}") from exc

        if response.is_success:
            message_id = _json_body(response).get("id")
            logger.debug("submission_accepted", to=email.to, message_id=message_id)
            return SubmissionResponse(message_id=message_id or "")

        reason = _error_reason(response)
        logger.debug("submission_rejected", to=email.to, status_code=response.status_code, reason=reason)
        return SubmissionResponse(error=reason)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _attachment_payload(attachment: OutgoingAttachment) -> dict:
    item = {
        "filename": attachment.filename,
        "content": base64.b64encode(attachment.content).decode("ascii"),
    }
    if attachment.content_type:
        item["content_type"] = attachment.content_type
    return item


def _error_reason(response: httpx.Response) -> str:
    message = _json_body(response).get("message") or response.text or "Unknown error sending email"
    if SANDBOX_ERROR_MARKER in message:
        return SANDBOX_REASON
    return str(message)


def build_reply_to(mailbox: str | None, extension: str) -> str | None:
    """Insert ``+extension`` before the ``@`` of *mailbox*."""
    if not mailbox:
        return None
    local, sep, domain = mailbox.partition("@")
    if not sep or not extension:
        return mailbox
    return f"{local}+{extension}@{domain}"
