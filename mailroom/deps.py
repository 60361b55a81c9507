"""FastAPI dependency-injection helpers."""

from __future__ import annotations

from fastapi import Request

from mailroom.attachments import AttachmentStore
from mailroom.config import Settings
from mailroom.db.repository import SendResultRepository
from mailroom.dispatch import NewsletterDispatcher
from mailroom.imap_client import AsyncImapClient
from mailroom.ingestion import MailboxIngestor
from mailroom.parser import MimeParser


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_attachment_store(request: Request) -> AttachmentStore:
    return request.app.state.attachments


def get_send_results(request: Request) -> SendResultRepository:
    return SendResultRepository(request.app.state.db.session)


def get_ingestor(request: Request) -> MailboxIngestor:
    """A fresh IMAP client per request: sessions are never shared across cycles."""
    settings: Settings = request.app.state.settings
    return MailboxIngestor(
        AsyncImapClient(settings.imap),
        MimeParser(),
        request.app.state.attachments,
        settings.imap,
    )


def get_dispatcher(request: Request) -> NewsletterDispatcher:
    settings: Settings = request.app.state.settings
    return NewsletterDispatcher(
        request.app.state.submitter,
        SendResultRepository(request.app.state.db.session),
        settings.dispatch,
        settings.resend,
    )
