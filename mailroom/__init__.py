"""Mailroom: shared-mailbox ingestion and newsletter distribution."""

from .attachments import AttachmentCycle, AttachmentStore
from .config import AttachmentConfig, DispatchConfig, ImapConfig, Settings, SubmissionConfig
from .dispatch import NewsletterDispatcher
from .imap_client import AsyncImapClient, FetchedEmail
from .ingestion import MailboxIngestor
from .logging import setup_logging
from .parser import MimeParser, ParsedAttachment, ParsedEmail
from .recipients import dedup_recipients, resolve_recipients
from .relevance import FolderKind, is_relevant
from .submission import OutgoingEmail, ResendClient, SubmissionResponse

__all__ = [
    "AsyncImapClient",
    "AttachmentConfig",
    "AttachmentCycle",
    "AttachmentStore",
    "DispatchConfig",
    "FetchedEmail",
    "FolderKind",
    "ImapConfig",
    "MailboxIngestor",
    "MimeParser",
    "NewsletterDispatcher",
    "OutgoingEmail",
    "ParsedAttachment",
    "ParsedEmail",
    "ResendClient",
    "Settings",
    "SubmissionConfig",
    "SubmissionResponse",
    "dedup_recipients",
    "is_relevant",
    "resolve_recipients",
    "setup_logging",
]
