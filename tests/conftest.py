"""Shared test fixtures for the mailroom test suite."""

from __future__ import annotations

import logging
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mailroom.attachments import AttachmentStore
from mailroom.config import AttachmentConfig, DispatchConfig, ImapConfig, Settings, SubmissionConfig


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Undo handler changes made by setup_logging() within a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="events@gmail.com",
        password="testpass",
        inbox_folder="INBOX",
        sent_folder="[Gmail]/Sent Mail",
        timeout_seconds=5.0,
    )


@pytest.fixture
def attachment_config(tmp_path: Path) -> AttachmentConfig:
    return AttachmentConfig(root_dir=str(tmp_path / "attachments"), url_prefix="/attachments")


@pytest.fixture
def submission_config() -> SubmissionConfig:
    return SubmissionConfig(
        api_key="re_test_key",
        base_url="http://resend.test",
        sender_address="onboarding@resend.dev",
        reply_to_mailbox="events@gmail.com",
        timeout_seconds=5.0,
    )


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig()


@pytest.fixture
def settings(
    tmp_path: Path,
    imap_config: ImapConfig,
    attachment_config: AttachmentConfig,
    submission_config: SubmissionConfig,
    dispatch_config: DispatchConfig,
) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'mailroom.db'}",
        imap=imap_config,
        attachments=attachment_config,
        resend=submission_config,
        dispatch=dispatch_config,
    )


@pytest.fixture
def store(attachment_config: AttachmentConfig) -> AttachmentStore:
    return AttachmentStore(attachment_config)


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str = "Acme Robotics <events@gmail.com>",
    to_addr: str = "Member <member@example.com>",
    body: str = "Hello, World!",
    message_id: str = "<test-001@example.com>",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = message_id
    if date is not None:
        msg["Date"] = date
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello</p>") -> bytes:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<html-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    from_addr: str = "Partner <partner@example.com>",
    to_addr: str = "Acme <events+acme-robotics@gmail.com>",
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<multi-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    # Text + HTML alternative
    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return _build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


# ------------------------------------------------------------------
# imaplib double
# ------------------------------------------------------------------


def _make_mock_imap(
    *,
    folders: dict[str, dict[bytes, bytes]] | None = None,
    login_error: Exception | None = None,
    select_status: str = "OK",
    search_status: str = "OK",
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL serving per-folder UID → raw bytes.

    Folder keys are the (possibly quoted) names passed to ``select``.
    """
    folders = folders or {}
    mock = MagicMock()
    state: dict[str, str | None] = {"folder": None}

    if login_error is not None:
        mock.login.side_effect = login_error
    else:
        mock.login.return_value = ("OK", [b"Logged in"])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.logout.return_value = ("BYE", [b"Bye"])
    mock.noop.return_value = ("OK", [b""])

    def select(mailbox, readonly=False):
        if select_status != "OK" or mailbox not in folders:
            return ("NO", [b"Mailbox does not exist"])
        state["folder"] = mailbox
        return ("OK", [str(len(folders[mailbox])).encode()])

    def uid(command: str, *args):
        messages = folders.get(state["folder"] or "", {})
        if command == "SEARCH":
            if search_status != "OK":
                return (search_status, [b"SEARCH failed: server busy"])
            return ("OK", [b" ".join(messages.keys())])
        if command == "FETCH":
            key = args[0].encode() if isinstance(args[0], str) else args[0]
            raw = messages.get(key)
            if raw:
                return ("OK", [(b"1 (UID %s BODY[] {%d}" % (key, len(raw)), raw), b")"])
            return ("OK", [None])
        return ("OK", [b""])

    mock.select.side_effect = select
    mock.uid.side_effect = uid
    return mock
