"""Data models shared by the ingestion and dispatch engines."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

NO_SUBJECT = "No Subject"
NO_DATE = "No Date"


class OperationStatus(str, Enum):
    """Outcome of a batch operation that tolerates per-item failures."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


# ----------------------------------------------------------------------
# Ingestion
# ----------------------------------------------------------------------


class EmailAddress(BaseModel):
    """A display name + address pair from an address header."""

    model_config = ConfigDict(frozen=True)

    display_name: str = ""
    address: str = ""

    def __str__(self) -> str:
        if self.display_name:
            return f"{self.display_name} <{self.address}>"
        return self.address


class StoredAttachment(BaseModel):
    """An attachment written to the attachment root."""

    model_config = ConfigDict(frozen=True)

    original_filename: str
    stored_filename: str
    content_type: str = "application/octet-stream"
    url: str


class EmailRecord(BaseModel):
    """A classified message as returned to the caller of an ingestion cycle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(description="Store-assigned UID of the message")
    from_: list[EmailAddress] = Field(default_factory=list, alias="from")
    to: list[EmailAddress] = Field(default_factory=list)
    subject: str = NO_SUBJECT
    sent_at: str = Field(default=NO_DATE, description="ISO-8601 UTC timestamp or 'No Date'")
    plain_body: str = ""
    html_body: str = ""
    attachments: list[StoredAttachment] = Field(default_factory=list)
    source_folder: str
    status: str = "unread"
    ingested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SkippedItem(BaseModel):
    """A message or attachment dropped from a cycle by a recoverable error."""

    stage: str = Field(description="'fetch', 'parse' or 'attachment'")
    folder: str
    uid: str
    detail: str


class SweepReport(BaseModel):
    """Files removed (and files that could not be removed) by a sweep."""

    deleted: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class IngestionResult(BaseModel):
    emails: list[EmailRecord] = Field(default_factory=list)
    status: OperationStatus = OperationStatus.OK
    skipped: list[SkippedItem] = Field(default_factory=list)
    sweep: SweepReport = Field(default_factory=SweepReport)


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------


class Recipient(BaseModel):
    """A candidate newsletter recipient supplied by the directory collaborator."""

    email: str | None = None
    id: str | None = Field(default=None, description="Internal member id, if known")
    name: str | None = None


class RecipientGroup(BaseModel):
    """A group of recipients resolved by the caller (e.g. an event's attendees)."""

    name: str = ""
    members: list[Recipient] = Field(default_factory=list)


class OutgoingAttachment(BaseModel):
    filename: str
    content_type: str | None = None
    content: bytes


class SendJob(BaseModel):
    """One newsletter to fan out.  Never persisted; only outcomes are."""

    sender_id: str = Field(description="Identifier of the sending organization")
    sender_display_name: str
    reply_to_extension: str = Field(description="Organization token embedded in the reply address")
    subject: str
    html_body: str
    attachments: list[OutgoingAttachment] = Field(default_factory=list)
    recipients: list[Recipient] = Field(default_factory=list)


class SendFailure(BaseModel):
    address: str
    reason: str


class DispatchSummary(BaseModel):
    success_count: int = 0
    failures: list[SendFailure] = Field(default_factory=list)
    status: OperationStatus = OperationStatus.OK


class SendResult(BaseModel):
    """One successful per-recipient delivery, as persisted."""

    sender_id: str
    receiver_id: str
    sender: str
    receiver: str
    subject: str
    body: str
    status: str = "Sent"
