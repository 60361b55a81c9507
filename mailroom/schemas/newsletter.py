"""Request/response schemas for newsletter endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Base64Bytes, BaseModel, ConfigDict, Field

from mailroom.models import OutgoingAttachment, Recipient, RecipientGroup, SendJob
from mailroom.recipients import resolve_recipients


class NewsletterAttachmentIn(BaseModel):
    filename: str = Field(min_length=1)
    content_type: str | None = None
    content: Base64Bytes


class NewsletterSendRequest(BaseModel):
    """Request body for POST /newsletters/send."""

    sender_id: str = Field(min_length=1)
    sender_name: str = Field(min_length=1)
    reply_to_extension: str = ""
    subject: str = Field(min_length=1)
    html: str = Field(min_length=1)
    recipients: list[Recipient] = Field(default_factory=list)
    groups: list[RecipientGroup] = Field(default_factory=list)
    attachments: list[NewsletterAttachmentIn] = Field(default_factory=list)

    def to_job(self) -> SendJob:
        return SendJob(
            sender_id=self.sender_id,
            sender_display_name=self.sender_name,
            reply_to_extension=self.reply_to_extension,
            subject=self.subject,
            html_body=self.html,
            attachments=[
                OutgoingAttachment(filename=a.filename, content_type=a.content_type, content=a.content)
                for a in self.attachments
            ],
            recipients=resolve_recipients(self.recipients, self.groups),
        )


class SentEmailOut(BaseModel):
    """A persisted send result."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: str
    receiver_id: str
    sender: str
    receiver: str
    subject: str
    body: str
    status: str
    created_at: datetime
