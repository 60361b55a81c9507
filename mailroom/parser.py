"""MIME parser: walk a raw message to extract addresses, subject, date,
plain/HTML bodies and attachment blobs.

Header problems degrade to defaults (``"No Subject"``, ``"No Date"``,
empty address lists) so one bad header never drops a message.  Only a
message whose content cannot be decoded at all is rejected.
"""

from __future__ import annotations

import email
import email.message
import email.policy
import email.utils
from dataclasses import dataclass, field
from datetime import timezone

from .errors import MalformedMessageError
from .models import NO_DATE, NO_SUBJECT, EmailAddress

_ATTACHED_MESSAGE = "message/rfc822"


@dataclass
class ParsedAttachment:
    """A single attachment extracted from a MIME email."""

    filename: str
    content_type: str
    payload: bytes


@dataclass(frozen=True)
class ParsedEmail:
    """Structured representation of a fully parsed email."""

    message_id: str
    from_: list[EmailAddress]
    to: list[EmailAddress]
    subject: str
    sent_at: str
    plain_body: str
    html_body: str
    attachments: list[ParsedAttachment] = field(default_factory=list)


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedEmail."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        if not isinstance(raw_bytes, (bytes, bytearray)):
            raise MalformedMessageError(f"Expected bytes, got {type(raw_bytes).__name__}")
        if not raw_bytes.strip():
            raise MalformedMessageError("Empty message")

        try:
            msg = email.message_from_bytes(bytes(raw_bytes), policy=email.policy.default)
        except (ValueError, TypeError, IndexError) as exc:
            raise MalformedMessageError(f"Unparseable message: {exc}") from exc

        try:
            plain_body, html_body, attachments = self._walk(msg)
        except (LookupError, UnicodeError, ValueError, TypeError, AssertionError) as exc:
            raise MalformedMessageError(f"Undecodable message body: {exc}") from exc

        return ParsedEmail(
            message_id=self._header(msg, "Message-ID"),
            from_=self._parse_address_list(self._header(msg, "From")),
            to=self._parse_address_list(self._header(msg, "To")),
            subject=self._header(msg, "Subject").strip() or NO_SUBJECT,
            sent_at=self._parse_date(msg),
            plain_body=plain_body or "",
            html_body=html_body or "",
            attachments=attachments,
        )

    def _walk(
        self, msg: email.message.EmailMessage
    ) -> tuple[str | None, str | None, list[ParsedAttachment]]:
        """Walk MIME parts once and return (plain_text, html_text, attachments)."""
        body_text: str | None = None
        body_html: str | None = None
        attachments: list[ParsedAttachment] = []

        for part in _leaf_parts(msg):
            disposition = str(part.get("Content-Disposition", "")).lower()
            filename = part.get_filename()
            content_type = part.get_content_type()

            # Attachment: has Content-Disposition: attachment, is a named part,
            # or is a whole attached message
            if "attachment" in disposition or filename or content_type == _ATTACHED_MESSAGE:
                attachment = self._to_attachment(part, filename, len(attachments))
                if attachment is not None:
                    attachments.append(attachment)
                continue

            if content_type not in ("text/plain", "text/html"):
                continue

            payload = part.get_content()
            if content_type == "text/plain" and isinstance(payload, str) and body_text is None:
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str) and body_html is None:
                body_html = payload

        return body_text, body_html, attachments

    def _to_attachment(
        self,
        part: email.message.EmailMessage,
        filename: str | None,
        index: int,
    ) -> ParsedAttachment | None:
        payload = part.get_content()
        if isinstance(payload, bytes):
            raw = payload
        elif isinstance(payload, str):
            raw = payload.encode("utf-8")
        elif isinstance(payload, email.message.Message):
            raw = payload.as_bytes()
        else:
            return None

        return ParsedAttachment(
            filename=filename or f"attachment-{index}",
            content_type=part.get_content_type() or "application/octet-stream",
            payload=raw,
        )

    def _header(self, msg: email.message.EmailMessage, name: str) -> str:
        try:
            value = msg.get(name)
        except (ValueError, TypeError, IndexError):
            return ""
        return str(value) if value is not None else ""

    def _parse_address_list(self, header_value: str) -> list[EmailAddress]:
        if not header_value:
            return []
        return [
            EmailAddress(display_name=name or "", address=addr)
            for name, addr in email.utils.getaddresses([header_value])
            if addr
        ]

    def _parse_date(self, msg: email.message.EmailMessage) -> str:
        raw = self._header(msg, "Date")
        if not raw:
            return NO_DATE
        try:
            dt = email.utils.parsedate_to_datetime(raw)
        except (TypeError, ValueError, IndexError):
            return NO_DATE
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()


def format_addresses(addresses: list[EmailAddress]) -> str:
    """Render an address list as ``Name <addr>, ...`` for logging."""
    if not addresses:
        return "Unknown"
    return ", ".join(str(a) for a in addresses)


def _leaf_parts(part: email.message.EmailMessage):
    """Yield the content parts of *part* depth first.

    An attached message is yielded whole; its own parts belong to it,
    not to the enclosing message.
    """
    if part.get_content_maintype() == "multipart":
        for sub in part.iter_parts():
            yield from _leaf_parts(sub)
    else:
        yield part
