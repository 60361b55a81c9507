"""Relevance classification: does a message belong to an organization's
correspondence?

Outbound mail is matched on the sender display name, which carries the
organization name.  Inbound mail is matched on a ``+<slug>@`` address
extension.  Both checks are case-sensitive substring matches.
"""

from __future__ import annotations

from enum import Enum

from .parser import ParsedEmail


class FolderKind(str, Enum):
    RECEIVED = "received"
    SENT = "sent"


def is_relevant(
    folder_kind: FolderKind,
    organization_name: str,
    organization_slug: str,
    message: ParsedEmail,
    *,
    alias_domain: str | None = None,
) -> bool:
    if folder_kind is FolderKind.SENT:
        return any(
            organization_name in sender.display_name
            for sender in message.from_
        )

    if folder_kind is FolderKind.RECEIVED:
        pattern = alias_pattern(organization_slug, alias_domain)
        return any(pattern in recipient.address for recipient in message.to)

    return False


def alias_pattern(organization_slug: str, alias_domain: str | None = None) -> str:
    """Return the address fragment identifying an organization's inbound alias."""
    if alias_domain:
        return f"+{organization_slug}@{alias_domain}"
    return f"+{organization_slug}@"
