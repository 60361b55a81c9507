"""Recipient resolution: combine individuals and group members, dedup by address."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import Recipient, RecipientGroup


def dedup_recipients(recipients: Iterable[Recipient]) -> list[Recipient]:
    """Drop recipients without an address and repeat addresses.

    Addresses compare exactly (case-sensitive); the first occurrence wins.
    """
    seen: set[str] = set()
    unique: list[Recipient] = []
    for recipient in recipients:
        if not recipient.email or recipient.email in seen:
            continue
        seen.add(recipient.email)
        unique.append(recipient)
    return unique


def resolve_recipients(
    individuals: Sequence[Recipient],
    groups: Sequence[RecipientGroup] = (),
) -> list[Recipient]:
    """Explicit individuals first, then each group's members in order."""
    combined: list[Recipient] = list(individuals)
    for group in groups:
        combined.extend(group.members)
    return dedup_recipients(combined)
