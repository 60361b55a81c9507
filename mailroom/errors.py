"""Exception hierarchy for the ingestion and dispatch engines."""

from __future__ import annotations


class MailroomError(Exception):
    """Base class for all mailroom errors."""


class OrganizationParamsMissingError(MailroomError):
    """Organization name or slug was not supplied to an ingestion request."""

    def __init__(self, message: str = "Organization name and slug are required") -> None:
        super().__init__(message)


# ----------------------------------------------------------------------
# Mail store (fatal for a whole ingestion cycle)
# ----------------------------------------------------------------------


class MailStoreError(MailroomError):
    """The mail store could not be reached or used."""

    def __init__(self, message: str, *, host: str | None = None, folder: str | None = None) -> None:
        super().__init__(message)
        self.host = host
        self.folder = folder


class MailStoreAuthError(MailStoreError):
    """Login to the mail store was rejected."""


class MailStoreConnectionError(MailStoreError):
    """The connection failed or dropped mid-cycle."""


class MailStoreFolderError(MailStoreError):
    """A folder could not be opened."""


# ----------------------------------------------------------------------
# Recoverable, per-item failures
# ----------------------------------------------------------------------


class MalformedMessageError(MailroomError):
    """A raw message could not be decoded into a ParsedEmail."""


class AttachmentWriteError(MailroomError):
    """A single attachment could not be written to the attachment root."""


class SubmissionError(MailroomError):
    """The mail submission service could not be reached."""


# ----------------------------------------------------------------------
# Dispatch validation
# ----------------------------------------------------------------------


class EmptyRecipientListError(MailroomError):
    """A newsletter had no recipients left after deduplication."""

    def __init__(self, message: str = "At least one recipient is required") -> None:
        super().__init__(message)
