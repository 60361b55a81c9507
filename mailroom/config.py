"""Mailroom configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix, e.g. ``IMAP_HOST`` or ``RESEND_API_KEY``.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImapConfig(BaseSettings):
    """IMAP mailbox connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="imap.gmail.com", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username (the shared mailbox address)")
    password: SecretStr = Field(description="IMAP login password or app password")
    inbox_folder: str = Field(default="INBOX", description="Folder holding received mail")
    sent_folder: str = Field(
        default="[Gmail]/Sent Mail",
        description="Folder holding mail sent by the organization",
    )
    alias_domain: str | None = Field(
        default=None,
        description="Domain of the +slug address aliases (defaults to the username's domain)",
    )
    timeout_seconds: float = Field(default=30.0, description="Socket timeout for IMAP commands")

    @property
    def effective_alias_domain(self) -> str | None:
        if self.alias_domain:
            return self.alias_domain
        _, sep, domain = self.username.rpartition("@")
        return domain if sep and domain else None


class AttachmentConfig(BaseSettings):
    """Local storage for extracted attachments."""

    model_config = {"env_prefix": "ATTACHMENTS_"}

    root_dir: str = Field(default="attachments", description="Directory attachments are written to")
    url_prefix: str = Field(
        default="/attachments",
        description="URL prefix under which stored attachments are served",
    )


class SubmissionConfig(BaseSettings):
    """Mail submission service (Resend-compatible HTTP API)."""

    model_config = {"env_prefix": "RESEND_"}

    api_key: SecretStr = Field(default=SecretStr(""), description="API key for the submission service")
    base_url: str = Field(default="https://api.resend.com", description="Submission API base URL")
    sender_address: str = Field(
        default="onboarding@resend.dev",
        description="Verified sender address used in the From header",
    )
    reply_to_mailbox: str | None = Field(
        default=None,
        description="Mailbox replies go to; the organization extension is inserted before '@'",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class DispatchConfig(BaseSettings):
    """Newsletter fan-out settings."""

    model_config = {"env_prefix": "DISPATCH_"}

    max_concurrency: int | None = Field(
        default=None,
        ge=1,
        description="Maximum in-flight sends per newsletter (unset = all at once)",
    )
    timeout_seconds: float = Field(default=300.0, description="Upper bound for one dispatch call")


class Settings(BaseSettings):
    """Top-level settings for the mailroom service.

    Root env vars are prefixed with ``MAILROOM_``; nested configs are
    populated from their own prefixes.
    """

    model_config = SettingsConfigDict(env_prefix="MAILROOM_")

    # --- Database -----------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./mailroom.db",
        description="Async SQLAlchemy URL for the send-result store",
    )

    # --- Ingestion ----------------------------------------------------------
    ingest_timeout_seconds: float = Field(
        default=120.0,
        description="Upper bound for one mailbox ingestion cycle",
    )

    # --- Server -------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    resend: SubmissionConfig = Field(default_factory=SubmissionConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
