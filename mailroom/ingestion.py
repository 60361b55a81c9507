"""One fetch-and-classify cycle over the shared mailbox.

For each configured folder (received first, then sent): open it read-only,
enumerate every message, fetch, parse, classify, and for relevant messages
persist attachments.  The IMAP session is closed before the attachment
sweep runs.
"""

from __future__ import annotations

import structlog

from .attachments import AttachmentCycle, AttachmentStore
from .config import ImapConfig
from .errors import (
    AttachmentWriteError,
    MailStoreError,
    MalformedMessageError,
    OrganizationParamsMissingError,
)
from .imap_client import AsyncImapClient, FetchedEmail
from .models import EmailRecord, IngestionResult, OperationStatus, SkippedItem, StoredAttachment
from .parser import MimeParser, ParsedEmail, format_addresses
from .relevance import FolderKind, is_relevant

logger = structlog.get_logger()


class MailboxIngestor:
    """Compose IMAP retrieval, MIME parsing, relevance and attachment storage."""

    def __init__(
        self,
        client: AsyncImapClient,
        parser: MimeParser,
        store: AttachmentStore,
        config: ImapConfig,
    ) -> None:
        self._client = client
        self._parser = parser
        self._store = store
        self._config = config

    @property
    def folders(self) -> list[tuple[str, FolderKind]]:
        return [
            (self._config.inbox_folder, FolderKind.RECEIVED),
            (self._config.sent_folder, FolderKind.SENT),
        ]

    async def ingest(self, organization_name: str | None, organization_slug: str | None) -> IngestionResult:
        """Run one ingestion cycle for an organization.

        Raises :class:`OrganizationParamsMissingError` before connecting if
        either parameter is missing, and :class:`MailStoreError` if the
        mailbox cannot be used; in that case no partial result is returned.
        """
        if not organization_name or not organization_slug:
            logger.warning(
                "ingest_params_missing",
                organization_name=organization_name,
                organization_slug=organization_slug,
            )
            raise OrganizationParamsMissingError()

        log = logger.bind(organization_name=organization_name, organization_slug=organization_slug)
        result = IngestionResult()
        cycle = await self._store.begin_cycle()
        finished = False

        try:
            async with self._client.session() as session:
                for folder, kind in self.folders:
                    await session.select_folder(folder)
                    for uid in await session.list_uids():
                        fetched = await session.fetch_raw(uid)
                        if fetched is None:
                            result.skipped.append(
                                SkippedItem(stage="fetch", folder=folder, uid=uid, detail="no data returned")
                            )
                            continue
                        record = await self._process(
                            fetched, kind, organization_name, organization_slug, cycle, result
                        )
                        if record is not None:
                            result.emails.append(record)
            finished = True
        except MailStoreError as exc:
            log.error(
                "ingest_mail_store_failed",
                host=exc.host or self._config.host,
                mailbox=self._config.username,
                folder=exc.folder,
                error=str(exc),
            )
            raise
        finally:
            if not finished:
                await self._store.abandon_cycle(cycle)

        result.sweep = await self._store.finish_cycle(cycle)
        if result.skipped or result.sweep.failed:
            result.status = OperationStatus.PARTIAL

        log.info(
            "ingest_complete",
            emails=len(result.emails),
            skipped=len(result.skipped),
            swept=len(result.sweep.deleted),
        )
        return result

    async def _process(
        self,
        fetched: FetchedEmail,
        kind: FolderKind,
        organization_name: str,
        organization_slug: str,
        cycle: AttachmentCycle,
        result: IngestionResult,
    ) -> EmailRecord | None:
        try:
            parsed = self._parser.parse(fetched.raw_bytes)
        except MalformedMessageError as exc:
            logger.error("message_parse_failed", folder=fetched.folder, uid=fetched.uid, error=str(exc))
            result.skipped.append(
                SkippedItem(stage="parse", folder=fetched.folder, uid=fetched.uid, detail=str(exc))
            )
            return None

        if not is_relevant(
            kind,
            organization_name,
            organization_slug,
            parsed,
            alias_domain=self._config.effective_alias_domain,
        ):
            return None

        logger.debug(
            "message_relevant",
            folder=fetched.folder,
            uid=fetched.uid,
            subject=parsed.subject,
            sender=format_addresses(parsed.from_),
        )

        attachments = await self._persist_attachments(fetched, parsed, cycle, result)
        return EmailRecord(
            id=fetched.uid,
            from_=parsed.from_,
            to=parsed.to,
            subject=parsed.subject,
            sent_at=parsed.sent_at,
            plain_body=parsed.plain_body,
            html_body=parsed.html_body,
            attachments=attachments,
            source_folder=fetched.folder,
        )

    async def _persist_attachments(
        self,
        fetched: FetchedEmail,
        parsed: ParsedEmail,
        cycle: AttachmentCycle,
        result: IngestionResult,
    ) -> list[StoredAttachment]:
        stored: list[StoredAttachment] = []
        for attachment in parsed.attachments:
            try:
                stored.append(
                    await self._store.persist(
                        attachment.payload,
                        attachment.filename,
                        fetched.uid,
                        attachment.content_type,
                        cycle=cycle,
                    )
                )
            except AttachmentWriteError as exc:
                result.skipped.append(
                    SkippedItem(stage="attachment", folder=fetched.folder, uid=fetched.uid, detail=str(exc))
                )
        return stored
