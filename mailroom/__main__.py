"""Entry point for the mailroom package.

Usage::

    python -m mailroom [serve]               # HTTP API
    python -m mailroom ingest <name> <slug>  # one ingestion cycle, JSON to stdout
"""

from __future__ import annotations

import asyncio
import sys

from .config import Settings
from .logging import setup_logging

_USAGE = "Usage: python -m mailroom [serve | ingest <organization_name> <organization_slug>]"


def main() -> None:
    args = sys.argv[1:] or ["serve"]
    mode = args[0]

    if mode not in ("serve", "ingest") or (mode == "ingest" and len(args) != 3):
        print(_USAGE, file=sys.stderr)
        sys.exit(1)

    settings = Settings()  # type: ignore[call-arg]
    setup_logging(json=settings.log_json, level=settings.log_level)

    if mode == "serve":
        import uvicorn

        uvicorn.run(
            "mailroom.app:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )

    elif mode == "ingest":
        result = asyncio.run(_ingest_once(settings, args[1], args[2]))
        print(result.model_dump_json(by_alias=True))


async def _ingest_once(settings: Settings, organization_name: str, organization_slug: str):
    from .attachments import AttachmentStore
    from .imap_client import AsyncImapClient
    from .ingestion import MailboxIngestor
    from .parser import MimeParser

    store = AttachmentStore(settings.attachments)
    await store.start()
    ingestor = MailboxIngestor(AsyncImapClient(settings.imap), MimeParser(), store, settings.imap)
    async with asyncio.timeout(settings.ingest_timeout_seconds):
        return await ingestor.ingest(organization_name, organization_slug)


if __name__ == "__main__":
    main()
