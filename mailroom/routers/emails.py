"""Mailbox ingestion endpoint."""

from __future__ import annotations

import asyncio
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from mailroom.config import Settings
from mailroom.deps import get_ingestor, get_settings
from mailroom.errors import MailStoreError, OrganizationParamsMissingError
from mailroom.ingestion import MailboxIngestor
from mailroom.models import IngestionResult

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/emails", tags=["emails"])


@router.get("", response_model=IngestionResult)
async def fetch_organization_emails(
    ingestor: Annotated[MailboxIngestor, Depends(get_ingestor)],
    settings: Annotated[Settings, Depends(get_settings)],
    organization_name: str | None = Query(default=None),
    organization_slug: str | None = Query(default=None),
):
    """Fetch the shared mailbox and return the organization's correspondence."""
    try:
        async with asyncio.timeout(settings.ingest_timeout_seconds):
            return await ingestor.ingest(organization_name, organization_slug)
    except OrganizationParamsMissingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except MailStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Error fetching emails: {exc}",
        ) from exc
    except TimeoutError as exc:
        logger.error("ingest_timed_out", timeout_seconds=settings.ingest_timeout_seconds)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Timed out fetching emails",
        ) from exc
