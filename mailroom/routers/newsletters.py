"""Newsletter dispatch and sent-history endpoints."""

from __future__ import annotations

import asyncio
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from mailroom.config import Settings
from mailroom.db.repository import SendResultRepository
from mailroom.deps import get_dispatcher, get_send_results, get_settings
from mailroom.dispatch import NewsletterDispatcher
from mailroom.errors import EmptyRecipientListError
from mailroom.models import DispatchSummary
from mailroom.schemas.newsletter import NewsletterSendRequest, SentEmailOut

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/newsletters", tags=["newsletters"])


@router.post("/send", response_model=DispatchSummary)
async def send_newsletter(
    body: NewsletterSendRequest,
    dispatcher: Annotated[NewsletterDispatcher, Depends(get_dispatcher)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Send a newsletter to every unique recipient; report per-address failures."""
    try:
        async with asyncio.timeout(settings.dispatch.timeout_seconds):
            return await dispatcher.dispatch(body.to_job())
    except EmptyRecipientListError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TimeoutError as exc:
        logger.error("dispatch_timed_out", timeout_seconds=settings.dispatch.timeout_seconds)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Timed out sending newsletter",
        ) from exc


@router.get("/sent", response_model=list[SentEmailOut])
async def list_sent_newsletters(
    results: Annotated[SendResultRepository, Depends(get_send_results)],
    sender_id: str = Query(min_length=1),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
):
    """Newsletters previously delivered on behalf of *sender_id*, newest first."""
    rows = await results.list_by_sender(sender_id, offset=offset, limit=limit)
    return [SentEmailOut.model_validate(row) for row in rows]
