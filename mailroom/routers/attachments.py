"""Download endpoint for stored attachments."""

from __future__ import annotations

import mimetypes
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from mailroom.attachments import AttachmentStore
from mailroom.deps import get_attachment_store

router = APIRouter(tags=["attachments"])


@router.get("/{filename}")
async def download_attachment(
    filename: str,
    store: Annotated[AttachmentStore, Depends(get_attachment_store)],
):
    path = store.resolve(filename)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path, media_type=media_type, filename=path.name)
