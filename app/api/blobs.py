"""API routes for uploading and serving image blobs."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import FileResponse

from app.api.dependencies import get_blob_store
from app.api.rate_limit import upload_limiter
from app.config import get_settings
from app.schemas.image import UploadResponse
from app.services.blob_store import (
    BlobStoreError,
    InvalidBlobRefError,
    LocalBlobStore,
    is_supported_mime_type,
)

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


@router.post(
    "",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(upload_limiter)],
)
async def upload_blob(
    request: Request,
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """Store a raw image body and return its storage id.

    Only raster formats are accepted. The body is read in chunks and the
    upload is refused as soon as it passes the size limit.
    """
    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()
    if not is_supported_mime_type(content_type):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only PNG, JPEG, WebP, GIF and HEIC images are accepted",
        )

    limit = settings.max_upload_size_bytes
    too_large = HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"Upload exceeds {settings.max_upload_size_mb} MB",
    )

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise too_large

    data = bytearray()
    async for chunk in request.stream():
        data.extend(chunk)
        if len(data) > limit:
            raise too_large

    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")

    try:
        ref = await blobs.put_blob(bytes(data), content_type)
    except BlobStoreError as e:
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to store upload") from e

    return UploadResponse(storage_id=ref, url=blobs.url_for(ref), size_bytes=len(data))


@router.get("/{ref}")
async def get_blob(
    ref: str,
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """Serve a stored blob."""
    try:
        path = blobs.path_for(ref)
    except InvalidBlobRefError as e:
        raise HTTPException(status_code=404, detail="Blob not found") from e

    if not await blobs.exists(ref):
        raise HTTPException(status_code=404, detail="Blob not found")

    return FileResponse(
        path,
        media_type=blobs.mime_type_for(ref),
        headers={"X-Content-Type-Options": "nosniff"},
    )
