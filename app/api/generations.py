"""API routes for submitting and following generations."""

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from app.api.dependencies import get_artifact_store, get_generation_service
from app.api.rate_limit import submit_limiter
from app.config import get_settings
from app.models.artifact import Artifact
from app.schemas.image import GenerationCreate, GenerationCreated
from app.services.artifact_store import ArtifactStore
from app.services.generator import GenerationService, error_kind_for

settings = get_settings()

router = APIRouter()

KEEP_ALIVE_SECONDS = 15.0


def _status_payload(artifact: Artifact | None) -> dict:
    if artifact is None:
        return {"status": "deleted", "error": None, "error_kind": None, "generated_image_id": None}
    kind = error_kind_for(artifact.generation_error)
    return {
        "status": artifact.generation_status,
        "error": artifact.generation_error,
        "error_kind": kind.value if kind else None,
        "generated_image_id": artifact.derived_artifact_id,
    }


@router.post(
    "",
    response_model=GenerationCreated,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(submit_limiter)],
)
async def submit_generation(
    data: GenerationCreate,
    service: GenerationService = Depends(get_generation_service),
):
    """Create a generation for an uploaded image. Returns without waiting for it."""
    result = await service.submit(data.storage_id)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.message)

    return GenerationCreated(image_id=result.image_id, status="pending")


@router.get("/{image_id}/stream")
async def stream_generation_status(
    image_id: int,
    store: ArtifactStore = Depends(get_artifact_store),
):
    """Stream status changes using Server-Sent Events until the generation finishes."""
    artifact = await store.get(image_id)
    if not artifact or not artifact.is_original:
        raise HTTPException(status_code=404, detail="Generation not found")

    async def event_generator():
        current = artifact
        last_status = None
        loop = asyncio.get_running_loop()
        last_activity = loop.time()

        while True:
            if current is None or current.is_finished:
                yield f"event: done\ndata: {json.dumps(_status_payload(current))}\n\n"
                break

            if current.generation_status != last_status:
                last_status = current.generation_status
                last_activity = loop.time()
                yield f"event: status\ndata: {json.dumps(_status_payload(current))}\n\n"
            elif loop.time() - last_activity >= KEEP_ALIVE_SECONDS:
                # Comments are ignored by EventSource
                yield ": keep-alive\n\n"
                last_activity = loop.time()

            await asyncio.sleep(settings.stream_poll_interval)
            current = await store.get(image_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
