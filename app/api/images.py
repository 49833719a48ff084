"""API routes for images: gallery listing, details, sharing and admin deletion."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from app.api.dependencies import (
    get_admin_authority,
    get_admin_token,
    get_artifact_store,
    get_blob_store,
    get_visibility_gate,
)
from app.models.artifact import Artifact, ArtifactKind, GenerationStatus
from app.schemas.image import (
    AdminDeleteResponse,
    ImageDetails,
    ImageList,
    ImageRead,
    ImageStats,
    ShareResponse,
)
from app.services.admin import AdminAuthority, AdminDeleteStatus
from app.services.artifact_store import ArtifactStore
from app.services.blob_store import LocalBlobStore
from app.services.generator import error_kind_for
from app.services.visibility import PublishStatus, VisibilityGate

router = APIRouter()

_DELETE_STATUS_CODES = {
    AdminDeleteStatus.OK: status.HTTP_200_OK,
    AdminDeleteStatus.INVALID_TOKEN: status.HTTP_403_FORBIDDEN,
    AdminDeleteStatus.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AdminDeleteStatus.NOT_CONFIGURED: status.HTTP_503_SERVICE_UNAVAILABLE,
}

_SHARE_STATUS_CODES = {
    PublishStatus.OK: status.HTTP_200_OK,
    PublishStatus.ALREADY_PUBLIC: status.HTTP_200_OK,
    PublishStatus.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PublishStatus.NOT_DERIVED: status.HTTP_400_BAD_REQUEST,
}


def to_image_read(artifact: Artifact, blobs: LocalBlobStore) -> ImageRead:
    data = ImageRead.model_validate(artifact)
    data.url = blobs.url_for(artifact.blob_ref)
    kind = error_kind_for(artifact.generation_error)
    data.error_kind = kind.value if kind else None
    return data


@router.get("", response_model=ImageList)
async def list_images(
    page: int = 1,
    per_page: int = 12,
    kind: ArtifactKind | None = ArtifactKind.DERIVED,
    public_only: bool = False,
    status: GenerationStatus | None = None,
    store: ArtifactStore = Depends(get_artifact_store),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """List images, newest first. Defaults to generated images."""
    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)

    total = await store.count(kind=kind, public_only=public_only, status=status)
    images = await store.query(
        kind=kind,
        public_only=public_only,
        status=status,
        offset=(page - 1) * per_page,
        limit=per_page,
    )

    return ImageList(
        items=[to_image_read(image, blobs) for image in images],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page,
    )


@router.get("/stats", response_model=ImageStats)
async def get_image_stats(
    store: ArtifactStore = Depends(get_artifact_store),
):
    """Get generation statistics."""
    counts = {
        s: await store.count(kind=ArtifactKind.ORIGINAL, status=s) for s in GenerationStatus
    }
    return ImageStats(
        total_generations=await store.count(kind=ArtifactKind.ORIGINAL),
        pending=counts[GenerationStatus.PENDING],
        processing=counts[GenerationStatus.PROCESSING],
        completed=counts[GenerationStatus.COMPLETED],
        failed=counts[GenerationStatus.FAILED],
        generated_images=await store.count(kind=ArtifactKind.DERIVED),
        public_images=await store.count(public_only=True),
    )


@router.get("/{image_id}", response_model=ImageDetails)
async def get_image_details(
    image_id: int,
    store: ArtifactStore = Depends(get_artifact_store),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """Get an original image and its generated image.

    Asking for a generated image returns it as ``generated`` together with
    the original it came from.
    """
    artifact = await store.get(image_id)
    if not artifact:
        raise HTTPException(status_code=404, detail="Image not found")

    if artifact.is_derived:
        generated = artifact
        original = (
            await store.get(artifact.source_artifact_id) if artifact.source_artifact_id else None
        )
        if original is None:
            raise HTTPException(status_code=404, detail="Original image not found")
    else:
        original = artifact
        generated = (
            await store.get(artifact.derived_artifact_id) if artifact.derived_artifact_id else None
        )

    return ImageDetails(
        original=to_image_read(original, blobs),
        generated=to_image_read(generated, blobs) if generated else None,
    )


@router.post("/{image_id}/share", response_model=ShareResponse)
async def share_image(
    image_id: int,
    gate: VisibilityGate = Depends(get_visibility_gate),
    store: ArtifactStore = Depends(get_artifact_store),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """Publish a generated image to the public feed."""
    result = await gate.publish(image_id)

    image = None
    if result.is_public:
        artifact = await store.get(image_id)
        image = to_image_read(artifact, blobs) if artifact else None

    body = ShareResponse(success=result.is_public, status=result.value, image=image)
    return JSONResponse(
        status_code=_SHARE_STATUS_CODES[result],
        content=body.model_dump(mode="json"),
    )


@router.delete("/{image_id}", response_model=AdminDeleteResponse)
async def admin_delete_image(
    image_id: int,
    token: str | None = Depends(get_admin_token),
    authority: AdminAuthority = Depends(get_admin_authority),
):
    """Delete an image. Requires the admin token in ``X-Admin-Token``."""
    result = await authority.delete(image_id, token)
    body = AdminDeleteResponse(success=result == AdminDeleteStatus.OK, reason=result.value)
    return JSONResponse(status_code=_DELETE_STATUS_CODES[result], content=body.model_dump())
