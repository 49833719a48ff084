"""Pydantic schemas for images and generations."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ImageRead(BaseModel):
    """Schema for reading an image."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str
    mime_type: str
    created_at: datetime
    generation_status: str | None = None
    generation_error: str | None = None
    derived_artifact_id: int | None = None
    source_artifact_id: int | None = None
    is_public: bool = False
    shared_at: datetime | None = None

    # Computed fields
    url: str | None = None
    error_kind: str | None = None


class ImageList(BaseModel):
    """Schema for listing images with pagination."""

    items: list[ImageRead]
    total: int
    page: int
    per_page: int
    pages: int


class ImageDetails(BaseModel):
    """An original image together with its generated image, if any."""

    original: ImageRead
    generated: ImageRead | None = None


class ImageStats(BaseModel):
    """Counts of generations by status."""

    total_generations: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    generated_images: int = 0
    public_images: int = 0


class UploadResponse(BaseModel):
    storage_id: str
    url: str | None = None
    size_bytes: int


class GenerationCreate(BaseModel):
    """Schema for submitting a generation."""

    storage_id: str = Field(..., min_length=1, max_length=255)


class GenerationCreated(BaseModel):
    image_id: int
    status: str


class ShareResponse(BaseModel):
    success: bool
    status: str
    image: ImageRead | None = None


class AdminDeleteResponse(BaseModel):
    success: bool
    reason: str
