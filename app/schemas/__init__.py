"""Pydantic schemas package."""

from app.schemas.image import (
    AdminDeleteResponse,
    GenerationCreate,
    GenerationCreated,
    ImageDetails,
    ImageList,
    ImageRead,
    ImageStats,
    ShareResponse,
    UploadResponse,
)

__all__ = [
    "AdminDeleteResponse",
    "GenerationCreate",
    "GenerationCreated",
    "ImageDetails",
    "ImageList",
    "ImageRead",
    "ImageStats",
    "ShareResponse",
    "UploadResponse",
]
