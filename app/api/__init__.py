"""API routes package."""

from fastapi import APIRouter

from app.api.blobs import router as blobs_router
from app.api.generations import router as generations_router
from app.api.images import router as images_router

api_router = APIRouter()

# Public routes; admin deletion checks its own token
api_router.include_router(
    blobs_router,
    prefix="/api/blobs",
    tags=["blobs"],
)
api_router.include_router(
    generations_router,
    prefix="/api/generations",
    tags=["generations"],
)
api_router.include_router(
    images_router,
    prefix="/api/images",
    tags=["images"],
)

__all__ = ["api_router"]
