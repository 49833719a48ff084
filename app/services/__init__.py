"""Services package."""

from app.services.admin import AdminAuthority, AdminDeleteStatus
from app.services.artifact_store import ArtifactStore
from app.services.blob_store import LocalBlobStore
from app.services.generator import GenerationService, SubmitResult, SubmitStatus
from app.services.scheduler import SchedulerService
from app.services.transformer import (
    GeminiTransformationClient,
    ProviderError,
    QuotaExceededError,
)
from app.services.visibility import PublishStatus, VisibilityGate

__all__ = [
    "AdminAuthority",
    "AdminDeleteStatus",
    "ArtifactStore",
    "GeminiTransformationClient",
    "GenerationService",
    "LocalBlobStore",
    "ProviderError",
    "PublishStatus",
    "QuotaExceededError",
    "SchedulerService",
    "SubmitResult",
    "SubmitStatus",
    "VisibilityGate",
]
