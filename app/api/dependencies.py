"""API dependencies."""

from fastapi import Header

from app.services.admin import AdminAuthority
from app.services.admin import get_admin_authority as build_admin_authority
from app.services.artifact_store import ArtifactStore, artifact_store
from app.services.blob_store import LocalBlobStore, blob_store
from app.services.generator import GenerationService, generation_service
from app.services.visibility import VisibilityGate, visibility_gate


def get_artifact_store() -> ArtifactStore:
    return artifact_store


def get_blob_store() -> LocalBlobStore:
    return blob_store


def get_generation_service() -> GenerationService:
    return generation_service


def get_visibility_gate() -> VisibilityGate:
    return visibility_gate


def get_admin_authority() -> AdminAuthority:
    return build_admin_authority()


def get_admin_token(x_admin_token: str | None = Header(default=None)) -> str | None:
    """Admin token supplied by the caller, if any."""
    if x_admin_token is None:
        return None
    return x_admin_token.strip() or None
