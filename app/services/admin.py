"""Token-gated administrative deletion."""

import logging
from enum import Enum

from app.config import get_settings
from app.services.artifact_store import ArtifactStore, artifact_store
from app.services.blob_store import BlobStoreError, LocalBlobStore, blob_store

logger = logging.getLogger(__name__)


class AdminDeleteStatus(str, Enum):
    OK = "OK"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_TOKEN = "INVALID_TOKEN"
    NOT_FOUND = "NOT_FOUND"


class AdminAuthority:
    """Deletes artifacts on behalf of whoever holds the admin token."""

    def __init__(
        self,
        admin_token: str | None,
        store: ArtifactStore | None = None,
        blobs: LocalBlobStore | None = None,
    ) -> None:
        self._admin_token = admin_token or None
        self.store = store or artifact_store
        self.blobs = blobs or blob_store

    @property
    def is_configured(self) -> bool:
        return self._admin_token is not None

    def check_token(self, supplied_token: str | None) -> AdminDeleteStatus:
        if not self.is_configured:
            return AdminDeleteStatus.NOT_CONFIGURED
        if not supplied_token or supplied_token != self._admin_token:
            return AdminDeleteStatus.INVALID_TOKEN
        return AdminDeleteStatus.OK

    async def delete(self, artifact_id: int, supplied_token: str | None) -> AdminDeleteStatus:
        """Delete an artifact's row, then its blob on a best-effort basis."""
        status = self.check_token(supplied_token)
        if status != AdminDeleteStatus.OK:
            logger.warning(f"Rejected admin delete of {artifact_id}: {status.value}")
            return status

        artifact = await self.store.get(artifact_id)
        if artifact is None:
            return AdminDeleteStatus.NOT_FOUND

        if not await self.store.delete(artifact_id):
            # Deleted concurrently
            return AdminDeleteStatus.NOT_FOUND

        try:
            await self.blobs.delete_blob(artifact.blob_ref)
        except BlobStoreError as e:
            logger.error(f"Deleted image {artifact_id} but not its blob {artifact.blob_ref}: {e}")

        logger.info(f"Admin deleted image {artifact_id} ({artifact.kind})")
        return AdminDeleteStatus.OK


def get_admin_authority() -> AdminAuthority:
    """Build an authority from the current settings."""
    return AdminAuthority(get_settings().admin_delete_token)
