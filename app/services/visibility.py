"""Publishing generated images to the public feed."""

import logging
from datetime import UTC, datetime
from enum import Enum

from app.models.artifact import ArtifactKind
from app.services.artifact_store import ArtifactStore, artifact_store

logger = logging.getLogger(__name__)


class PublishStatus(str, Enum):
    OK = "ok"
    ALREADY_PUBLIC = "already_public"
    NOT_FOUND = "not_found"
    NOT_DERIVED = "not_derived"

    @property
    def is_public(self) -> bool:
        return self in (PublishStatus.OK, PublishStatus.ALREADY_PUBLIC)


class VisibilityGate:
    """Sets the public flag on generated images.

    Publishing is idempotent and ``shared_at`` keeps the time of the first
    publish. There is no way back to private short of deleting the image.
    """

    def __init__(self, store: ArtifactStore | None = None) -> None:
        self.store = store or artifact_store

    async def publish(self, artifact_id: int) -> PublishStatus:
        published = await self.store.compare_and_set(
            artifact_id,
            {"kind": ArtifactKind.DERIVED.value, "is_public": False},
            is_public=True,
            shared_at=datetime.now(UTC),
        )
        if published:
            logger.info(f"Image {artifact_id} shared to feed")
            return PublishStatus.OK

        artifact = await self.store.get(artifact_id)
        if artifact is None:
            return PublishStatus.NOT_FOUND
        if not artifact.is_derived:
            return PublishStatus.NOT_DERIVED
        return PublishStatus.ALREADY_PUBLIC


# Global instance
visibility_gate = VisibilityGate()
