"""Generation pipeline: from a submitted photo to a generated image."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from app.config import get_settings
from app.models.artifact import ArtifactKind, GenerationStatus
from app.services.artifact_store import ArtifactStore, artifact_store
from app.services.blob_store import LocalBlobStore, blob_store
from app.services.status_machine import ensure_transition
from app.services.transformer import (
    OUTPUT_MIME_TYPE,
    GeminiTransformationClient,
    ProviderError,
    QuotaExceededError,
    transformation_client,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Prefixes of the persisted generation_error, one per failure class
QUOTA_ERROR_PREFIX = "Quota exceeded"
PROVIDER_ERROR_PREFIX = "Generation failed"
LINKAGE_ERROR_PREFIX = "Linkage persistence failed"


class ErrorKind(str, Enum):
    """How a failed generation should be presented to the user."""

    QUOTA = "quota"  # try again later
    ERROR = "error"  # try again now


def error_kind_for(message: str | None) -> ErrorKind | None:
    """Recover the failure class from a persisted error message."""
    if not message:
        return None
    if message.startswith(QUOTA_ERROR_PREFIX):
        return ErrorKind.QUOTA
    return ErrorKind.ERROR


class SubmitStatus(str, Enum):
    OK = "ok"
    SOURCE_UNREADABLE = "source_unreadable"


@dataclass(frozen=True)
class SubmitResult:
    status: SubmitStatus
    image_id: int | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SubmitStatus.OK


class GenerationService:
    """Runs each submitted generation to a terminal status exactly once."""

    def __init__(
        self,
        store: ArtifactStore | None = None,
        blobs: LocalBlobStore | None = None,
        client: GeminiTransformationClient | None = None,
        stale_timeout: int | None = None,
    ) -> None:
        self.store = store or artifact_store
        self.blobs = blobs or blob_store
        self.client = client or transformation_client
        self.stale_timeout = (
            stale_timeout if stale_timeout is not None else settings.stale_generation_timeout
        )
        self._dispatch: Callable[[int], Any] | None = None

    def set_dispatcher(self, dispatcher: Callable[[int], Any] | None) -> None:
        """Set the callable that schedules ``run_generation`` for an id."""
        self._dispatch = dispatcher

    async def submit(self, blob_ref: str) -> SubmitResult:
        """Create a pending generation for a stored photo and schedule it.

        Returns immediately; the transformation runs in the background.
        """
        if not await self.blobs.exists(blob_ref):
            logger.warning(f"Rejected submission for unreadable blob {blob_ref!r}")
            return SubmitResult(
                SubmitStatus.SOURCE_UNREADABLE,
                message="Uploaded image not found in storage",
            )

        now = datetime.now(UTC)
        image_id = await self.store.insert(
            blob_ref=blob_ref,
            mime_type=self.blobs.mime_type_for(blob_ref),
            kind=ArtifactKind.ORIGINAL.value,
            generation_status=GenerationStatus.PENDING.value,
            status_updated_at=now,
            created_at=now,
        )
        logger.info(f"Created generation {image_id} for blob {blob_ref}")

        self.request_dispatch(image_id)
        return SubmitResult(SubmitStatus.OK, image_id=image_id)

    def request_dispatch(self, image_id: int) -> None:
        if self._dispatch is None:
            logger.warning(
                f"No dispatcher set, generation {image_id} waits for the next sweep"
            )
            return
        try:
            self._dispatch(image_id)
        except Exception:
            # The row is committed as pending, so the sweep will pick it up
            logger.exception(f"Failed to dispatch generation {image_id}")

    async def _transition(
        self,
        image_id: int,
        current: GenerationStatus,
        target: GenerationStatus,
        expected: dict[str, Any] | None = None,
        **fields: Any,
    ) -> bool:
        ensure_transition(current, target)
        return await self.store.compare_and_set(
            image_id,
            {"generation_status": current.value, **(expected or {})},
            generation_status=target.value,
            status_updated_at=datetime.now(UTC),
            **fields,
        )

    async def run_generation(self, image_id: int) -> GenerationStatus | None:
        """Execute the pipeline for one generation.

        Safe to call any number of times for the same id: only the call that
        moves the row from pending to processing does any work. Returns the
        terminal status reached by this call, or None if it did nothing.
        Never raises.
        """
        try:
            claimed = await self._transition(
                image_id, GenerationStatus.PENDING, GenerationStatus.PROCESSING
            )
        except Exception:
            logger.exception(f"Could not claim generation {image_id}")
            return None

        if not claimed:
            logger.info(f"Generation {image_id} is not pending, skipping")
            return None

        logger.info(f"Processing generation {image_id}")
        try:
            return await self._execute(image_id)
        except Exception as e:
            logger.exception(f"Error generating image {image_id}")
            return await self._fail(image_id, f"{PROVIDER_ERROR_PREFIX}: {e}")

    async def _execute(self, image_id: int) -> GenerationStatus | None:
        original = await self.store.get(image_id)
        if original is None:
            logger.warning(f"Generation {image_id} was deleted while processing")
            return None

        url = await self.blobs.get_url(original.blob_ref)
        if not url:
            return await self._fail(image_id, "Failed to get image URL from storage")

        try:
            output = await self.client.transform_blob(self.blobs, original.blob_ref)
        except QuotaExceededError as e:
            return await self._fail(image_id, f"{QUOTA_ERROR_PREFIX}: {e}")
        except ProviderError as e:
            return await self._fail(image_id, f"{PROVIDER_ERROR_PREFIX}: {e}")

        derived_ref = await self.blobs.put_blob(output, OUTPUT_MIME_TYPE)
        derived_id = await self.store.insert(
            blob_ref=derived_ref,
            mime_type=OUTPUT_MIME_TYPE,
            kind=ArtifactKind.DERIVED.value,
            source_artifact_id=image_id,
            is_public=False,
        )

        # Link and status go in one statement, so a crash leaves "processing"
        try:
            linked = await self._transition(
                image_id,
                GenerationStatus.PROCESSING,
                GenerationStatus.COMPLETED,
                expected={"derived_artifact_id": None},
                derived_artifact_id=derived_id,
            )
        except Exception as e:
            logger.exception(f"Failed to link generated image {derived_id} to {image_id}")
            return await self._fail(
                image_id,
                f"{LINKAGE_ERROR_PREFIX}: generated image {derived_id} was stored "
                f"but could not be linked ({type(e).__name__})",
            )

        if not linked:
            logger.warning(
                f"Generation {image_id} left processing before it could be completed, "
                f"discarding generated image {derived_id}"
            )
            await self._discard(derived_id, derived_ref)
            return None

        logger.info(f"Generation {image_id} completed with image {derived_id}")
        return GenerationStatus.COMPLETED

    async def _fail(self, image_id: int, message: str) -> GenerationStatus | None:
        try:
            failed = await self._transition(
                image_id,
                GenerationStatus.PROCESSING,
                GenerationStatus.FAILED,
                generation_error=message,
            )
        except Exception:
            logger.exception(
                f"Could not mark generation {image_id} as failed, original error: {message}"
            )
            return None

        if not failed:
            logger.warning(f"Generation {image_id} is no longer processing: {message}")
            return None

        logger.warning(f"Generation {image_id} failed: {message}")
        return GenerationStatus.FAILED

    async def _discard(self, artifact_id: int, blob_ref: str) -> None:
        try:
            await self.store.delete(artifact_id)
            await self.blobs.delete_blob(blob_ref)
        except Exception:
            logger.exception(f"Failed to discard orphaned image {artifact_id}")

    async def pending_generation_ids(self, older_than_seconds: int = 0) -> list[int]:
        """Ids of pending generations created at least ``older_than_seconds`` ago."""
        cutoff = datetime.now(UTC) - timedelta(seconds=older_than_seconds)
        pending = await self.store.query(
            kind=ArtifactKind.ORIGINAL,
            status=GenerationStatus.PENDING,
            created_before=cutoff,
            newest_first=False,
        )
        return [artifact.id for artifact in pending]

    async def fail_stalled_generations(
        self,
        older_than: datetime | None = None,
        reason: str | None = None,
    ) -> int:
        """Fail generations stuck in processing since before ``older_than``."""
        cutoff = older_than or datetime.now(UTC) - timedelta(seconds=self.stale_timeout)
        stalled = await self.store.query(
            kind=ArtifactKind.ORIGINAL,
            status=GenerationStatus.PROCESSING,
            status_updated_before=cutoff,
            newest_first=False,
        )

        count = 0
        for artifact in stalled:
            message = reason or (
                f"{PROVIDER_ERROR_PREFIX}: timed out after {self.stale_timeout} seconds"
            )
            orphans = await self.store.find_derived_for(artifact.id)
            if orphans:
                message = (
                    f"{LINKAGE_ERROR_PREFIX}: generated image {orphans[0].id} "
                    "was stored but never linked"
                )
            if await self._fail(artifact.id, message) == GenerationStatus.FAILED:
                count += 1

        if count:
            logger.info(f"Failed {count} stalled generations")
        return count

    async def cleanup_stale_generations(self) -> int:
        """Fail every generation left processing by a previous process."""
        return await self.fail_stalled_generations(
            older_than=datetime.now(UTC),
            reason=f"{PROVIDER_ERROR_PREFIX}: interrupted by service restart",
        )


# Global instance
generation_service = GenerationService()
