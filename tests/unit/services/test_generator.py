"""Unit tests for the generation pipeline."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from app.models.artifact import ArtifactKind, GenerationStatus
from app.services.artifact_store import ArtifactStore
from app.services.generator import (
    LINKAGE_ERROR_PREFIX,
    PROVIDER_ERROR_PREFIX,
    QUOTA_ERROR_PREFIX,
    ErrorKind,
    GenerationService,
    SubmitStatus,
    error_kind_for,
)
from app.services.status_machine import is_valid_history
from app.services.transformer import ProviderError, QuotaExceededError
from tests.fakes import GENERATED_BYTES, PNG_BYTES, FakeTransformer


class RecordingStore(ArtifactStore):
    """Store that remembers every applied status write per artifact."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker)
        self.history: dict[int, list[str]] = {}

    async def insert(self, **fields):
        artifact_id = await super().insert(**fields)
        if fields.get("generation_status"):
            self.history.setdefault(artifact_id, []).append(fields["generation_status"])
        return artifact_id

    async def _update(self, artifact_id, expected, fields):
        applied = await super()._update(artifact_id, expected, fields)
        if applied and "generation_status" in fields:
            self.history.setdefault(artifact_id, []).append(fields["generation_status"])
        return applied


class FailingLinkStore(ArtifactStore):
    """Store whose write of the derived link always raises."""

    async def compare_and_set(self, artifact_id, expected, **fields):
        if "derived_artifact_id" in fields:
            raise RuntimeError("disk I/O error")
        return await super().compare_and_set(artifact_id, expected, **fields)


class TestErrorKind:
    """Tests for error_kind_for."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            (None, None),
            ("", None),
            (f"{QUOTA_ERROR_PREFIX}: 429 RESOURCE_EXHAUSTED", ErrorKind.QUOTA),
            (f"{PROVIDER_ERROR_PREFIX}: API key not configured", ErrorKind.ERROR),
            (f"{LINKAGE_ERROR_PREFIX}: generated image 7 was stored", ErrorKind.ERROR),
            ("Failed to get image URL from storage", ErrorKind.ERROR),
        ],
    )
    def test_error_kind_for(self, message, expected):
        assert error_kind_for(message) == expected


class TestSubmit:
    """Tests for GenerationService.submit."""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_original(self, generation_service, store, stored_blob):
        """Submitting returns an id whose record is pending."""
        result = await generation_service.submit(stored_blob)

        assert result.ok
        assert result.status == SubmitStatus.OK
        artifact = await store.get(result.image_id)
        assert artifact.kind == ArtifactKind.ORIGINAL.value
        assert artifact.generation_status == GenerationStatus.PENDING.value
        assert artifact.blob_ref == stored_blob
        assert artifact.mime_type == "image/png"
        assert artifact.derived_artifact_id is None
        assert artifact.generation_error is None

    @pytest.mark.asyncio
    async def test_submit_does_not_run_generation(
        self, generation_service, transformer, stored_blob
    ):
        await generation_service.submit(stored_blob)
        assert transformer.calls == []

    @pytest.mark.asyncio
    async def test_submit_unreadable_blob_creates_nothing(self, generation_service, store):
        result = await generation_service.submit("f" * 32 + ".png")

        assert not result.ok
        assert result.status == SubmitStatus.SOURCE_UNREADABLE
        assert result.image_id is None
        assert result.message
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_submit_invalid_ref(self, generation_service, store):
        result = await generation_service.submit("../../etc/passwd")
        assert result.status == SubmitStatus.SOURCE_UNREADABLE
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_submit_calls_dispatcher(self, generation_service, stored_blob):
        dispatcher = MagicMock()
        generation_service.set_dispatcher(dispatcher)

        result = await generation_service.submit(stored_blob)

        dispatcher.assert_called_once_with(result.image_id)

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_pending_row(
        self, generation_service, store, stored_blob
    ):
        """A failed dispatch leaves the committed row for the sweep."""
        generation_service.set_dispatcher(MagicMock(side_effect=RuntimeError("queue down")))

        result = await generation_service.submit(stored_blob)

        assert result.ok
        artifact = await store.get(result.image_id)
        assert artifact.generation_status == GenerationStatus.PENDING.value


class TestRunGeneration:
    """Tests for GenerationService.run_generation."""

    @pytest.mark.asyncio
    async def test_successful_generation(self, generation_service, store, blobs, stored_blob):
        """Happy path: submit, run, completed with a private derived image."""
        result = await generation_service.submit(stored_blob)

        status = await generation_service.run_generation(result.image_id)

        assert status == GenerationStatus.COMPLETED
        original = await store.get(result.image_id)
        assert original.generation_status == GenerationStatus.COMPLETED.value
        assert original.generation_error is None
        assert original.derived_artifact_id is not None

        derived = await store.get(original.derived_artifact_id)
        assert derived.kind == ArtifactKind.DERIVED.value
        assert derived.source_artifact_id == original.id
        assert derived.is_public is False
        assert derived.shared_at is None
        assert derived.mime_type == "image/png"

        data, _ = await blobs.read_blob(derived.blob_ref)
        assert data == GENERATED_BYTES

    @pytest.mark.asyncio
    async def test_transformer_receives_source_bytes(
        self, generation_service, transformer, stored_blob
    ):
        result = await generation_service.submit(stored_blob)
        await generation_service.run_generation(result.image_id)

        assert transformer.calls == [(PNG_BYTES, "image/png")]

    @pytest.mark.asyncio
    async def test_quota_failure(self, generation_service, store, transformer, stored_blob):
        """Quota errors are persisted with the quota prefix and no derived image."""
        transformer.error = QuotaExceededError("RESOURCE_EXHAUSTED: Resource has been exhausted")
        result = await generation_service.submit(stored_blob)

        status = await generation_service.run_generation(result.image_id)

        assert status == GenerationStatus.FAILED
        original = await store.get(result.image_id)
        assert original.generation_status == GenerationStatus.FAILED.value
        assert original.generation_error.startswith(QUOTA_ERROR_PREFIX)
        assert error_kind_for(original.generation_error) == ErrorKind.QUOTA
        assert original.derived_artifact_id is None
        assert await store.count(kind=ArtifactKind.DERIVED) == 0

    @pytest.mark.asyncio
    async def test_provider_failure(self, generation_service, store, transformer, stored_blob):
        transformer.error = ProviderError("Gemini response did not include image data")
        result = await generation_service.submit(stored_blob)

        status = await generation_service.run_generation(result.image_id)

        assert status == GenerationStatus.FAILED
        original = await store.get(result.image_id)
        assert original.generation_error == (
            f"{PROVIDER_ERROR_PREFIX}: Gemini response did not include image data"
        )
        assert error_kind_for(original.generation_error) == ErrorKind.ERROR
        assert original.derived_artifact_id is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(
        self, generation_service, store, transformer, stored_blob
    ):
        """run_generation never raises, even for bugs in the pipeline."""
        transformer.error = RuntimeError("boom")
        result = await generation_service.submit(stored_blob)

        status = await generation_service.run_generation(result.image_id)

        assert status == GenerationStatus.FAILED
        original = await store.get(result.image_id)
        assert original.generation_error == f"{PROVIDER_ERROR_PREFIX}: boom"

    @pytest.mark.asyncio
    async def test_source_removed_before_run(
        self, generation_service, store, blobs, transformer, stored_blob
    ):
        result = await generation_service.submit(stored_blob)
        await blobs.delete_blob(stored_blob)

        status = await generation_service.run_generation(result.image_id)

        assert status == GenerationStatus.FAILED
        original = await store.get(result.image_id)
        assert original.generation_error == "Failed to get image URL from storage"
        assert transformer.calls == []

    @pytest.mark.asyncio
    async def test_unknown_id_is_noop(self, generation_service, transformer):
        assert await generation_service.run_generation(12345) is None
        assert transformer.calls == []

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, generation_service, store, transformer, stored_blob):
        """A second delivery of a finished job changes nothing."""
        result = await generation_service.submit(stored_blob)
        await generation_service.run_generation(result.image_id)
        first = await store.get(result.image_id)

        assert await generation_service.run_generation(result.image_id) is None

        second = await store.get(result.image_id)
        assert len(transformer.calls) == 1
        assert second.generation_status == first.generation_status
        assert second.derived_artifact_id == first.derived_artifact_id
        assert await store.count(kind=ArtifactKind.DERIVED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_run_once(self, store, blobs, stored_blob):
        """Two simultaneous deliveries call the provider exactly once."""
        transformer = FakeTransformer(delay=0.05)
        service = GenerationService(store=store, blobs=blobs, client=transformer)
        result = await service.submit(stored_blob)

        outcomes = await asyncio.gather(
            service.run_generation(result.image_id),
            service.run_generation(result.image_id),
        )

        assert sorted(outcomes, key=lambda s: s is None) == [GenerationStatus.COMPLETED, None]
        assert len(transformer.calls) == 1
        derived = await store.find_derived_for(result.image_id)
        assert len(derived) == 1
        original = await store.get(result.image_id)
        assert original.derived_artifact_id == derived[0].id

    @pytest.mark.asyncio
    async def test_status_history_is_legal(self, session_maker, blobs, stored_blob):
        """Every observed status sequence is a prefix of a legal path."""
        store = RecordingStore(session_maker)
        service = GenerationService(store=store, blobs=blobs, client=FakeTransformer())

        ok = await service.submit(stored_blob)
        second_blob = await blobs.put_blob(PNG_BYTES, "image/png")
        failing = await service.submit(second_blob)

        await service.run_generation(ok.image_id)
        await service.run_generation(ok.image_id)
        service.client = FakeTransformer(error=QuotaExceededError("quota"))
        await service.run_generation(failing.image_id)
        await service.fail_stalled_generations(older_than=datetime.now(UTC))

        assert store.history[ok.image_id] == ["pending", "processing", "completed"]
        assert store.history[failing.image_id] == ["pending", "processing", "failed"]
        for history in store.history.values():
            assert is_valid_history(history)

    @pytest.mark.asyncio
    async def test_link_failure_is_recorded(self, session_maker, blobs, stored_blob):
        """If the link cannot be written, the job fails with the linkage message."""
        store = FailingLinkStore(session_maker)
        service = GenerationService(store=store, blobs=blobs, client=FakeTransformer())
        result = await service.submit(stored_blob)

        status = await service.run_generation(result.image_id)

        assert status == GenerationStatus.FAILED
        original = await store.get(result.image_id)
        assert original.generation_status == GenerationStatus.FAILED.value
        assert original.generation_error.startswith(LINKAGE_ERROR_PREFIX)
        assert original.derived_artifact_id is None
        # The generated image is kept for inspection
        assert len(await store.find_derived_for(result.image_id)) == 1

    @pytest.mark.asyncio
    async def test_deleted_while_processing_discards_output(self, store, blobs, stored_blob):
        """An original removed mid-run leaves no orphaned generated image."""

        class DeletingTransformer(FakeTransformer):
            async def transform(self, source, mime_type):
                await store.delete(image_id)
                return await super().transform(source, mime_type)

        transformer = DeletingTransformer()
        service = GenerationService(store=store, blobs=blobs, client=transformer)
        result = await service.submit(stored_blob)
        image_id = result.image_id

        status = await service.run_generation(image_id)

        assert status is None
        assert len(transformer.calls) == 1
        assert await store.count() == 0
        assert sorted(p.name for p in blobs.root.iterdir()) == [stored_blob]


class TestStalledGenerations:
    """Tests for the stall reaper and restart cleanup."""

    @pytest.mark.asyncio
    async def test_pending_generation_ids(self, generation_service, stored_blob):
        result = await generation_service.submit(stored_blob)

        assert await generation_service.pending_generation_ids(0) == [result.image_id]
        assert await generation_service.pending_generation_ids(3600) == []

    @pytest.mark.asyncio
    async def test_fail_stalled_processing(self, generation_service, store, artifact_factory):
        stalled = await artifact_factory(
            generation_status=GenerationStatus.PROCESSING.value,
            status_updated_at=datetime.now(UTC) - timedelta(hours=1),
        )
        fresh = await artifact_factory(generation_status=GenerationStatus.PROCESSING.value)
        pending = await artifact_factory(
            status_updated_at=datetime.now(UTC) - timedelta(hours=1),
        )

        assert await generation_service.fail_stalled_generations() == 1

        stalled = await store.get(stalled.id)
        assert stalled.generation_status == GenerationStatus.FAILED.value
        assert stalled.generation_error == (
            f"{PROVIDER_ERROR_PREFIX}: timed out after 600 seconds"
        )
        assert (await store.get(fresh.id)).generation_status == GenerationStatus.PROCESSING.value
        assert (await store.get(pending.id)).generation_status == GenerationStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_stalled_with_unlinked_output(
        self, generation_service, store, artifact_factory
    ):
        """A stored but unlinked derived image is reported as a linkage failure."""
        original = await artifact_factory(
            generation_status=GenerationStatus.PROCESSING.value,
            status_updated_at=datetime.now(UTC) - timedelta(hours=1),
        )
        orphan = await artifact_factory(
            kind=ArtifactKind.DERIVED,
            data=GENERATED_BYTES,
            source_artifact_id=original.id,
        )

        assert await generation_service.fail_stalled_generations() == 1

        original = await store.get(original.id)
        assert original.generation_error.startswith(LINKAGE_ERROR_PREFIX)
        assert str(orphan.id) in original.generation_error
        assert original.derived_artifact_id is None

    @pytest.mark.asyncio
    async def test_cleanup_after_restart(self, generation_service, store, artifact_factory):
        """Everything processing at startup belonged to the previous process."""
        interrupted = await artifact_factory(generation_status=GenerationStatus.PROCESSING.value)
        pending = await artifact_factory()
        done = await artifact_factory(generation_status=GenerationStatus.COMPLETED.value)

        assert await generation_service.cleanup_stale_generations() == 1

        interrupted = await store.get(interrupted.id)
        assert interrupted.generation_status == GenerationStatus.FAILED.value
        assert interrupted.generation_error == (
            f"{PROVIDER_ERROR_PREFIX}: interrupted by service restart"
        )
        assert (await store.get(pending.id)).generation_status == GenerationStatus.PENDING.value
        assert (await store.get(done.id)).generation_status == GenerationStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_cleanup_with_nothing_to_do(self, generation_service):
        assert await generation_service.cleanup_stale_generations() == 0
