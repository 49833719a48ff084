"""Unit tests for VisibilityGate."""

import pytest

from app.services.visibility import PublishStatus


class TestVisibilityGate:
    """Tests for publishing generated images."""

    @pytest.mark.asyncio
    async def test_publish_derived(self, visibility_gate, store, completed_generation):
        """A generated image starts private and appears in the feed once shared."""
        _, derived = completed_generation
        assert await store.query(public_only=True) == []

        status = await visibility_gate.publish(derived.id)

        assert status == PublishStatus.OK
        assert status.is_public
        shared = await store.get(derived.id)
        assert shared.is_public is True
        assert shared.shared_at is not None
        assert [a.id for a in await store.query(public_only=True)] == [derived.id]

    @pytest.mark.asyncio
    async def test_publish_is_idempotent(self, visibility_gate, store, completed_generation):
        """Publishing twice keeps the first share time."""
        _, derived = completed_generation
        await visibility_gate.publish(derived.id)
        first = await store.get(derived.id)

        status = await visibility_gate.publish(derived.id)

        assert status == PublishStatus.ALREADY_PUBLIC
        assert status.is_public
        second = await store.get(derived.id)
        assert second.is_public is True
        assert second.shared_at == first.shared_at

    @pytest.mark.asyncio
    async def test_publish_original_rejected(self, visibility_gate, store, completed_generation):
        original, _ = completed_generation

        status = await visibility_gate.publish(original.id)

        assert status == PublishStatus.NOT_DERIVED
        assert not status.is_public
        assert (await store.get(original.id)).is_public is False

    @pytest.mark.asyncio
    async def test_publish_missing(self, visibility_gate):
        assert await visibility_gate.publish(4242) == PublishStatus.NOT_FOUND
