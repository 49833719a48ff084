"""Pytest configuration and fixtures for Dripped Out tests."""

import os

os.environ.setdefault("SUPPRESS_CONFIG_WARNINGS", "1")
os.environ.setdefault("SKIP_ALEMBIC_MIGRATIONS", "1")

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models.artifact import Artifact, ArtifactKind, GenerationStatus
from app.services.admin import AdminAuthority
from app.services.artifact_store import ArtifactStore
from app.services.blob_store import LocalBlobStore
from app.services.generator import GenerationService
from app.services.visibility import VisibilityGate
from tests.fakes import ADMIN_TOKEN, GENERATED_BYTES, PNG_BYTES, FakeTransformer


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine on a temporary SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test_app.db'}",
        echo=False,
        future=True,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(session_maker) -> ArtifactStore:
    return ArtifactStore(session_maker)


@pytest.fixture
def blobs(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs", url_prefix="/api/blobs")


@pytest.fixture
def transformer() -> FakeTransformer:
    return FakeTransformer()


@pytest.fixture
def generation_service(store, blobs, transformer) -> GenerationService:
    return GenerationService(store=store, blobs=blobs, client=transformer, stale_timeout=600)


@pytest.fixture
def visibility_gate(store) -> VisibilityGate:
    return VisibilityGate(store)


@pytest.fixture
def admin_authority(store, blobs) -> AdminAuthority:
    return AdminAuthority(ADMIN_TOKEN, store=store, blobs=blobs)


@pytest_asyncio.fixture
async def stored_blob(blobs) -> str:
    """A readable photo in the blob store."""
    return await blobs.put_blob(PNG_BYTES, "image/png")


# --- Factory fixtures ---


@pytest_asyncio.fixture
async def artifact_factory(store, blobs):
    """Factory for creating artifacts with real blobs."""

    async def _create_artifact(
        kind: ArtifactKind = ArtifactKind.ORIGINAL,
        data: bytes = PNG_BYTES,
        mime_type: str = "image/png",
        **kwargs: Any,
    ) -> Artifact:
        ref = await blobs.put_blob(data, mime_type)
        fields: dict[str, Any] = {
            "blob_ref": ref,
            "mime_type": mime_type,
            "kind": kind.value,
        }
        if kind == ArtifactKind.ORIGINAL:
            fields["generation_status"] = GenerationStatus.PENDING.value
            fields["status_updated_at"] = datetime.now(UTC)
        fields.update(kwargs)
        artifact_id = await store.insert(**fields)
        return await store.get(artifact_id)

    yield _create_artifact


@pytest_asyncio.fixture
async def completed_generation(artifact_factory, store):
    """An original in completed state linked to a private generated image."""
    original = await artifact_factory(
        generation_status=GenerationStatus.COMPLETED.value,
    )
    derived = await artifact_factory(
        kind=ArtifactKind.DERIVED,
        data=GENERATED_BYTES,
        source_artifact_id=original.id,
    )
    await store.patch(original.id, derived_artifact_id=derived.id)
    return await store.get(original.id), derived


@pytest_asyncio.fixture(scope="function")
async def test_client(
    session_maker,
    store,
    blobs,
    generation_service,
    visibility_gate,
    admin_authority,
    monkeypatch,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client wired to the test database and blob store."""
    import app.database
    from app.api import dependencies
    from app.api.rate_limit import clear_rate_limits
    from app.main import app as fastapi_app

    clear_rate_limits()

    # Health check opens its own session
    monkeypatch.setattr(app.database, "async_session_maker", session_maker)

    fastapi_app.dependency_overrides[dependencies.get_artifact_store] = lambda: store
    fastapi_app.dependency_overrides[dependencies.get_blob_store] = lambda: blobs
    fastapi_app.dependency_overrides[dependencies.get_generation_service] = (
        lambda: generation_service
    )
    fastapi_app.dependency_overrides[dependencies.get_visibility_gate] = lambda: visibility_gate
    fastapi_app.dependency_overrides[dependencies.get_admin_authority] = lambda: admin_authority

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    fastapi_app.dependency_overrides.clear()
