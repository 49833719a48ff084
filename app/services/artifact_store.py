"""Artifact metadata persistence.

Every mutation is a single-row ``UPDATE ... WHERE id = ?`` so concurrent
writers to different artifacts never contend, and conditional updates on the
same artifact are decided by the database.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.artifact import Artifact, ArtifactKind, GenerationStatus

logger = logging.getLogger(__name__)

# Columns that may be changed after insert
MUTABLE_FIELDS = frozenset(
    {
        "generation_status",
        "generation_error",
        "derived_artifact_id",
        "status_updated_at",
        "is_public",
        "shared_at",
    }
)


class ArtifactStore:
    """Small repository over the ``artifacts`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is not None:
            return self._session_maker
        from app.database import async_session_maker

        return async_session_maker

    async def insert(self, **fields: Any) -> int:
        """Insert a row and return its id."""
        fields.setdefault("created_at", datetime.now(UTC))
        async with self.session_maker() as db:
            artifact = Artifact(**fields)
            db.add(artifact)
            await db.commit()
            await db.refresh(artifact)
            return artifact.id

    async def get(self, artifact_id: int) -> Artifact | None:
        async with self.session_maker() as db:
            result = await db.execute(select(Artifact).where(Artifact.id == artifact_id))
            return result.scalar_one_or_none()

    async def patch(self, artifact_id: int, **fields: Any) -> bool:
        """Apply an unconditional update. Returns False if the row is gone."""
        return await self._update(artifact_id, None, fields)

    async def compare_and_set(
        self,
        artifact_id: int,
        expected: dict[str, Any],
        **fields: Any,
    ) -> bool:
        """Update the row only if every ``expected`` column currently matches.

        A value of ``None`` in ``expected`` means the column must be NULL.
        Returns True if exactly this call applied the update.
        """
        return await self._update(artifact_id, expected, fields)

    async def _update(
        self,
        artifact_id: int,
        expected: dict[str, Any] | None,
        fields: dict[str, Any],
    ) -> bool:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update immutable artifact fields: {sorted(unknown)}")

        stmt = update(Artifact).where(Artifact.id == artifact_id)
        for column, value in (expected or {}).items():
            attr = getattr(Artifact, column)
            stmt = stmt.where(attr.is_(None) if value is None else attr == value)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        async with self.session_maker() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount == 1

    async def delete(self, artifact_id: int) -> bool:
        """Delete a row. Returns False if it did not exist."""
        async with self.session_maker() as db:
            result = await db.execute(delete(Artifact).where(Artifact.id == artifact_id))
            await db.commit()
            return result.rowcount == 1

    async def find_derived_for(self, source_artifact_id: int) -> list[Artifact]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Artifact)
                .where(
                    Artifact.kind == ArtifactKind.DERIVED.value,
                    Artifact.source_artifact_id == source_artifact_id,
                )
                .order_by(Artifact.id)
            )
            return list(result.scalars().all())

    async def query(
        self,
        kind: ArtifactKind | None = None,
        public_only: bool = False,
        status: GenerationStatus | str | None = None,
        status_updated_before: datetime | None = None,
        created_before: datetime | None = None,
        newest_first: bool = True,
        offset: int = 0,
        limit: int | None = None,
    ) -> Sequence[Artifact]:
        """List artifacts matching the given filters."""
        stmt = self._filtered(
            select(Artifact),
            kind=kind,
            public_only=public_only,
            status=status,
            status_updated_before=status_updated_before,
            created_before=created_before,
        )
        if newest_first:
            stmt = stmt.order_by(Artifact.created_at.desc(), Artifact.id.desc())
        else:
            stmt = stmt.order_by(Artifact.created_at.asc(), Artifact.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_maker() as db:
            result = await db.execute(stmt)
            return result.scalars().all()

    async def count(
        self,
        kind: ArtifactKind | None = None,
        public_only: bool = False,
        status: GenerationStatus | str | None = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count(Artifact.id)),
            kind=kind,
            public_only=public_only,
            status=status,
        )
        async with self.session_maker() as db:
            return await db.scalar(stmt) or 0

    @staticmethod
    def _filtered(
        stmt,
        kind: ArtifactKind | None = None,
        public_only: bool = False,
        status: GenerationStatus | str | None = None,
        status_updated_before: datetime | None = None,
        created_before: datetime | None = None,
    ):
        if kind is not None:
            stmt = stmt.where(Artifact.kind == ArtifactKind(kind).value)
        if public_only:
            stmt = stmt.where(
                Artifact.kind == ArtifactKind.DERIVED.value,
                Artifact.is_public.is_(True),
            )
        if status is not None:
            stmt = stmt.where(Artifact.generation_status == GenerationStatus(status).value)
        if status_updated_before is not None:
            stmt = stmt.where(Artifact.status_updated_at < status_updated_before)
        if created_before is not None:
            stmt = stmt.where(Artifact.created_at < created_before)
        return stmt


# Global instance
artifact_store = ArtifactStore()
