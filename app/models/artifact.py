"""Artifact model for original photos and their generated counterparts."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ArtifactKind(str, Enum):
    """What an artifact row holds."""

    ORIGINAL = "original"
    DERIVED = "derived"


class GenerationStatus(str, Enum):
    """Generation status of an original artifact."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Artifact(Base):
    """A stored image: a user submission or the output of a generation."""

    __tablename__ = "artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Blob in the blob store; never changes after insert
    blob_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="image/png")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Originals only
    generation_status: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    generation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    derived_artifact_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Derived only
    source_artifact_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    is_public: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )
    shared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_artifact_created", "created_at"),
        Index("idx_artifact_public", "is_public", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Artifact(id={self.id}, kind='{self.kind}', "
            f"status='{self.generation_status}')>"
        )

    @property
    def is_original(self) -> bool:
        return self.kind == ArtifactKind.ORIGINAL.value

    @property
    def is_derived(self) -> bool:
        return self.kind == ArtifactKind.DERIVED.value

    @property
    def is_finished(self) -> bool:
        """Check if the generation has reached a terminal state."""
        return self.generation_status in (
            GenerationStatus.COMPLETED.value,
            GenerationStatus.FAILED.value,
        )
