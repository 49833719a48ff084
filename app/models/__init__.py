"""Database models package."""

from app.models.artifact import Artifact, ArtifactKind, GenerationStatus

__all__ = ["Artifact", "ArtifactKind", "GenerationStatus"]
