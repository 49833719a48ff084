"""create artifacts table

Revision ID: 3c9e5a1d7b20
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c9e5a1d7b20"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "artifacts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("blob_ref", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("generation_status", sa.String(length=20), nullable=True),
        sa.Column("generation_error", sa.Text(), nullable=True),
        sa.Column("derived_artifact_id", sa.Integer(), nullable=True),
        sa.Column("status_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_artifact_id", sa.Integer(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("shared_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_artifacts_kind", "artifacts", ["kind"])
    op.create_index("ix_artifacts_generation_status", "artifacts", ["generation_status"])
    op.create_index("ix_artifacts_source_artifact_id", "artifacts", ["source_artifact_id"])
    op.create_index("idx_artifact_created", "artifacts", ["created_at"])
    op.create_index("idx_artifact_public", "artifacts", ["is_public", "created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_artifact_public", table_name="artifacts")
    op.drop_index("idx_artifact_created", table_name="artifacts")
    op.drop_index("ix_artifacts_source_artifact_id", table_name="artifacts")
    op.drop_index("ix_artifacts_generation_status", table_name="artifacts")
    op.drop_index("ix_artifacts_kind", table_name="artifacts")
    op.drop_table("artifacts")
