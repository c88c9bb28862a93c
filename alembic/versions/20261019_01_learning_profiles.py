"""Learning profile persistence schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_learning_profiles"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "learning_profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("storage_key", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=200), nullable=False),
        sa.Column("personality", sa.JSON(), nullable=True),
        sa.Column("momentum", sa.JSON(), nullable=True),
        sa.Column("cognitive_load", sa.JSON(), nullable=True),
        sa.Column("motivation", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("observation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_learning_profiles_storage_key", "learning_profiles", ["storage_key"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_learning_profiles_storage_key", table_name="learning_profiles")
    op.drop_table("learning_profiles")
