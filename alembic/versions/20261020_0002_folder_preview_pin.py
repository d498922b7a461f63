"""folders.pinned_preview_asset_id, unique root slugs

Revision ID: 20261020_0002
Revises: 20261019_0001
Create Date: 2026-10-20 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261020_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # No FK: a pin may outlive its asset until the next preview run clears it.
    op.add_column(
        "folders",
        sa.Column("pinned_preview_asset_id", sa.String(length=36), nullable=True),
    )
    op.create_index(
        "uq_folders_root_owner_slug",
        "folders",
        ["owner_id", "slug"],
        unique=True,
        sqlite_where=sa.text("parent_id IS NULL"),
        postgresql_where=sa.text("parent_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_folders_root_owner_slug", table_name="folders")
    with op.batch_alter_table("folders") as batch_op:
        batch_op.drop_column("pinned_preview_asset_id")
