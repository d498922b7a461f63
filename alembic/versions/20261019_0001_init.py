"""init schema (users + access tokens + folder library)

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("access_tokens"):
        op.create_table(
            "access_tokens",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("name", sa.String(length=50), nullable=True),
            sa.Column("token_hash", sa.String(length=64), nullable=False),
            sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_access_tokens_user_id", "access_tokens", ["user_id"], unique=False)
        op.create_index(
            "ix_access_tokens_token_hash", "access_tokens", ["token_hash"], unique=True
        )
        op.create_index(
            "ix_access_tokens_created_at", "access_tokens", ["created_at"], unique=False
        )

    if not _table_exists("folders"):
        op.create_table(
            "folders",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("uuid", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=255), nullable=False),
            sa.Column("parent_id", sa.Integer(), sa.ForeignKey("folders.id"), nullable=True),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column(
                "access_level",
                sa.String(length=16),
                nullable=False,
                server_default=sa.text("'private'"),
            ),
            sa.Column("preview_asset_ids", sa.JSON(), nullable=True),
            sa.Column("depth", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("files_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("folders_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            # Root rows have parent_id NULL, which most databases treat as distinct here.
            sa.UniqueConstraint(
                "parent_id", "owner_id", "slug", name="uq_folders_parent_owner_slug"
            ),
        )
        op.create_index("ix_folders_uuid", "folders", ["uuid"], unique=True)
        op.create_index("ix_folders_name", "folders", ["name"], unique=False)
        op.create_index("ix_folders_parent_id", "folders", ["parent_id"], unique=False)
        op.create_index("ix_folders_owner_id", "folders", ["owner_id"], unique=False)
        op.create_index("ix_folders_owner_id_depth", "folders", ["owner_id", "depth"], unique=False)
        op.create_index("ix_folders_created_at", "folders", ["created_at"], unique=False)
        op.create_index("ix_folders_updated_at", "folders", ["updated_at"], unique=False)
        op.create_index("ix_folders_deleted_at", "folders", ["deleted_at"], unique=False)

    if not _table_exists("assets"):
        op.create_table(
            "assets",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("path", sa.String(length=1024), nullable=False),
            sa.Column("folder_id", sa.Integer(), sa.ForeignKey("folders.id"), nullable=True),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("mime", sa.String(length=128), nullable=False),
            sa.Column("width", sa.Integer(), nullable=True),
            sa.Column("height", sa.Integer(), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("checksum", sa.String(length=64), nullable=False),
            sa.Column("generated_thumbs", sa.JSON(), nullable=True),
            sa.Column("original_name", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("path", name="uq_assets_path"),
        )
        op.create_index("ix_assets_folder_id", "assets", ["folder_id"], unique=False)
        op.create_index("ix_assets_owner_id", "assets", ["owner_id"], unique=False)
        op.create_index(
            "ix_assets_folder_id_owner_id", "assets", ["folder_id", "owner_id"], unique=False
        )
        op.create_index("ix_assets_mime", "assets", ["mime"], unique=False)
        op.create_index("ix_assets_checksum", "assets", ["checksum"], unique=False)
        op.create_index("ix_assets_created_at", "assets", ["created_at"], unique=False)
        op.create_index("ix_assets_updated_at", "assets", ["updated_at"], unique=False)

    if not _table_exists("folder_tokens"):
        op.create_table(
            "folder_tokens",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("folder_id", sa.Integer(), sa.ForeignKey("folders.id"), nullable=False),
            sa.Column("token", sa.String(length=64), nullable=False),
            sa.Column(
                "can_create_subfolders",
                sa.Boolean(),
                nullable=False,
                server_default=sa.text("true"),
            ),
            sa.Column("can_upload", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("token", name="uq_folder_tokens_token"),
        )
        op.create_index("ix_folder_tokens_folder_id", "folder_tokens", ["folder_id"], unique=False)
        op.create_index(
            "ix_folder_tokens_created_at", "folder_tokens", ["created_at"], unique=False
        )


def downgrade() -> None:
    op.drop_table("folder_tokens")
    op.drop_table("assets")
    op.drop_table("folders")
    op.drop_table("access_tokens")
    op.drop_table("users")
