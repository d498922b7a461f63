from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Index, UniqueConstraint, text
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Folder(SQLModel, table=True):
    __tablename__ = "folders"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        # Soft-deleted rows keep their slug, so the constraint covers them too.
        UniqueConstraint("parent_id", "owner_id", "slug", name="uq_folders_parent_owner_slug"),
        # NULL parent_ids never collide in the constraint above, so roots need their own index.
        Index(
            "uq_folders_root_owner_slug",
            "owner_id",
            "slug",
            unique=True,
            sqlite_where=text("parent_id IS NULL"),
            postgresql_where=text("parent_id IS NULL"),
        ),
        Index("ix_folders_owner_id_depth", "owner_id", "depth"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    # External identifier; the integer id is only used for joins and ordering.
    uuid: str = Field(unique=True, index=True, min_length=36, max_length=36)

    name: str = Field(min_length=1, max_length=255, index=True)
    slug: str = Field(min_length=1, max_length=255)

    # Root folders have no parent. Depth and counters are derived, see domain.folder_tree.
    parent_id: Optional[int] = Field(default=None, index=True, foreign_key="folders.id")
    owner_id: int = Field(index=True, foreign_key="users.id")

    # "private" | "token" | "public"
    access_level: str = Field(default="private", max_length=16)

    preview_asset_ids: list[str] = Field(default_factory=list, sa_column=Column(SAJSON))
    # Owner's explicit choice; while set, the preview job keeps it instead of auto-selecting.
    pinned_preview_asset_id: Optional[str] = Field(default=None, max_length=36)
    depth: int = Field(default=0)
    files_count: int = Field(default=0)
    folders_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Asset(SQLModel, table=True):
    __tablename__ = "assets"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (Index("ix_assets_folder_id_owner_id", "folder_id", "owner_id"),)

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    path: str = Field(unique=True, max_length=1024)

    # NULL means unfiled.
    folder_id: Optional[int] = Field(default=None, index=True, foreign_key="folders.id")
    owner_id: int = Field(index=True, foreign_key="users.id")

    mime: str = Field(max_length=128, index=True)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    size_bytes: int = Field(default=0)
    checksum: str = Field(max_length=64, index=True)

    # variant key (e.g. "webp_512x512") -> {path, width, height, quality, format}
    generated_thumbs: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SAJSON))

    original_name: Optional[str] = Field(default=None, max_length=255)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class FolderToken(SQLModel, table=True):
    __tablename__ = "folder_tokens"  # pyright: ignore[reportAssignmentType]

    id: Optional[int] = Field(default=None, primary_key=True)
    folder_id: int = Field(index=True, foreign_key="folders.id")
    token: str = Field(unique=True, min_length=64, max_length=64)

    can_create_subfolders: bool = Field(default=True)
    can_upload: bool = Field(default=True)
    expires_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
