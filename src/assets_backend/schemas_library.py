from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

AccessLevel = Literal["private", "token", "public"]


class FolderCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: int | None = Field(default=None, ge=1)
    slug: str | None = Field(default=None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def _name_not_blank(self) -> "FolderCreateRequest":
        if self.name.strip() == "":
            raise ValueError("name is required")
        return self


class FolderRenameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class FolderMoveRequest(BaseModel):
    # null moves the folder to the root.
    parent_id: int | None = Field(default=None, ge=1)


class FolderTokenCreateRequest(BaseModel):
    can_create_subfolders: bool = True
    can_upload: bool = True
    expires_at: datetime | None = None


class Breadcrumb(BaseModel):
    id: int
    uuid: str
    name: str
    slug: str


class Folder(BaseModel):
    id: int
    uuid: str
    name: str
    slug: str
    parent_id: int | None = None
    owner_id: int
    access_level: AccessLevel = "private"
    depth: int
    files_count: int
    folders_count: int
    preview_asset_ids: list[str] = Field(default_factory=list)
    pinned_preview_asset_id: str | None = None
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class FolderList(BaseModel):
    items: list[Folder]
    total: int
    page: int
    per_page: int


class Asset(BaseModel):
    id: str
    folder_id: int | None = None
    owner_id: int
    path: str
    url: str
    mime: str
    width: int | None = None
    height: int | None = None
    size_bytes: int
    checksum: str
    original_name: str | None = None
    thumbnails: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class AssetList(BaseModel):
    items: list[Asset]
    total: int
    page: int
    per_page: int


class AssetMoveRequest(BaseModel):
    folder_id: int | None = Field(default=None, ge=1)


class FolderChildren(BaseModel):
    folders: FolderList
    assets: AssetList


class FolderPreview(BaseModel):
    folder_id: int
    items: list[Asset]


class FolderToken(BaseModel):
    id: int
    folder_id: int
    token: str
    can_create_subfolders: bool
    can_upload: bool
    expires_at: datetime | None = None
    created_at: datetime


class StatusResponse(BaseModel):
    status: str
