from __future__ import annotations

from pathlib import PurePosixPath
from typing import Protocol

from assets_backend.config import settings


class ObjectStorage(Protocol):
    async def put_bytes(
        self, key: str, data: bytes, *, content_type: str | None = None
    ) -> None: ...

    async def get_bytes(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def url(self, key: str) -> str: ...


def build_asset_storage_key(*, owner_id: int, filename: str) -> str:
    # Pinned layout: {owner_id}/{filename}; the same key works for S3 providers.
    return f"{owner_id}/{filename}"


def build_thumbnail_storage_key(*, source_key: str, size: int, fmt: str) -> str:
    """``thumbnails/<source dir>/<source stem>_<size>.<fmt>``."""
    source = PurePosixPath(source_key)
    parts = ["thumbnails"]
    parts.extend(p for p in source.parent.parts if p not in {"", ".", "/"})
    parts.append(f"{source.stem}_{size}.{fmt}")
    return "/".join(parts)


def get_object_storage() -> ObjectStorage:
    # Default to local storage when S3 config is incomplete.
    if settings.s3_configured():
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(
        root_dir=settings.storage_local_dir,
        public_base_url=settings.storage_public_base_url,
    )
