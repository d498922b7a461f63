from __future__ import annotations

import hashlib
import logging
import mimetypes
import re
import secrets
import uuid
from pathlib import PurePosixPath
from typing import Any, cast

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.config import settings
from assets_backend.domain.folder_tree import slugify
from assets_backend.integrations.imaging import probe_image
from assets_backend.integrations.storage.object_storage import (
    ObjectStorage,
    build_asset_storage_key,
)
from assets_backend.jobs.queue import FOLDER_COUNTERS, FOLDER_PREVIEW, JobQueue
from assets_backend.library_errors import (
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from assets_backend.models_library import Asset, utc_now
from assets_backend.services.folders_service import clamp_page, get_folder_for_owner

logger = logging.getLogger(__name__)

_PATH_ATTEMPTS = 10
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")


def _normalize_mime(value: str | None) -> str:
    mime = (value or "").split(";", 1)[0].strip().lower()
    return mime or "application/octet-stream"


def _extension_for(filename: str | None, mime: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    if _EXTENSION_RE.match(suffix):
        return suffix
    guessed = mimetypes.guess_extension(mime) or ""
    return guessed.lstrip(".") or "bin"


def _stem_for(filename: str | None) -> str:
    return slugify(PurePosixPath(filename or "").stem) or "asset"


async def _allocate_path(storage: ObjectStorage, *, owner_id: int, filename: str | None, mime: str) -> str:
    stem = _stem_for(filename)
    ext = _extension_for(filename, mime)
    for _ in range(_PATH_ATTEMPTS):
        key = build_asset_storage_key(
            owner_id=owner_id, filename=f"{stem}-{secrets.token_hex(4)}.{ext}"
        )
        if not await storage.exists(key):
            return key
    raise ConflictError("could not allocate a storage path, please retry")


async def get_asset_for_owner(session: AsyncSession, *, owner_id: int, asset_id: str) -> Asset:
    asset = await session.get(Asset, asset_id)
    if asset is None or asset.owner_id != owner_id:
        raise NotFoundError("asset not found")
    return asset


async def upload_asset(
    session: AsyncSession,
    storage: ObjectStorage,
    jobs: JobQueue,
    *,
    owner_id: int,
    folder_id: int | None,
    filename: str | None,
    content_type: str | None,
    data: bytes,
) -> Asset:
    if len(data) > settings.assets_max_size_bytes:
        raise PayloadTooLargeError(
            "file too large", details={"max_bytes": settings.assets_max_size_bytes}
        )
    if not data:
        raise ValidationError("file is empty")

    if folder_id is not None:
        await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)

    info = probe_image(data)
    mime = info.mime if info is not None else _normalize_mime(content_type)
    if "php" in mime:
        raise ValidationError("file type not allowed", details={"mime": mime})

    path = await _allocate_path(storage, owner_id=owner_id, filename=filename, mime=mime)
    now = utc_now()
    asset = Asset(
        id=str(uuid.uuid4()),
        path=path,
        folder_id=folder_id,
        owner_id=owner_id,
        mime=mime,
        width=info.width if info is not None else None,
        height=info.height if info is not None else None,
        size_bytes=len(data),
        checksum=hashlib.sha256(data).hexdigest(),
        generated_thumbs={},
        original_name=PurePosixPath(filename).name[:255] if filename else None,
        created_at=now,
        updated_at=now,
    )

    # Best-effort consistency: if the DB commit fails, delete the stored object.
    try:
        session.add(asset)
        await session.flush()
        await storage.put_bytes(path, data, content_type=mime)
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except Exception:
            pass
        try:
            await storage.delete(path)
        except Exception:
            # Best-effort cleanup.
            pass
        raise

    jobs.schedule(FOLDER_COUNTERS, folder_id)
    jobs.schedule(FOLDER_PREVIEW, folder_id)

    logger.info(
        "library:asset-upload asset_id=%s owner_id=%s folder_id=%s mime=%s size_bytes=%s",
        asset.id,
        owner_id,
        folder_id,
        mime,
        asset.size_bytes,
    )
    return asset


async def move_asset(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    asset_id: str,
    folder_id: int | None,
) -> Asset:
    asset = await get_asset_for_owner(session, owner_id=owner_id, asset_id=asset_id)
    if folder_id is not None:
        await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)

    old_folder_id = asset.folder_id
    if old_folder_id == folder_id:
        return asset

    asset.folder_id = folder_id
    asset.updated_at = utc_now()
    session.add(asset)
    try:
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except Exception:
            pass
        raise

    for target in (old_folder_id, folder_id):
        jobs.schedule(FOLDER_COUNTERS, target)
        jobs.schedule(FOLDER_PREVIEW, target)

    logger.info(
        "library:asset-move asset_id=%s owner_id=%s from_folder_id=%s to_folder_id=%s",
        asset.id,
        owner_id,
        old_folder_id,
        folder_id,
    )
    return asset


async def delete_asset(
    session: AsyncSession,
    storage: ObjectStorage,
    jobs: JobQueue,
    *,
    owner_id: int,
    asset_id: str,
) -> None:
    asset = await get_asset_for_owner(session, owner_id=owner_id, asset_id=asset_id)
    folder_id = asset.folder_id
    keys = [asset.path]
    keys.extend(
        str(t["path"])
        for t in (asset.generated_thumbs or {}).values()
        if isinstance(t, dict) and t.get("path")
    )

    try:
        await session.delete(asset)
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except Exception:
            pass
        raise

    # The row is gone; leftover objects are only wasted space.
    for key in keys:
        try:
            await storage.delete(key)
        except Exception:
            logger.warning("asset object cleanup failed asset_id=%s key=%s", asset_id, key, exc_info=True)

    jobs.schedule(FOLDER_COUNTERS, folder_id)
    jobs.schedule(FOLDER_PREVIEW, folder_id)

    logger.info(
        "library:asset-delete asset_id=%s owner_id=%s folder_id=%s",
        asset_id,
        owner_id,
        folder_id,
    )


async def list_assets(
    session: AsyncSession,
    *,
    owner_id: int,
    folder_id: int | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Asset], int]:
    page, per_page = clamp_page(page, per_page)

    filters: list[Any] = [Asset.owner_id == owner_id]
    if folder_id is not None:
        filters.append(Asset.folder_id == folder_id)

    total_stmt = select(func.count()).select_from(Asset).where(*filters)
    total = int((await session.exec(total_stmt)).one())

    stmt = (
        select(Asset)
        .where(*filters)
        .order_by(cast(Any, Asset.created_at).desc(), cast(Any, Asset.id).desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    return list((await session.exec(stmt)).all()), total


async def get_asset_url(storage: ObjectStorage, asset: Asset) -> str:
    return await storage.url(asset.path)


async def get_thumbnail_urls(storage: ObjectStorage, asset: Asset) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, thumb in (asset.generated_thumbs or {}).items():
        if isinstance(thumb, dict) and thumb.get("path"):
            out[key] = await storage.url(str(thumb["path"]))
    return out
