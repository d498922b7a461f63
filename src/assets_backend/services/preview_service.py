from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, cast

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from starlette.concurrency import run_in_threadpool

from assets_backend.integrations.imaging import ThumbnailEncoder
from assets_backend.integrations.storage.object_storage import (
    ObjectStorage,
    build_thumbnail_storage_key,
)
from assets_backend.models_library import Asset, Folder, utc_now

logger = logging.getLogger(__name__)


class ThumbnailSourceMissingError(RuntimeError):
    pass


@dataclass
class PreviewAsset:
    asset: Asset
    thumb: dict[str, Any] | None


def thumbnail_variant_key(fmt: str, size: int) -> str:
    return f"{fmt}_{size}x{size}"


def _newest_images_stmt():  # type: ignore[no-untyped-def]
    return (
        select(Asset)
        .where(cast(Any, Asset.mime).like("image/%"))
        .order_by(cast(Any, Asset.created_at).desc(), cast(Any, Asset.id).desc())
    )


async def collect_preview_candidates(
    session: AsyncSession, folder: Folder, limit: int
) -> list[Asset]:
    """Newest images of the folder, topped up from its direct (active) children."""
    if limit <= 0 or folder.id is None:
        return []

    primary = list(
        (
            await session.exec(_newest_images_stmt().where(Asset.folder_id == folder.id).limit(limit))
        ).all()
    )
    if len(primary) >= limit:
        return primary[:limit]

    child_ids = list(
        (
            await session.exec(
                select(Folder.id)
                .where(Folder.parent_id == folder.id)
                .where(cast(Any, Folder.deleted_at).is_(None))
            )
        ).all()
    )
    if not child_ids:
        return primary

    fallback = (
        await session.exec(
            _newest_images_stmt()
            .where(cast(Any, Asset.folder_id).in_(child_ids))
            .limit(limit - len(primary))
        )
    ).all()
    return (primary + list(fallback))[:limit]


async def asset_visible_in_folder(session: AsyncSession, folder: Folder, asset: Asset) -> bool:
    """True when ``asset`` sits in ``folder`` or in one of its direct active children."""
    if asset.folder_id is None or asset.owner_id != folder.owner_id:
        return False
    if asset.folder_id == folder.id:
        return True
    container = await session.get(Folder, asset.folder_id)
    return (
        container is not None
        and container.parent_id == folder.id
        and container.deleted_at is None
    )


async def resolve_pinned_asset(session: AsyncSession, folder: Folder) -> Asset | None:
    if folder.pinned_preview_asset_id is None:
        return None
    asset = await session.get(Asset, folder.pinned_preview_asset_id)
    if asset is None or not await asset_visible_in_folder(session, folder, asset):
        return None
    return asset


async def generate_thumbnail(
    *,
    storage: ObjectStorage,
    encoder: ThumbnailEncoder,
    asset: Asset,
    size: int,
    quality: int,
) -> dict[str, Any]:
    if not await storage.exists(asset.path):
        raise ThumbnailSourceMissingError(f"asset source not found: {asset.path}")

    source = await storage.get_bytes(asset.path)
    # Encoding is CPU bound; keep it off the event loop.
    data, width, height = await run_in_threadpool(encoder.encode, source, size, quality)

    thumb_path = build_thumbnail_storage_key(source_key=asset.path, size=size, fmt=encoder.format)
    await storage.put_bytes(thumb_path, data, content_type=f"image/{encoder.format}")
    return {
        "path": thumb_path,
        "width": width,
        "height": height,
        "quality": quality,
        "format": encoder.format,
    }


async def ensure_preview_assets(
    session: AsyncSession,
    *,
    storage: ObjectStorage,
    encoder: ThumbnailEncoder,
    folder: Folder,
    limit: int,
    size: int,
    quality: int,
    candidates: list[Asset] | None = None,
) -> list[PreviewAsset]:
    """Pick preview candidates (unless given) and make sure each has a thumbnail.

    A candidate whose thumbnail cannot be produced stays in the result with
    ``thumb=None``; one bad asset never aborts the whole folder.
    """
    key = thumbnail_variant_key(encoder.format, size)
    out: list[PreviewAsset] = []

    if candidates is None:
        candidates = await collect_preview_candidates(session, folder, limit)

    for asset in candidates[:limit]:
        thumbs = dict(asset.generated_thumbs or {})
        if key not in thumbs:
            try:
                thumbs[key] = await generate_thumbnail(
                    storage=storage, encoder=encoder, asset=asset, size=size, quality=quality
                )
            except Exception:
                logger.warning(
                    "preview thumbnail failed asset_id=%s folder_id=%s",
                    asset.id,
                    folder.id,
                    exc_info=True,
                )
            else:
                # Quiet write: a new thumbnail must not re-trigger folder jobs.
                asset.generated_thumbs = thumbs
                asset.updated_at = utc_now()
                session.add(asset)

        out.append(PreviewAsset(asset=asset, thumb=thumbs.get(key)))

    return out
