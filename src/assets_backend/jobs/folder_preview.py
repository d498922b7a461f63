from __future__ import annotations

import logging

from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.config import settings
from assets_backend.jobs.queue import JobQueue
from assets_backend.models_library import Asset, Folder
from assets_backend.services import preview_service

logger = logging.getLogger(__name__)


async def generate_folder_preview(jobs: JobQueue, session: AsyncSession, folder_id: int) -> None:
    """Explicit pin if it still resolves, otherwise the newest-images heuristic."""
    folder = await session.get(Folder, folder_id)
    if folder is None:
        return

    candidates: list[Asset] | None = None
    pinned = await preview_service.resolve_pinned_asset(session, folder)
    if pinned is not None:
        candidates = [pinned]
    elif folder.pinned_preview_asset_id is not None:
        logger.info(
            "library:preview-pin-dropped folder_id=%s asset_id=%s",
            folder_id,
            folder.pinned_preview_asset_id,
        )
        folder.pinned_preview_asset_id = None

    max_items = max(1, settings.library_preview_max_items)
    previews = await preview_service.ensure_preview_assets(
        session,
        storage=jobs.storage,
        encoder=jobs.encoder,
        folder=folder,
        limit=max_items,
        size=settings.library_preview_thumb_size,
        quality=settings.library_preview_thumb_quality,
        candidates=candidates,
    )

    folder.preview_asset_ids = [p.asset.id for p in previews][:max_items]
    # Quiet write: this job is itself triggered by folder/asset events.
    session.add(folder)
    await session.commit()

    logger.info(
        "library:preview-updated folder_id=%s asset_ids=%s count=%s pinned=%s",
        folder_id,
        folder.preview_asset_ids,
        len(previews),
        pinned is not None,
    )
