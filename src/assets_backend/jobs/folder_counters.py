from __future__ import annotations

import logging
from typing import Any, cast

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.jobs.queue import FOLDER_COUNTERS, JobQueue
from assets_backend.models_library import Asset, Folder

logger = logging.getLogger(__name__)


async def count_direct_assets(session: AsyncSession, folder_id: int) -> int:
    stmt = select(func.count()).select_from(Asset).where(Asset.folder_id == folder_id)
    return int((await session.exec(stmt)).one())


async def count_active_child_folders(session: AsyncSession, folder_id: int) -> int:
    stmt = (
        select(func.count())
        .select_from(Folder)
        .where(Folder.parent_id == folder_id)
        .where(cast(Any, Folder.deleted_at).is_(None))
    )
    return int((await session.exec(stmt)).one())


async def update_folder_counters(jobs: JobQueue, session: AsyncSession, folder_id: int) -> None:
    """Recount direct files/subfolders of one folder, then hand off to its parent.

    Counts are re-queried right before the write; a stale or duplicate run
    converges to the same values.
    """
    folder = await session.get(Folder, folder_id)
    if folder is None:
        return

    folder.files_count = await count_direct_assets(session, folder_id)
    folder.folders_count = await count_active_child_folders(session, folder_id)
    parent_id = folder.parent_id
    # Quiet write: counters are a cache, no side effects are scheduled for them.
    session.add(folder)
    await session.commit()

    if parent_id is not None:
        jobs.schedule(FOLDER_COUNTERS, parent_id)

    logger.info(
        "library:counters-updated folder_id=%s files_count=%s folders_count=%s",
        folder_id,
        folder.files_count,
        folder.folders_count,
    )
