"""In-process job queue for folder consistency work.

Mutations only *schedule* jobs; nothing runs until the router hands the queue
to ``dispatch_jobs`` as its last step. Each job opens its own session, so a
job never sees the request's in-memory state, only what was committed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from sqlmodel.ext.asyncio.session import AsyncSession
from starlette.background import BackgroundTasks

from assets_backend.config import settings
from assets_backend.db import session_scope
from assets_backend.integrations.imaging import ThumbnailEncoder
from assets_backend.integrations.storage.object_storage import ObjectStorage

logger = logging.getLogger(__name__)

JobType = Literal["folder_counters", "folder_preview"]

FOLDER_COUNTERS: JobType = "folder_counters"
FOLDER_PREVIEW: JobType = "folder_preview"

JobHandler = Callable[["JobQueue", AsyncSession, int], Awaitable[None]]


def _resolve_handler(job_type: JobType) -> JobHandler:
    if job_type == FOLDER_COUNTERS:
        from assets_backend.jobs.folder_counters import update_folder_counters

        return update_folder_counters
    if job_type == FOLDER_PREVIEW:
        from assets_backend.jobs.folder_preview import generate_folder_preview

        return generate_folder_preview
    raise ValueError(f"unknown job type: {job_type}")


class JobQueue:
    def __init__(self, *, storage: ObjectStorage, encoder: ThumbnailEncoder) -> None:
        self.storage = storage
        self.encoder = encoder
        self._pending: list[tuple[JobType, int]] = []

    @property
    def pending(self) -> list[tuple[JobType, int]]:
        return list(self._pending)

    def schedule(self, job_type: JobType, folder_id: int | None) -> None:
        # Root (None) has no counters or preview of its own.
        if folder_id is None:
            return
        key = (job_type, int(folder_id))
        if key in self._pending:
            return
        self._pending.append(key)

    async def run_now(self, job_type: JobType, folder_id: int | None) -> None:
        """Run one job synchronously; follow-up jobs it schedules stay pending."""
        if folder_id is None:
            return
        handler = _resolve_handler(job_type)
        async with session_scope() as session:
            await handler(self, session, int(folder_id))

    async def drain(self) -> None:
        while self._pending:
            job_type, folder_id = self._pending.pop(0)
            try:
                await self.run_now(job_type, folder_id)
            except Exception:
                # A failed job leaves stale derived state until the next mutation reschedules it.
                logger.exception("job failed job=%s folder_id=%s", job_type, folder_id)


async def dispatch_jobs(jobs: JobQueue, background_tasks: BackgroundTasks) -> None:
    if not jobs.pending:
        return
    if settings.jobs_async:
        background_tasks.add_task(jobs.drain)
        return
    await jobs.drain()
