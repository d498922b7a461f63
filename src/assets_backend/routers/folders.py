from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.db import get_session
from assets_backend.deps import get_current_user, get_job_queue, get_storage, require_user_id
from assets_backend.domain import folder_tree
from assets_backend.integrations.storage.object_storage import ObjectStorage
from assets_backend.jobs.queue import JobQueue, dispatch_jobs
from assets_backend.models import User
from assets_backend.models_library import Folder as FolderModel
from assets_backend.routers.assets import asset_to_schema
from assets_backend.schemas_library import (
    AssetList,
    Breadcrumb,
    Folder as FolderSchema,
    FolderChildren,
    FolderCreateRequest,
    FolderList,
    FolderMoveRequest,
    FolderPreview,
    FolderRenameRequest,
    FolderToken as FolderTokenSchema,
    FolderTokenCreateRequest,
    StatusResponse,
)
from assets_backend.services import folders_service

router = APIRouter(tags=["folders"])

PerPage = Annotated[int, Query(ge=1, le=100)]


async def _to_schema(
    session: AsyncSession, folder: FolderModel, *, with_breadcrumbs: bool = True
) -> FolderSchema:
    if folder.id is None:
        raise RuntimeError("folder missing id")
    crumbs = await folder_tree.breadcrumbs(session, folder) if with_breadcrumbs else []
    return FolderSchema(
        id=folder.id,
        uuid=folder.uuid,
        name=folder.name,
        slug=folder.slug,
        parent_id=folder.parent_id,
        owner_id=folder.owner_id,
        access_level=folder.access_level,  # type: ignore[arg-type]
        depth=folder.depth,
        files_count=folder.files_count,
        folders_count=folder.folders_count,
        preview_asset_ids=list(folder.preview_asset_ids or []),
        pinned_preview_asset_id=folder.pinned_preview_asset_id,
        breadcrumbs=[Breadcrumb.model_validate(c) for c in crumbs],
        created_at=folder.created_at,
        updated_at=folder.updated_at,
        deleted_at=folder.deleted_at,
    )


async def _settle_and_render(
    session: AsyncSession,
    jobs: JobQueue,
    background_tasks: BackgroundTasks,
    folder: FolderModel,
) -> FolderSchema:
    await dispatch_jobs(jobs, background_tasks)
    # Inline jobs write through their own sessions; reload what they may have changed.
    # With JOBS_ASYNC the drain runs after the response, so counters and previews
    # here are the values from before this request's jobs.
    await session.refresh(folder)
    return await _to_schema(session, folder)


@router.get("/folders", response_model=FolderList)
async def list_folders(
    parent_id: Annotated[int | None, Query(ge=1)] = None,
    q: Annotated[str | None, Query(max_length=255)] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: PerPage = 50,
    order_by: Annotated[str, Query(max_length=32)] = "name",
    order: Annotated[Literal["asc", "desc"], Query()] = "asc",
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> FolderList:
    owner_id = require_user_id(user)

    rows, total = await folders_service.list_folders(
        session,
        owner_id=owner_id,
        parent_id=parent_id,
        q=q,
        page=page,
        per_page=per_page,
        order_by=order_by,
        order=order,
    )
    items = [await _to_schema(session, f, with_breadcrumbs=False) for f in rows]
    return FolderList(items=items, total=total, page=page, per_page=per_page)


@router.post("/folders", response_model=FolderSchema, status_code=status.HTTP_201_CREATED)
async def create_folder(
    payload: FolderCreateRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    jobs: JobQueue = Depends(get_job_queue),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.create_folder(
        session,
        jobs,
        owner_id=owner_id,
        name=payload.name,
        parent_id=payload.parent_id,
        slug=payload.slug,
    )
    return await _settle_and_render(session, jobs, background_tasks, folder)


@router.get("/folders/{folder_id}", response_model=FolderSchema)
async def get_folder(
    folder_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.get_folder_for_owner(
        session, owner_id=owner_id, folder_id=folder_id
    )
    return await _to_schema(session, folder)


@router.patch("/folders/{folder_id}", response_model=FolderSchema)
async def rename_folder(
    folder_id: int,
    payload: FolderRenameRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    jobs: JobQueue = Depends(get_job_queue),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.rename_folder(
        session, jobs, owner_id=owner_id, folder_id=folder_id, name=payload.name
    )
    return await _settle_and_render(session, jobs, background_tasks, folder)


@router.post("/folders/{folder_id}/move", response_model=FolderSchema)
async def move_folder(
    folder_id: int,
    payload: FolderMoveRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    jobs: JobQueue = Depends(get_job_queue),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.move_folder(
        session, jobs, owner_id=owner_id, folder_id=folder_id, parent_id=payload.parent_id
    )
    return await _settle_and_render(session, jobs, background_tasks, folder)


@router.delete("/folders/{folder_id}", response_model=StatusResponse)
async def delete_folder(
    folder_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    jobs: JobQueue = Depends(get_job_queue),
) -> StatusResponse:
    owner_id = require_user_id(user)

    await folders_service.delete_folder(session, jobs, owner_id=owner_id, folder_id=folder_id)
    await dispatch_jobs(jobs, background_tasks)
    return StatusResponse(status="deleted")


@router.post("/folders/{folder_id}/restore", response_model=FolderSchema)
async def restore_folder(
    folder_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    jobs: JobQueue = Depends(get_job_queue),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.restore_folder(
        session, jobs, owner_id=owner_id, folder_id=folder_id
    )
    return await _settle_and_render(session, jobs, background_tasks, folder)


@router.get("/folders/{folder_id}/children", response_model=FolderChildren)
async def list_children(
    folder_id: int,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: PerPage = 50,
    order_by: Annotated[str, Query(max_length=32)] = "name",
    order: Annotated[Literal["asc", "desc"], Query()] = "asc",
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> FolderChildren:
    owner_id = require_user_id(user)

    folders, folders_total, assets, assets_total = await folders_service.list_children(
        session,
        owner_id=owner_id,
        folder_id=folder_id,
        page=page,
        per_page=per_page,
        order_by=order_by,
        order=order,
    )
    return FolderChildren(
        folders=FolderList(
            items=[await _to_schema(session, f, with_breadcrumbs=False) for f in folders],
            total=folders_total,
            page=page,
            per_page=per_page,
        ),
        assets=AssetList(
            items=[await asset_to_schema(storage, a) for a in assets],
            total=assets_total,
            page=page,
            per_page=per_page,
        ),
    )


@router.get("/folders/{folder_id}/preview", response_model=FolderPreview)
async def get_folder_preview(
    folder_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> FolderPreview:
    owner_id = require_user_id(user)

    folder, assets = await folders_service.get_preview_assets(
        session, owner_id=owner_id, folder_id=folder_id
    )
    return FolderPreview(
        folder_id=int(folder.id or folder_id),
        items=[await asset_to_schema(storage, a) for a in assets],
    )


@router.post(
    "/folders/{folder_id}/assets/{asset_id}/toggle-preview",
    response_model=FolderSchema,
)
async def toggle_preview_asset(
    folder_id: int,
    asset_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> FolderSchema:
    owner_id = require_user_id(user)

    folder = await folders_service.toggle_preview_asset(
        session, owner_id=owner_id, folder_id=folder_id, asset_id=asset_id
    )
    return await _to_schema(session, folder)


@router.post(
    "/folders/{folder_id}/tokens",
    response_model=FolderTokenSchema,
    status_code=status.HTTP_201_CREATED,
)
async def create_folder_token(
    folder_id: int,
    payload: FolderTokenCreateRequest | None = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> FolderTokenSchema:
    owner_id = require_user_id(user)

    options = payload or FolderTokenCreateRequest()
    token = await folders_service.create_folder_token(
        session,
        owner_id=owner_id,
        folder_id=folder_id,
        can_create_subfolders=options.can_create_subfolders,
        can_upload=options.can_upload,
        expires_at=options.expires_at,
    )
    if token.id is None:
        raise RuntimeError("folder token missing id")
    return FolderTokenSchema(
        id=token.id,
        folder_id=token.folder_id,
        token=token.token,
        can_create_subfolders=token.can_create_subfolders,
        can_upload=token.can_upload,
        expires_at=token.expires_at,
        created_at=token.created_at,
    )
