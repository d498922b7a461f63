from __future__ import annotations

from typing import Annotated, Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Response,
    UploadFile,
    status,
)
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.config import settings
from assets_backend.db import get_session
from assets_backend.deps import get_current_user, get_job_queue, get_storage, require_user_id
from assets_backend.integrations.storage.object_storage import ObjectStorage
from assets_backend.jobs.queue import JobQueue, dispatch_jobs
from assets_backend.library_errors import PayloadTooLargeError
from assets_backend.models import User
from assets_backend.models_library import Asset as AssetModel
from assets_backend.schemas_library import Asset as AssetSchema, AssetList, AssetMoveRequest
from assets_backend.services import assets_service

router = APIRouter(tags=["assets"])


async def _read_upload_file_limited(*, file: UploadFile, max_bytes: int) -> bytes:
    # Read the file in chunks and hard-stop once size exceeds max_bytes.
    buf = bytearray()
    chunk_size = 1024 * 1024
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise PayloadTooLargeError("file too large", details={"max_bytes": max_bytes})
    return bytes(buf)


async def asset_to_schema(storage: ObjectStorage, asset: AssetModel) -> AssetSchema:
    thumb_urls = await assets_service.get_thumbnail_urls(storage, asset)
    thumbnails: dict[str, Any] = {}
    for key, thumb in (asset.generated_thumbs or {}).items():
        if isinstance(thumb, dict):
            thumbnails[key] = {**thumb, "url": thumb_urls.get(key)}

    return AssetSchema(
        id=asset.id,
        folder_id=asset.folder_id,
        owner_id=asset.owner_id,
        path=asset.path,
        url=await assets_service.get_asset_url(storage, asset),
        mime=asset.mime,
        width=asset.width,
        height=asset.height,
        size_bytes=asset.size_bytes,
        checksum=asset.checksum,
        original_name=asset.original_name,
        thumbnails=thumbnails,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
    )


@router.post("/assets", response_model=AssetSchema, status_code=status.HTTP_201_CREATED)
async def upload_asset(
    background_tasks: BackgroundTasks,
    file: Annotated[UploadFile, File()],
    folder_id: Annotated[int | None, Form(ge=1)] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
    jobs: JobQueue = Depends(get_job_queue),
) -> AssetSchema:
    owner_id = require_user_id(user)

    data = await _read_upload_file_limited(file=file, max_bytes=int(settings.assets_max_size_bytes))
    asset = await assets_service.upload_asset(
        session,
        storage,
        jobs,
        owner_id=owner_id,
        folder_id=folder_id,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
    )
    out = await asset_to_schema(storage, asset)
    await dispatch_jobs(jobs, background_tasks)
    return out


@router.get("/assets", response_model=AssetList)
async def list_assets(
    folder_id: Annotated[int | None, Query(ge=1)] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=100)] = 50,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> AssetList:
    owner_id = require_user_id(user)

    rows, total = await assets_service.list_assets(
        session, owner_id=owner_id, folder_id=folder_id, page=page, per_page=per_page
    )
    items = [await asset_to_schema(storage, a) for a in rows]
    return AssetList(items=items, total=total, page=page, per_page=per_page)


@router.patch("/assets/{asset_id}", response_model=AssetSchema)
async def move_asset(
    asset_id: str,
    payload: AssetMoveRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
    jobs: JobQueue = Depends(get_job_queue),
) -> AssetSchema:
    owner_id = require_user_id(user)

    asset = await assets_service.move_asset(
        session, jobs, owner_id=owner_id, asset_id=asset_id, folder_id=payload.folder_id
    )
    out = await asset_to_schema(storage, asset)
    await dispatch_jobs(jobs, background_tasks)
    return out


@router.delete("/assets/{asset_id}")
async def delete_asset(
    asset_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
    jobs: JobQueue = Depends(get_job_queue),
) -> Response:
    owner_id = require_user_id(user)

    await assets_service.delete_asset(session, storage, jobs, owner_id=owner_id, asset_id=asset_id)
    await dispatch_jobs(jobs, background_tasks)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
