from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.config import settings
from assets_backend.domain import folder_tree
from assets_backend.jobs.queue import FOLDER_COUNTERS, FOLDER_PREVIEW, JobQueue
from assets_backend.library_errors import ConflictError, NotFoundError, ValidationError
from assets_backend.models_library import Asset, Folder, FolderToken, utc_now
from assets_backend.services import preview_service

logger = logging.getLogger(__name__)

# Unique-constraint races on create are retried with a freshly probed slug.
_CREATE_ATTEMPTS = 3


def _clean_name(name: str | None) -> str:
    value = (name or "").strip()
    if value == "":
        raise ValidationError("name is required")
    if len(value) > 255:
        raise ValidationError("name is too long", details={"max_length": 255})
    return value


def clamp_page(page: int, per_page: int) -> tuple[int, int]:
    page = max(1, int(page))
    per_page = max(1, min(int(per_page), settings.library_children_max_per_page))
    return page, per_page


def _order_clauses(columns: dict[str, Any], id_column: Any, order_by: str, order: str) -> list[Any]:
    # Unknown fields fall back to name; id keeps pages stable between equal values.
    column = cast(Any, columns.get(order_by, columns["name"]))
    if order.lower() == "desc":
        return [column.desc(), cast(Any, id_column).desc()]
    return [column.asc(), cast(Any, id_column).asc()]


def _folder_order(order_by: str, order: str) -> list[Any]:
    columns = {"name": Folder.name, "created_at": Folder.created_at, "updated_at": Folder.updated_at}
    return _order_clauses(columns, Folder.id, order_by, order)


def _asset_order(order_by: str, order: str) -> list[Any]:
    columns = {
        "name": Asset.original_name,
        "created_at": Asset.created_at,
        "updated_at": Asset.updated_at,
    }
    return _order_clauses(columns, Asset.id, order_by, order)


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except Exception:
            pass
        raise


async def get_folder_for_owner(
    session: AsyncSession,
    *,
    owner_id: int,
    folder_id: int,
    include_deleted: bool = False,
) -> Folder:
    folder = await session.get(Folder, folder_id)
    if folder is None or folder.owner_id != owner_id:
        raise NotFoundError("folder not found")
    if folder.deleted_at is not None and not include_deleted:
        raise NotFoundError("folder not found")
    return folder


async def create_folder(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    name: str,
    parent_id: int | None = None,
    slug: str | None = None,
) -> Folder:
    name = _clean_name(name)
    if parent_id is not None:
        await get_folder_for_owner(session, owner_id=owner_id, folder_id=parent_id)

    requested_slug = folder_tree.slugify(slug) if slug is not None else None
    if slug is not None and not requested_slug:
        raise ValidationError("slug must contain letters or digits")

    folder: Folder | None = None
    for attempt in range(1, _CREATE_ATTEMPTS + 1):
        if requested_slug is not None:
            if not await folder_tree.slug_available(
                session, slug=requested_slug, parent_id=parent_id, owner_id=owner_id
            ):
                raise ConflictError("slug already taken", details={"slug": requested_slug})
            candidate = requested_slug
        else:
            candidate = await folder_tree.generate_unique_slug(
                session, name=name, parent_id=parent_id, owner_id=owner_id
            )

        now = utc_now()
        folder = Folder(
            uuid=str(uuid.uuid4()),
            name=name,
            slug=candidate,
            parent_id=parent_id,
            owner_id=owner_id,
            depth=await folder_tree.compute_depth(session, parent_id),
            preview_asset_ids=[],
            created_at=now,
            updated_at=now,
        )
        session.add(folder)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            folder = None
            logger.info(
                "folder slug race owner_id=%s parent_id=%s slug=%s attempt=%s",
                owner_id,
                parent_id,
                candidate,
                attempt,
            )
            if requested_slug is not None:
                raise ConflictError("slug already taken", details={"slug": requested_slug})
            continue
        break

    if folder is None:
        raise ConflictError("could not create folder, please retry")

    jobs.schedule(FOLDER_COUNTERS, folder.parent_id)
    jobs.schedule(FOLDER_PREVIEW, folder.id)

    logger.info(
        "library:folder-create folder_id=%s owner_id=%s parent_id=%s slug=%s",
        folder.id,
        owner_id,
        folder.parent_id,
        folder.slug,
    )
    return folder


async def rename_folder(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    folder_id: int,
    name: str,
) -> Folder:
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    name = _clean_name(name)
    if name == folder.name:
        return folder

    old_name = folder.name
    folder.slug = await folder_tree.generate_unique_slug(
        session,
        name=name,
        parent_id=folder.parent_id,
        owner_id=owner_id,
        exclude_id=folder.id,
    )
    folder.name = name
    folder.updated_at = utc_now()
    session.add(folder)
    try:
        await _commit(session)
    except IntegrityError:
        raise ConflictError("slug already taken, please retry")

    jobs.schedule(FOLDER_PREVIEW, folder.id)

    logger.info(
        "library:folder-rename folder_id=%s owner_id=%s old_name=%r slug=%s",
        folder.id,
        owner_id,
        old_name,
        folder.slug,
    )
    return folder


async def move_folder(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    folder_id: int,
    parent_id: int | None,
) -> Folder:
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    if parent_id is not None:
        await get_folder_for_owner(session, owner_id=owner_id, folder_id=parent_id)

    old_parent_id = folder.parent_id
    if old_parent_id == parent_id:
        return folder

    if folder.id is None or not await folder_tree.can_move_into(session, folder.id, parent_id):
        raise ValidationError(
            "cannot move folder into itself or its own descendant",
            details={"folder_id": folder_id, "parent_id": parent_id},
        )

    # The slug survives the move unless the new sibling scope already uses it.
    if not await folder_tree.slug_available(
        session, slug=folder.slug, parent_id=parent_id, owner_id=owner_id, exclude_id=folder.id
    ):
        folder.slug = await folder_tree.generate_unique_slug(
            session, name=folder.name, parent_id=parent_id, owner_id=owner_id, exclude_id=folder.id
        )

    folder.parent_id = parent_id
    folder.updated_at = utc_now()
    session.add(folder)
    try:
        await folder_tree.sync_depth_recursive(session, folder)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("slug already taken, please retry")

    jobs.schedule(FOLDER_COUNTERS, old_parent_id)
    jobs.schedule(FOLDER_COUNTERS, parent_id)
    jobs.schedule(FOLDER_PREVIEW, folder.id)

    logger.info(
        "library:folder-move folder_id=%s owner_id=%s from_parent_id=%s to_parent_id=%s depth=%s",
        folder.id,
        owner_id,
        old_parent_id,
        parent_id,
        folder.depth,
    )
    return folder


async def delete_folder(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    folder_id: int,
) -> Folder:
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)

    now = utc_now()
    folder.deleted_at = now
    folder.updated_at = now
    session.add(folder)
    await _commit(session)

    jobs.schedule(FOLDER_COUNTERS, folder.parent_id)
    jobs.schedule(FOLDER_PREVIEW, folder.parent_id)

    logger.info(
        "library:folder-delete folder_id=%s owner_id=%s parent_id=%s",
        folder.id,
        owner_id,
        folder.parent_id,
    )
    return folder


async def restore_folder(
    session: AsyncSession,
    jobs: JobQueue,
    *,
    owner_id: int,
    folder_id: int,
) -> Folder:
    folder = await get_folder_for_owner(
        session, owner_id=owner_id, folder_id=folder_id, include_deleted=True
    )
    if folder.deleted_at is None:
        return folder

    # A newer sibling may have claimed the old slug while this one was deleted.
    folder.slug = await folder_tree.generate_unique_slug(
        session,
        name=folder.name,
        parent_id=folder.parent_id,
        owner_id=owner_id,
        exclude_id=folder.id,
    )
    folder.deleted_at = None
    folder.updated_at = utc_now()
    session.add(folder)
    try:
        await _commit(session)
    except IntegrityError:
        raise ConflictError("slug already taken, please retry")

    jobs.schedule(FOLDER_COUNTERS, folder.id)
    jobs.schedule(FOLDER_COUNTERS, folder.parent_id)
    jobs.schedule(FOLDER_PREVIEW, folder.id)
    jobs.schedule(FOLDER_PREVIEW, folder.parent_id)

    logger.info(
        "library:folder-restore folder_id=%s owner_id=%s slug=%s",
        folder.id,
        owner_id,
        folder.slug,
    )
    return folder


async def list_folders(
    session: AsyncSession,
    *,
    owner_id: int,
    parent_id: int | None = None,
    q: str | None = None,
    page: int = 1,
    per_page: int = 50,
    order_by: str = "name",
    order: str = "asc",
) -> tuple[list[Folder], int]:
    """Active folders of one level (root by default), or a name search across the tree."""
    page, per_page = clamp_page(page, per_page)

    filters: list[Any] = [
        Folder.owner_id == owner_id,
        cast(Any, Folder.deleted_at).is_(None),
    ]
    search = (q or "").strip()
    if search:
        filters.append(cast(Any, Folder.name).ilike(f"%{search}%"))
    elif parent_id is None:
        filters.append(cast(Any, Folder.parent_id).is_(None))
    else:
        filters.append(Folder.parent_id == parent_id)

    total_stmt = select(func.count()).select_from(Folder).where(*filters)
    total = int((await session.exec(total_stmt)).one())

    stmt = (
        select(Folder)
        .where(*filters)
        .order_by(*_folder_order(order_by, order))
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    return list((await session.exec(stmt)).all()), total


async def list_children(
    session: AsyncSession,
    *,
    owner_id: int,
    folder_id: int,
    page: int = 1,
    per_page: int = 50,
    order_by: str = "name",
    order: str = "asc",
) -> tuple[list[Folder], int, list[Asset], int]:
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    folders, folders_total = await list_folders(
        session,
        owner_id=owner_id,
        parent_id=folder.id,
        page=page,
        per_page=per_page,
        order_by=order_by,
        order=order,
    )

    page, per_page = clamp_page(page, per_page)
    filters: list[Any] = [Asset.owner_id == owner_id, Asset.folder_id == folder.id]
    total_stmt = select(func.count()).select_from(Asset).where(*filters)
    assets_total = int((await session.exec(total_stmt)).one())
    stmt = (
        select(Asset)
        .where(*filters)
        .order_by(*_asset_order(order_by, order))
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    assets = list((await session.exec(stmt)).all())
    return folders, folders_total, assets, assets_total


async def get_preview_assets(
    session: AsyncSession, *, owner_id: int, folder_id: int
) -> tuple[Folder, list[Asset]]:
    """Assets of ``preview_asset_ids`` in stored order; ids that no longer resolve are skipped."""
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    ids = list(folder.preview_asset_ids or [])
    if not ids:
        return folder, []

    rows = (await session.exec(select(Asset).where(cast(Any, Asset.id).in_(ids)))).all()
    by_id = {a.id: a for a in rows}
    return folder, [by_id[i] for i in ids if i in by_id]


async def toggle_preview_asset(
    session: AsyncSession,
    *,
    owner_id: int,
    folder_id: int,
    asset_id: str,
) -> Folder:
    """Pin ``asset_id`` as the only preview, or unpin it if it already is.

    No job is scheduled: after an unpin the next preview run auto-selects again.
    """
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    asset = await session.get(Asset, asset_id)
    if (
        asset is None
        or asset.owner_id != owner_id
        or not await preview_service.asset_visible_in_folder(session, folder, asset)
    ):
        raise NotFoundError("asset not found")

    if folder.pinned_preview_asset_id == asset.id:
        folder.pinned_preview_asset_id = None
        folder.preview_asset_ids = []
    else:
        folder.pinned_preview_asset_id = asset.id
        folder.preview_asset_ids = [asset.id]
    folder.updated_at = utc_now()
    session.add(folder)
    await _commit(session)
    return folder


def new_folder_token_value() -> str:
    return hashlib.sha256(uuid.uuid4().hex.encode("utf-8")).hexdigest()


async def create_folder_token(
    session: AsyncSession,
    *,
    owner_id: int,
    folder_id: int,
    can_create_subfolders: bool = True,
    can_upload: bool = True,
    expires_at: datetime | None = None,
) -> FolderToken:
    folder = await get_folder_for_owner(session, owner_id=owner_id, folder_id=folder_id)
    if folder.id is None:
        raise NotFoundError("folder not found")

    now = utc_now()
    token = FolderToken(
        folder_id=folder.id,
        token=new_folder_token_value(),
        can_create_subfolders=can_create_subfolders,
        can_upload=can_upload,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    session.add(token)
    await _commit(session)

    logger.info(
        "library:folder-token-create folder_id=%s owner_id=%s token_id=%s",
        folder.id,
        owner_id,
        token.id,
    )
    return token
