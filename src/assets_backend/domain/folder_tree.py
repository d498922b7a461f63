"""Structural invariants of the folder tree.

Nothing here schedules jobs or commits: callers own the transaction and the
side effects. Every read goes to the persisted tree (soft-deleted rows
included) so decisions are made against current state, not a cached graph.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any, cast

from sqlmodel import or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.config import settings
from assets_backend.library_errors import ConflictError
from assets_backend.models_library import Folder

FALLBACK_SLUG = "folder"

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_SLUG_CHARS.sub("-", ascii_value.lower()).strip("-")


def _parent_filter(parent_id: int | None) -> Any:
    column = cast(Any, Folder.parent_id)
    if parent_id is None:
        return column.is_(None)
    return column == parent_id


async def generate_unique_slug(
    session: AsyncSession,
    *,
    name: str,
    parent_id: int | None,
    owner_id: int,
    exclude_id: int | None = None,
) -> str:
    """First free slug among ``base``, ``base-2``, ``base-3``... in the sibling scope.

    Soft-deleted siblings still hold their slug.
    """
    base = slugify(name) or FALLBACK_SLUG

    stmt = (
        select(Folder.slug)
        .where(Folder.owner_id == owner_id)
        .where(_parent_filter(parent_id))
        .where(or_(Folder.slug == base, cast(Any, Folder.slug).like(f"{base}-%")))
    )
    if exclude_id is not None:
        stmt = stmt.where(Folder.id != exclude_id)
    taken = set((await session.exec(stmt)).all())

    max_attempts = max(1, settings.library_slug_max_attempts)
    for counter in range(1, max_attempts + 1):
        candidate = base if counter == 1 else f"{base}-{counter}"
        if candidate not in taken:
            return candidate

    raise ConflictError(
        "could not allocate a unique slug",
        details={"base": base, "attempts": max_attempts},
    )


async def slug_available(
    session: AsyncSession,
    *,
    slug: str,
    parent_id: int | None,
    owner_id: int,
    exclude_id: int | None = None,
) -> bool:
    stmt = (
        select(Folder.id)
        .where(Folder.owner_id == owner_id)
        .where(_parent_filter(parent_id))
        .where(Folder.slug == slug)
    )
    if exclude_id is not None:
        stmt = stmt.where(Folder.id != exclude_id)
    return (await session.exec(stmt.limit(1))).first() is None


async def compute_depth(session: AsyncSession, parent_id: int | None) -> int:
    if parent_id is None:
        return 0
    # session.get ignores deleted_at: a soft-deleted parent still has a depth.
    parent = await session.get(Folder, parent_id)
    parent_depth = parent.depth if parent is not None else 0
    return parent_depth + 1


async def list_child_folders(
    session: AsyncSession, folder_id: int, *, include_deleted: bool = True
) -> list[Folder]:
    stmt = select(Folder).where(Folder.parent_id == folder_id)
    if not include_deleted:
        stmt = stmt.where(cast(Any, Folder.deleted_at).is_(None))
    return list((await session.exec(stmt)).all())


async def sync_depth_recursive(session: AsyncSession, folder: Folder) -> None:
    """Re-derive ``folder.depth`` from its parent, then cascade to every descendant."""
    folder.depth = await compute_depth(session, folder.parent_id)
    session.add(folder)

    stack: list[Folder] = [folder]
    visited: set[int] = set()
    while stack:
        current = stack.pop()
        if current.id is None or current.id in visited:
            continue
        visited.add(current.id)

        for child in await list_child_folders(session, current.id):
            child.depth = current.depth + 1
            session.add(child)
            stack.append(child)

    await session.flush()


async def can_move_into(
    session: AsyncSession, folder_id: int, target_parent_id: int | None
) -> bool:
    if target_parent_id is None:
        return True
    if target_parent_id == folder_id:
        return False

    seen: set[int] = set()
    ancestor = await session.get(Folder, target_parent_id)
    while ancestor is not None and ancestor.id is not None:
        if ancestor.id == folder_id:
            return False
        if ancestor.id in seen:
            break
        seen.add(ancestor.id)
        if ancestor.parent_id is None:
            break
        ancestor = await session.get(Folder, ancestor.parent_id)

    return True


async def breadcrumbs(session: AsyncSession, folder: Folder) -> list[dict[str, object]]:
    """Ancestor chain from the root down to ``folder`` itself."""
    chain: list[dict[str, object]] = []
    seen: set[int] = set()
    current: Folder | None = folder
    while current is not None and current.id is not None and current.id not in seen:
        seen.add(current.id)
        chain.append(
            {"id": current.id, "uuid": current.uuid, "name": current.name, "slug": current.slug}
        )
        if current.parent_id is None:
            break
        current = await session.get(Folder, current.parent_id)

    chain.reverse()
    return chain
