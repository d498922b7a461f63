from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.db import session_scope
from assets_backend.domain import folder_tree
from assets_backend.integrations.storage.local_storage import LocalObjectStorage
from assets_backend.jobs.queue import FOLDER_PREVIEW, JobQueue
from assets_backend.library_errors import ConflictError, NotFoundError, ValidationError
from assets_backend.models import User
from assets_backend.models_library import Asset, Folder, utc_now
from assets_backend.services import folders_service


class _FakeEncoder:
    format = "webp"

    def encode(self, source: bytes, size: int, quality: int) -> tuple[bytes, int, int]:
        _ = source, quality
        return b"thumb", size, size


def _make_jobs(tmp_path: Path) -> JobQueue:
    return JobQueue(
        storage=LocalObjectStorage(root_dir=str(tmp_path / "storage")),
        encoder=_FakeEncoder(),
    )


async def _create_user(*, username: str) -> int:
    async with session_scope() as session:
        user = User(username=username, password_hash="x", is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        assert user.id is not None
        return int(user.id)


async def _create_folder(
    jobs: JobQueue, *, owner_id: int, name: str, parent_id: int | None = None
) -> Folder:
    async with session_scope() as session:
        return await folders_service.create_folder(
            session, jobs, owner_id=owner_id, name=name, parent_id=parent_id
        )


async def _reload(folder_id: int | None) -> Folder:
    assert folder_id is not None
    async with session_scope() as session:
        folder = await session.get(Folder, folder_id)
        assert folder is not None
        return folder


@pytest.mark.anyio
async def test_create_root_and_child_sets_depth_slug_and_breadcrumbs(library_env: Path):
    owner_id = await _create_user(username="u_create")
    jobs = _make_jobs(library_env)

    design = await _create_folder(jobs, owner_id=owner_id, name="Design")
    assert design.depth == 0
    assert design.slug == "design"
    assert design.parent_id is None
    assert len(design.uuid) == 36
    assert jobs.pending == [("folder_preview", design.id)]

    mood = await _create_folder(jobs, owner_id=owner_id, name="Moodboards", parent_id=design.id)
    assert mood.depth == 1
    assert jobs.pending == [
        ("folder_preview", design.id),
        ("folder_counters", design.id),
        ("folder_preview", mood.id),
    ]

    async with session_scope() as session:
        crumbs = await folder_tree.breadcrumbs(session, mood)
    assert [c["name"] for c in crumbs] == ["Design", "Moodboards"]

    await jobs.drain()
    assert jobs.pending == []
    assert (await _reload(design.id)).folders_count == 1


@pytest.mark.anyio
async def test_create_validates_name_parent_and_explicit_slug(library_env: Path):
    owner_id = await _create_user(username="u_create_bad")
    other_id = await _create_user(username="u_create_other")
    jobs = _make_jobs(library_env)
    foreign = await _create_folder(jobs, owner_id=other_id, name="Theirs")

    async with session_scope() as session:
        with pytest.raises(ValidationError):
            await folders_service.create_folder(session, jobs, owner_id=owner_id, name="   ")
        with pytest.raises(NotFoundError):
            await folders_service.create_folder(
                session, jobs, owner_id=owner_id, name="Child", parent_id=foreign.id
            )
        with pytest.raises(NotFoundError):
            await folders_service.create_folder(
                session, jobs, owner_id=owner_id, name="Child", parent_id=999_999
            )

        explicit = await folders_service.create_folder(
            session, jobs, owner_id=owner_id, name="Anything", slug="My Slug"
        )
        assert explicit.slug == "my-slug"

        with pytest.raises(ConflictError):
            await folders_service.create_folder(
                session, jobs, owner_id=owner_id, name="Other", slug="my-slug"
            )


@pytest.mark.anyio
@pytest.mark.parametrize("nested", [False, True])
async def test_create_retries_when_a_sibling_takes_the_slug_first(
    library_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
    nested: bool,
):
    owner_id = await _create_user(username=f"u_race_{nested}")
    jobs = _make_jobs(library_env)
    parent_id = None
    if nested:
        parent = await _create_folder(jobs, owner_id=owner_id, name="Parent")
        parent_id = parent.id

    real_generate = folder_tree.generate_unique_slug
    calls: list[str] = []

    async def _sibling_wins(session: AsyncSession, **kwargs: Any) -> str:
        slug = await real_generate(session, **kwargs)
        calls.append(slug)
        if len(calls) == 1:
            # Another request commits the same slug between the probe and our insert.
            async with session_scope() as other:
                other.add(
                    Folder(
                        uuid=str(uuid.uuid4()),
                        name="Dup",
                        slug=slug,
                        parent_id=kwargs["parent_id"],
                        owner_id=kwargs["owner_id"],
                        depth=await folder_tree.compute_depth(other, kwargs["parent_id"]),
                    )
                )
                await other.commit()
        return slug

    monkeypatch.setattr(folder_tree, "generate_unique_slug", _sibling_wins)

    with caplog.at_level(logging.INFO, logger="assets_backend.services.folders_service"):
        folder = await _create_folder(jobs, owner_id=owner_id, name="Dup", parent_id=parent_id)

    assert calls == ["dup", "dup-2"]
    assert folder.slug == "dup-2"
    assert folder.parent_id == parent_id
    assert any("folder slug race" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_move_into_descendant_is_rejected(library_env: Path):
    owner_id = await _create_user(username="u_move_cycle")
    jobs = _make_jobs(library_env)
    a = await _create_folder(jobs, owner_id=owner_id, name="A")
    b = await _create_folder(jobs, owner_id=owner_id, name="B", parent_id=a.id)
    assert a.id is not None and b.id is not None
    jobs_before = jobs.pending

    async with session_scope() as session:
        with pytest.raises(ValidationError) as excinfo:
            await folders_service.move_folder(
                session, jobs, owner_id=owner_id, folder_id=a.id, parent_id=b.id
            )
        assert excinfo.value.status_code == 422
        assert "descendant" in excinfo.value.message

        with pytest.raises(ValidationError):
            await folders_service.move_folder(
                session, jobs, owner_id=owner_id, folder_id=a.id, parent_id=a.id
            )

    assert jobs.pending == jobs_before
    assert (await _reload(a.id)).parent_id is None


@pytest.mark.anyio
async def test_move_to_root_resyncs_depth_and_schedules_both_parents(library_env: Path):
    owner_id = await _create_user(username="u_move_root")
    jobs = _make_jobs(library_env)
    a = await _create_folder(jobs, owner_id=owner_id, name="A")
    b = await _create_folder(jobs, owner_id=owner_id, name="B", parent_id=a.id)
    c = await _create_folder(jobs, owner_id=owner_id, name="C", parent_id=b.id)
    assert b.id is not None
    await jobs.drain()
    assert (await _reload(a.id)).folders_count == 1

    async with session_scope() as session:
        moved = await folders_service.move_folder(
            session, jobs, owner_id=owner_id, folder_id=b.id, parent_id=None
        )
    assert moved.parent_id is None
    assert moved.depth == 0
    assert jobs.pending == [("folder_counters", a.id), ("folder_preview", b.id)]
    assert (await _reload(c.id)).depth == 1

    await jobs.drain()
    assert (await _reload(a.id)).folders_count == 0


@pytest.mark.anyio
async def test_move_keeps_slug_unless_taken_in_new_scope(library_env: Path):
    owner_id = await _create_user(username="u_move_slug")
    jobs = _make_jobs(library_env)
    x = await _create_folder(jobs, owner_id=owner_id, name="X")
    await _create_folder(jobs, owner_id=owner_id, name="Logo")
    nested_logo = await _create_folder(jobs, owner_id=owner_id, name="Logo", parent_id=x.id)
    nested_icons = await _create_folder(jobs, owner_id=owner_id, name="Icons", parent_id=x.id)
    assert nested_logo.id is not None and nested_icons.id is not None

    async with session_scope() as session:
        logo = await folders_service.move_folder(
            session, jobs, owner_id=owner_id, folder_id=nested_logo.id, parent_id=None
        )
        icons = await folders_service.move_folder(
            session, jobs, owner_id=owner_id, folder_id=nested_icons.id, parent_id=None
        )
    assert logo.slug == "logo-2"
    assert icons.slug == "icons"


@pytest.mark.anyio
async def test_move_to_same_parent_is_a_no_op(library_env: Path):
    owner_id = await _create_user(username="u_move_same")
    jobs = _make_jobs(library_env)
    a = await _create_folder(jobs, owner_id=owner_id, name="A")
    b = await _create_folder(jobs, owner_id=owner_id, name="B", parent_id=a.id)
    assert b.id is not None
    await jobs.drain()

    async with session_scope() as session:
        await folders_service.move_folder(
            session, jobs, owner_id=owner_id, folder_id=b.id, parent_id=a.id
        )
    assert jobs.pending == []


@pytest.mark.anyio
async def test_rename_regenerates_slug_and_schedules_preview(library_env: Path):
    owner_id = await _create_user(username="u_rename")
    jobs = _make_jobs(library_env)
    brand = await _create_folder(jobs, owner_id=owner_id, name="Brand")
    await _create_folder(jobs, owner_id=owner_id, name="Brand Book")
    assert brand.id is not None
    await jobs.drain()

    async with session_scope() as session:
        renamed = await folders_service.rename_folder(
            session, jobs, owner_id=owner_id, folder_id=brand.id, name="Brand Book"
        )
    assert renamed.name == "Brand Book"
    assert renamed.slug == "brand-book-2"
    assert jobs.pending == [("folder_preview", brand.id)]
    await jobs.drain()

    async with session_scope() as session:
        same = await folders_service.rename_folder(
            session, jobs, owner_id=owner_id, folder_id=brand.id, name="Brand Book"
        )
    assert same.slug == "brand-book-2"
    assert jobs.pending == []


@pytest.mark.anyio
async def test_delete_then_recreate_then_restore_never_collides(library_env: Path):
    owner_id = await _create_user(username="u_restore")
    jobs = _make_jobs(library_env)
    first = await _create_folder(jobs, owner_id=owner_id, name="Projects")
    assert first.id is not None
    assert first.slug == "projects"

    async with session_scope() as session:
        await folders_service.delete_folder(session, jobs, owner_id=owner_id, folder_id=first.id)

    second = await _create_folder(jobs, owner_id=owner_id, name="Projects")
    assert second.slug == "projects-2"

    async with session_scope() as session:
        restored = await folders_service.restore_folder(
            session, jobs, owner_id=owner_id, folder_id=first.id
        )
    assert restored.deleted_at is None
    assert restored.slug not in {"projects-2"}
    assert restored.slug == "projects"


@pytest.mark.anyio
async def test_restore_after_slug_taken_by_rename_picks_fresh_slug(library_env: Path):
    owner_id = await _create_user(username="u_restore_taken")
    jobs = _make_jobs(library_env)
    first = await _create_folder(jobs, owner_id=owner_id, name="Projects")
    other = await _create_folder(jobs, owner_id=owner_id, name="Other")
    assert first.id is not None and other.id is not None

    async with session_scope() as session:
        await folders_service.delete_folder(session, jobs, owner_id=owner_id, folder_id=first.id)

    # Free the slug by hand to mimic a sibling that claimed it meanwhile.
    async with session_scope() as session:
        deleted = await session.get(Folder, first.id)
        assert deleted is not None
        deleted.slug = "projects-old"
        session.add(deleted)
        await session.commit()

    async with session_scope() as session:
        taken = await session.get(Folder, other.id)
        assert taken is not None
        taken.slug = "projects"
        session.add(taken)
        await session.commit()

    async with session_scope() as session:
        restored = await folders_service.restore_folder(
            session, jobs, owner_id=owner_id, folder_id=first.id
        )
    assert restored.slug == "projects-2"


@pytest.mark.anyio
async def test_delete_and_restore_schedule_parent_jobs(library_env: Path):
    owner_id = await _create_user(username="u_delete")
    jobs = _make_jobs(library_env)
    parent = await _create_folder(jobs, owner_id=owner_id, name="Parent")
    child = await _create_folder(jobs, owner_id=owner_id, name="Child", parent_id=parent.id)
    assert child.id is not None
    await jobs.drain()
    assert (await _reload(parent.id)).folders_count == 1

    async with session_scope() as session:
        await folders_service.delete_folder(session, jobs, owner_id=owner_id, folder_id=child.id)
    assert jobs.pending == [("folder_counters", parent.id), ("folder_preview", parent.id)]
    await jobs.drain()
    assert (await _reload(parent.id)).folders_count == 0

    async with session_scope() as session:
        with pytest.raises(NotFoundError):
            await folders_service.get_folder_for_owner(
                session, owner_id=owner_id, folder_id=child.id
            )
        with pytest.raises(NotFoundError):
            await folders_service.delete_folder(
                session, jobs, owner_id=owner_id, folder_id=child.id
            )

    async with session_scope() as session:
        await folders_service.restore_folder(session, jobs, owner_id=owner_id, folder_id=child.id)
    assert jobs.pending == [
        ("folder_counters", child.id),
        ("folder_counters", parent.id),
        ("folder_preview", child.id),
        ("folder_preview", parent.id),
    ]
    await jobs.drain()
    assert (await _reload(parent.id)).folders_count == 1


@pytest.mark.anyio
async def test_folders_of_other_owner_are_not_found(library_env: Path):
    owner_id = await _create_user(username="u_owner")
    intruder_id = await _create_user(username="u_intruder")
    jobs = _make_jobs(library_env)
    folder = await _create_folder(jobs, owner_id=owner_id, name="Private")
    assert folder.id is not None

    async with session_scope() as session:
        with pytest.raises(NotFoundError):
            await folders_service.rename_folder(
                session, jobs, owner_id=intruder_id, folder_id=folder.id, name="Mine"
            )
        with pytest.raises(NotFoundError):
            await folders_service.delete_folder(
                session, jobs, owner_id=intruder_id, folder_id=folder.id
            )


@pytest.mark.anyio
async def test_list_folders_orders_paginates_and_searches(library_env: Path):
    owner_id = await _create_user(username="u_list")
    jobs = _make_jobs(library_env)
    for name in ("Bravo", "Alpha", "Charlie"):
        await _create_folder(jobs, owner_id=owner_id, name=name)
    deleted = await _create_folder(jobs, owner_id=owner_id, name="Delta")
    assert deleted.id is not None

    async with session_scope() as session:
        await folders_service.delete_folder(session, jobs, owner_id=owner_id, folder_id=deleted.id)

        rows, total = await folders_service.list_folders(session, owner_id=owner_id)
        assert total == 3
        assert [f.name for f in rows] == ["Alpha", "Bravo", "Charlie"]

        rows, _ = await folders_service.list_folders(session, owner_id=owner_id, order="desc")
        assert [f.name for f in rows] == ["Charlie", "Bravo", "Alpha"]

        rows, _ = await folders_service.list_folders(
            session, owner_id=owner_id, order_by="not-a-column"
        )
        assert [f.name for f in rows] == ["Alpha", "Bravo", "Charlie"]

        rows, total = await folders_service.list_folders(
            session, owner_id=owner_id, page=2, per_page=2
        )
        assert total == 3
        assert [f.name for f in rows] == ["Charlie"]

        rows, total = await folders_service.list_folders(session, owner_id=owner_id, q="rav")
        assert total == 1
        assert rows[0].name == "Bravo"


async def _insert_asset(
    *, owner_id: int, folder_id: int | None, name: str, age_seconds: int = 0
) -> str:
    async with session_scope() as session:
        created = utc_now() - timedelta(seconds=age_seconds)
        asset = Asset(
            id=str(uuid.uuid4()),
            path=f"{owner_id}/{name}",
            folder_id=folder_id,
            owner_id=owner_id,
            mime="image/png",
            size_bytes=1,
            checksum="0" * 64,
            generated_thumbs={},
            original_name=name,
            created_at=created,
            updated_at=created,
        )
        session.add(asset)
        await session.commit()
        return asset.id


@pytest.mark.anyio
async def test_toggle_preview_pins_and_unpins_single_asset(library_env: Path):
    owner_id = await _create_user(username="u_toggle")
    jobs = _make_jobs(library_env)
    folder = await _create_folder(jobs, owner_id=owner_id, name="Shots")
    assert folder.id is not None
    x = await _insert_asset(owner_id=owner_id, folder_id=folder.id, name="x.png", age_seconds=1)
    y = await _insert_asset(owner_id=owner_id, folder_id=folder.id, name="y.png", age_seconds=2)

    async with session_scope() as session:
        auto = await session.get(Folder, folder.id)
        assert auto is not None
        auto.preview_asset_ids = [x, y]
        session.add(auto)
        await session.commit()

    async with session_scope() as session:
        pinned = await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=x
        )
        assert pinned.preview_asset_ids == [x]
        assert pinned.pinned_preview_asset_id == x

        cleared = await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=x
        )
        assert cleared.preview_asset_ids == []
        assert cleared.pinned_preview_asset_id is None

        await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=y
        )
        replaced = await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=x
        )
        assert replaced.preview_asset_ids == [x]

    assert jobs.pending == [("folder_preview", folder.id)]
    assert (await _reload(folder.id)).preview_asset_ids == [x]


@pytest.mark.anyio
async def test_toggle_preview_accepts_direct_child_assets_only(library_env: Path):
    owner_id = await _create_user(username="u_toggle_scope")
    other_id = await _create_user(username="u_toggle_other")
    jobs = _make_jobs(library_env)
    root = await _create_folder(jobs, owner_id=owner_id, name="Root")
    child = await _create_folder(jobs, owner_id=owner_id, name="Child", parent_id=root.id)
    grandchild = await _create_folder(jobs, owner_id=owner_id, name="Deep", parent_id=child.id)
    assert root.id is not None

    in_child = await _insert_asset(owner_id=owner_id, folder_id=child.id, name="c.png")
    in_grandchild = await _insert_asset(owner_id=owner_id, folder_id=grandchild.id, name="g.png")
    unfiled = await _insert_asset(owner_id=owner_id, folder_id=None, name="u.png")
    foreign = await _insert_asset(owner_id=other_id, folder_id=root.id, name="f.png")

    async with session_scope() as session:
        folder = await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=root.id, asset_id=in_child
        )
        assert folder.preview_asset_ids == [in_child]

        for asset_id in (in_grandchild, unfiled, foreign, "missing"):
            with pytest.raises(NotFoundError):
                await folders_service.toggle_preview_asset(
                    session, owner_id=owner_id, folder_id=root.id, asset_id=asset_id
                )


@pytest.mark.anyio
async def test_pin_survives_rename_and_unpin_restores_auto_selection(library_env: Path):
    owner_id = await _create_user(username="u_pin_rename")
    jobs = _make_jobs(library_env)
    folder = await _create_folder(jobs, owner_id=owner_id, name="Shots")
    assert folder.id is not None
    older = await _insert_asset(
        owner_id=owner_id, folder_id=folder.id, name="older.png", age_seconds=10
    )
    newer = await _insert_asset(owner_id=owner_id, folder_id=folder.id, name="newer.png")
    await jobs.drain()
    assert (await _reload(folder.id)).preview_asset_ids == [newer, older]

    async with session_scope() as session:
        await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=older
        )
    async with session_scope() as session:
        await folders_service.rename_folder(
            session, jobs, owner_id=owner_id, folder_id=folder.id, name="Best Shots"
        )
    assert jobs.pending == [(FOLDER_PREVIEW, folder.id)]
    await jobs.drain()

    pinned = await _reload(folder.id)
    assert pinned.preview_asset_ids == [older]
    assert pinned.pinned_preview_asset_id == older

    async with session_scope() as session:
        unpinned = await folders_service.toggle_preview_asset(
            session, owner_id=owner_id, folder_id=folder.id, asset_id=older
        )
    assert unpinned.preview_asset_ids == []
    assert jobs.pending == []

    jobs.schedule(FOLDER_PREVIEW, folder.id)
    await jobs.drain()
    assert (await _reload(folder.id)).preview_asset_ids == [newer, older]


@pytest.mark.anyio
async def test_get_preview_assets_keeps_stored_order_and_skips_missing(library_env: Path):
    owner_id = await _create_user(username="u_preview_get")
    jobs = _make_jobs(library_env)
    folder = await _create_folder(jobs, owner_id=owner_id, name="Shots")
    assert folder.id is not None
    a = await _insert_asset(owner_id=owner_id, folder_id=folder.id, name="a.png")
    b = await _insert_asset(owner_id=owner_id, folder_id=folder.id, name="b.png")

    async with session_scope() as session:
        row = await session.get(Folder, folder.id)
        assert row is not None
        row.preview_asset_ids = [b, "gone", a]
        session.add(row)
        await session.commit()

    async with session_scope() as session:
        _, assets = await folders_service.get_preview_assets(
            session, owner_id=owner_id, folder_id=folder.id
        )
    assert [x.id for x in assets] == [b, a]


@pytest.mark.anyio
async def test_create_folder_token_returns_sha256_hex(library_env: Path):
    owner_id = await _create_user(username="u_token")
    jobs = _make_jobs(library_env)
    folder = await _create_folder(jobs, owner_id=owner_id, name="Shared")
    assert folder.id is not None

    async with session_scope() as session:
        t1 = await folders_service.create_folder_token(
            session, owner_id=owner_id, folder_id=folder.id, can_upload=False
        )
        t2 = await folders_service.create_folder_token(
            session, owner_id=owner_id, folder_id=folder.id
        )

    assert len(t1.token) == 64
    int(t1.token, 16)
    assert t1.token != t2.token
    assert t1.can_upload is False
    assert t1.can_create_subfolders is True
    assert t1.folder_id == folder.id
