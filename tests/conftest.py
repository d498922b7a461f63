from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

from assets_backend.config import settings
from assets_backend.db import dispose_engine_cache, get_engine, reset_engine_cache

_LIBRARY_SETTINGS = (
    "database_url",
    "storage_local_dir",
    "jobs_async",
    "assets_max_size_bytes",
    "library_preview_max_items",
    "library_preview_thumb_size",
    "library_preview_thumb_format",
    "library_slug_max_attempts",
)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Ensure the cached AsyncEngine (aiosqlite worker thread) is disposed
    # before the per-test anyio/asyncio event loop is torn down.
    _ = anyio_backend
    yield

    try:
        engine = get_engine()
    except Exception:
        engine = None

    if engine is not None:
        try:
            result = engine.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception:
            # Best-effort: fall back to sync pool dispose below.
            pass

    dispose_engine_cache()


@pytest.fixture
def library_env(tmp_path: Path) -> Iterator[Path]:
    """Fresh SQLite schema via Alembic, local storage under tmp_path, jobs inline."""
    old = {name: getattr(settings, name) for name in _LIBRARY_SETTINGS}
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'library.db'}"
        settings.storage_local_dir = str(tmp_path / "storage")
        settings.jobs_async = False
        settings.library_preview_max_items = 4
        settings.library_preview_thumb_size = 512
        settings.library_preview_thumb_format = "webp"
        reset_engine_cache()
        command.upgrade(Config("alembic.ini"), "head")
        yield tmp_path
    finally:
        for name, value in old.items():
            setattr(settings, name, value)


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    # Safety net: close cached engine so CI can exit cleanly.
    _ = session, exitstatus
    dispose_engine_cache()
