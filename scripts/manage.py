"""Operator commands for the asset library.

Usage examples:
  python scripts/manage.py create-user alice --password 's3cret'
  python scripts/manage.py issue-token alice --name laptop
  python scripts/manage.py refresh-folders --owner-id 1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, cast

from sqlmodel import select

from assets_backend.config import settings
from assets_backend.db import dispose_engine_cache, session_scope
from assets_backend.integrations.imaging import get_thumbnail_encoder
from assets_backend.integrations.storage.object_storage import get_object_storage
from assets_backend.jobs.queue import FOLDER_COUNTERS, FOLDER_PREVIEW, JobQueue
from assets_backend.models import AccessToken, User
from assets_backend.models_library import Folder
from assets_backend.security import generate_access_token, hash_password, hash_token

logger = logging.getLogger("assets_backend.manage")


async def create_user(username: str, password: str) -> int:
    async with session_scope() as session:
        existing = (await session.exec(select(User).where(User.username == username))).first()
        if existing is not None:
            raise SystemExit(f"user already exists: {username}")

        user = User(username=username, password_hash=hash_password(password))
        session.add(user)
        await session.commit()
        await session.refresh(user)
        if user.id is None:
            raise SystemExit("user missing id")
        return int(user.id)


async def issue_token(username: str, name: str | None) -> str:
    async with session_scope() as session:
        user = (await session.exec(select(User).where(User.username == username))).first()
        if user is None or user.id is None:
            raise SystemExit(f"user not found: {username}")

        plaintext = generate_access_token()
        session.add(AccessToken(user_id=int(user.id), name=name, token_hash=hash_token(plaintext)))
        await session.commit()
        return plaintext


async def refresh_folders(owner_id: int | None) -> int:
    """Run counter and preview jobs synchronously for every folder, deepest first."""
    async with session_scope() as session:
        stmt = select(Folder.id).order_by(cast(Any, Folder.depth).desc(), cast(Any, Folder.id).asc())
        if owner_id is not None:
            stmt = stmt.where(Folder.owner_id == owner_id)
        folder_ids = [int(fid) for fid in (await session.exec(stmt)).all() if fid is not None]

    jobs = JobQueue(storage=get_object_storage(), encoder=get_thumbnail_encoder())
    for folder_id in folder_ids:
        jobs.schedule(FOLDER_COUNTERS, folder_id)
        jobs.schedule(FOLDER_PREVIEW, folder_id)
    await jobs.drain()
    return len(folder_ids)


async def _run(args: argparse.Namespace) -> int:
    try:
        if args.command == "create-user":
            user_id = await create_user(args.username, args.password)
            print(f"created user id={user_id} username={args.username}")
        elif args.command == "issue-token":
            token = await issue_token(args.username, args.name)
            # Only the hash is stored; this is the one time the token is visible.
            print(token)
        elif args.command == "refresh-folders":
            count = await refresh_folders(args.owner_id)
            print(f"refreshed folders={count}")
        return 0
    finally:
        dispose_engine_cache()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Asset library management commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_user = sub.add_parser("create-user", help="Create a user")
    p_user.add_argument("username")
    p_user.add_argument("--password", required=True)

    p_token = sub.add_parser("issue-token", help="Issue an API token and print it once")
    p_token.add_argument("username")
    p_token.add_argument("--name", default=None, help="Label shown in token listings (max 50 chars)")

    p_refresh = sub.add_parser(
        "refresh-folders", help="Recompute counters and previews synchronously"
    )
    p_refresh.add_argument("--owner-id", type=int, default=None)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
