# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false
# basedpyright: reportUnusedImport=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    password_hash: str = Field(min_length=1, max_length=255)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class AccessToken(SQLModel, table=True):
    """Personal API token; only the sha256 of the plaintext is stored."""

    __tablename__ = "access_tokens"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    name: Optional[str] = Field(default=None, max_length=50)
    token_hash: str = Field(index=True, unique=True, min_length=64, max_length=64)

    last_used_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, index=True)


# Import library models so Alembic sees them via `assets_backend.models`.
from . import models_library as _models_library  # noqa: E402,F401  # type: ignore
