from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from assets_backend.db import get_session
from assets_backend.integrations.imaging import ThumbnailEncoder, get_thumbnail_encoder
from assets_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from assets_backend.jobs.queue import JobQueue
from assets_backend.models import AccessToken, User, utc_now
from assets_backend.security import hash_token

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    # Use a dedicated session for auth so services can own tx boundaries
    # on a separate request-scoped session.
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> User:
    raw_token = creds.credentials.strip() if creds is not None and creds.credentials else ""
    if not raw_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")

    access_token = (
        await session.exec(select(AccessToken).where(AccessToken.token_hash == hash_token(raw_token)))
    ).first()
    if access_token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")

    user = await session.get(User, access_token.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")

    user_id = user.id
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )

    access_token.last_used_at = utc_now()
    session.add(access_token)
    await session.commit()

    request.state.auth_user_id = int(user_id)
    return user


def require_user_id(user: User) -> int:
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="user missing id",
        )
    return int(user.id)


def get_storage() -> ObjectStorage:
    return get_object_storage()


def get_encoder() -> ThumbnailEncoder:
    return get_thumbnail_encoder()


def get_job_queue(
    storage: ObjectStorage = Depends(get_storage),
    encoder: ThumbnailEncoder = Depends(get_encoder),
) -> JobQueue:
    # One queue per request; routers dispatch it as their last step.
    return JobQueue(storage=storage, encoder=encoder)
