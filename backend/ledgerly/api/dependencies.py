"""Common dependencies for FastAPI routes.

Authentication is out of scope for this service: the caller identifies
itself with an ``X-User-Id`` header. When the header is missing and
``DEV_AUTH_BYPASS`` is on, a placeholder dev user is looked up or created,
mirroring local development without an identity provider.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from redis import asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.core.database import AsyncSessionLocal, get_db
from ledgerly.models.tables import User, WorkspaceMembership

DEV_USER_EMAIL = "dev@example.com"

# -----------------------------------------------------------------------------
# Shared resources

_redis_client = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


async def get_redis_client():
    """Return a singleton async Redis client using `REDIS_URL`."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


# -----------------------------------------------------------------------------
# Current user / workspace


async def _dev_user(db: AsyncSession) -> User:
    user = (await db.execute(select(User).where(User.email == DEV_USER_EMAIL))).scalar_one_or_none()
    if user is None:
        user = User(email=DEV_USER_EMAIL, name="Dev User", settings={})
        db.add(user)
        await db.commit()
        await db.refresh(user)
    return user


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Resolve the calling user from ``X-User-Id`` (or the dev user)."""
    if not x_user_id:
        if settings.DEV_AUTH_BYPASS:
            return await _dev_user(db)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header")
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


async def get_workspace_id(
    x_workspace_id: Optional[int] = Header(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[int]:
    """Optional ``X-Workspace-Id``; the user must be a member of it."""
    if x_workspace_id is None:
        return None
    membership = (
        await db.execute(
            select(WorkspaceMembership.id).where(
                WorkspaceMembership.workspace_id == x_workspace_id,
                WorkspaceMembership.user_id == user.id,
            )
        )
    ).first()
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this workspace")
    return x_workspace_id


def get_session_factory():
    """Session factory for work that outlives the request (SSE polling)."""
    return AsyncSessionLocal
