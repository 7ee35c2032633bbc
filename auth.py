"""
Caller identity for the booking endpoints.

Bearer tokens are looked up by their SHA-256 hash in ``access_tokens``;
the admin role comes from ``user_roles``.
"""

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from database import get_session
from errors import UnauthorizedError
from models import AccessToken, UserRole, utcnow

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: uuid.UUID
    is_admin: bool = False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


async def issue_token(
    session: AsyncSession,
    user_id: uuid.UUID,
    expires_in: Optional[timedelta] = None,
) -> str:
    """Create a bearer token for ``user_id``. Only the hash is persisted."""
    token = secrets.token_urlsafe(32)
    expires_at = utcnow() + expires_in if expires_in else None
    session.add(AccessToken(token_hash=hash_token(token), user_id=user_id, expires_at=expires_at))
    await session.commit()
    return token


async def resolve_identity(
    session: AsyncSession, token: str, now: Optional[datetime] = None
) -> Identity:
    now = now or utcnow()
    statement = select(AccessToken).where(AccessToken.token_hash == hash_token(token))
    result = await session.execute(statement)
    access_token = result.scalars().first()

    if access_token is None or access_token.revoked_at is not None:
        raise UnauthorizedError("Unauthorized")
    if access_token.expires_at is not None and access_token.expires_at <= now:
        raise UnauthorizedError("Unauthorized")

    statement = select(UserRole).where(
        UserRole.user_id == access_token.user_id, UserRole.role == ADMIN_ROLE
    )
    result = await session.execute(statement)
    is_admin = result.scalars().first() is not None

    return Identity(user_id=access_token.user_id, is_admin=is_admin)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> Identity:
    if credentials is None or not credentials.credentials:
        logger.warning("Rejected request without authorization header")
        raise UnauthorizedError("Missing authorization header")

    identity = await resolve_identity(session, credentials.credentials)
    logger.debug("Resolved caller %s (admin=%s)", identity.user_id, identity.is_admin)
    return identity
