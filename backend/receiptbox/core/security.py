"""Authentication helpers.

Identity is delegated to whatever issues the bearer tokens; this module
only verifies them.  Tokens are HS256 JWTs signed with ``SECRET_KEY``
whose ``sub`` claim is the local user id.  ``get_current_user`` returns
``None`` for a missing or invalid token; turning that into a 401 is the
route dependency's job (``receiptbox.api.dependencies.get_user``).
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from receiptbox.core.config import settings
from receiptbox.core.database import get_db
from receiptbox.models.tables import User

logger = logging.getLogger(__name__)

DEV_USER_EMAIL = "dev@example.com"


def create_access_token(user_id: str, email: Optional[str] = None, expires_in: int = 3600) -> str:
    """Issue a signed token for ``user_id`` (used by tests and local tooling)."""
    now = dt.datetime.now(dt.timezone.utc)
    claims: Dict[str, Any] = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(seconds=expires_in)).timestamp()),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the verified claims, or ``None`` if the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.info("[auth] token rejected: %s", exc)
        return None


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> Optional[User]:
    """Resolve the authenticated user, or ``None``.

    In development mode (``DEV_AUTH_BYPASS``) a placeholder user is
    returned or created.
    """
    if settings.DEV_AUTH_BYPASS:
        result = await db.execute(select(User).where(User.email == DEV_USER_EMAIL))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(email=DEV_USER_EMAIL, name="Dev User")
            db.add(user)
            await db.commit()
            await db.refresh(user)
        return user

    token = _bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    result = await db.execute(select(User).where(User.id == str(payload["sub"])))
    return result.scalar_one_or_none()
