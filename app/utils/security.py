"""
Password hashing and access tokens for Gridbase.

Tokens are HS256 JWTs carrying the user id (``sub``), the role the user had
when the token was issued (``role``) and ``iat``/``exp``.  The role claim is
informational: every request re-reads the user row, so a role change or a
deactivation takes effect immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from app.config import get_settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Passwords (bcrypt directly; passlib does not support bcrypt 4.x)
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash stored for the account.
        return False


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    """Decoded access token."""

    user_id: int
    role: str | None
    issued_at: datetime
    expires_at: datetime


def create_access_token(user_id: int, role: str, username: str | None = None) -> str:
    """Issue a signed access token for *user_id*.

    Expiry is ``JWT_EXPIRATION_MINUTES`` from now.

    Example::

        token = create_access_token(user.id, user.role, user.username)
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES),
    }
    if username is not None:
        claims["username"] = username
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """Verify *token* and return its claims.

    Raises:
        ValueError: Bad signature, expired token, or a ``sub`` claim that is
            not a user id.  ``get_current_user`` maps this to 401.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as exc:
        logger.debug("decode_access_token: rejected token (%s)", exc)
        raise ValueError("Invalid or expired token") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise ValueError("Token subject is not a user id")
    if not isinstance(payload.get("exp"), (int, float)):
        raise ValueError("Token has no expiry")

    return TokenClaims(
        user_id=int(subject),
        role=payload.get("role"),
        issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
