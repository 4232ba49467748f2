"""
Authentication business logic for the Gridbase API.

Provides:
- ``authenticate_user`` — credential verification against the DB.
- ``get_current_user`` — FastAPI dependency that extracts and validates
  the Bearer JWT from the ``Authorization`` header.
- ``require_role`` — dependency factory that enforces role-based access
  control on top of ``get_current_user``.
- ``ensure_default_admin`` — startup bootstrap of the admin account.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.services import audit_service
from app.utils.constants import LOG_ACTION_LOGIN
from app.utils.exceptions import ForbiddenError
from app.utils.security import decode_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# OAuth2 scheme — tells FastAPI/Swagger where to find the Bearer token.
# The ``tokenUrl`` must match the login endpoint path (relative to root).
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ---------------------------------------------------------------------------
# Core authentication function
# ---------------------------------------------------------------------------


def authenticate_user(db: Session, username: str, password: str) -> User | None:
    """Verify username/password credentials against the database.

    On success the user's ``last_login_at`` is updated and a ``login``
    audit row is written in the same commit.

    Args:
        db: An active SQLAlchemy session (injected via ``get_db``).
        username: The login name submitted by the client.
        password: The plain-text password submitted by the client.

    Returns:
        The ``User`` ORM instance on success, or ``None`` on failure
        (unknown user, inactive account, or wrong password).
    """
    user: User | None = (
        db.query(User)
        .filter(User.username == username, User.active.is_(True))
        .first()
    )

    if user is None:
        logger.debug("authenticate_user: unknown or inactive user '%s'", username)
        return None

    if not verify_password(password, user.password_hash):
        logger.debug("authenticate_user: wrong password for user '%s'", username)
        return None

    try:
        user.last_login_at = datetime.now(timezone.utc)
        audit_service.append_log(db, LOG_ACTION_LOGIN, user_id=user.id, count=1)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)

    return user


def ensure_default_admin(db: Session, username: str, password: str) -> User:
    """Create the bootstrap admin account if it does not exist yet."""
    admin: User | None = db.query(User).filter(User.username == username).first()
    if admin is not None:
        return admin

    admin = User(
        username=username,
        password_hash=hash_password(password),
        role="admin",
        active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("ensure_default_admin: created admin account '%s'", username)
    return admin


# ---------------------------------------------------------------------------
# FastAPI dependency — current authenticated user
# ---------------------------------------------------------------------------


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    """FastAPI dependency that resolves the caller's identity from a JWT.

    Args:
        token: Raw JWT string supplied by ``oauth2_scheme``.
        db: SQLAlchemy session supplied by ``get_db``.

    Returns:
        The authenticated ``User`` ORM instance.

    Raises:
        HTTPException 401: If the token is missing, invalid, or expired,
                           or if the referenced user no longer exists or
                           has been deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        claims = decode_access_token(token)
    except ValueError:
        raise credentials_exception

    user: User | None = (
        db.query(User)
        .filter(User.id == claims.user_id, User.active.is_(True))
        .first()
    )

    if user is None:
        raise credentials_exception

    return user


# ---------------------------------------------------------------------------
# Role enforcement dependency factory
# ---------------------------------------------------------------------------


def require_role(*roles: str):
    """Return a FastAPI dependency that restricts access to the given roles.

    .. code-block:: python

        @router.post("/batch-write")
        def batch_write(
            current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
        ):
            ...

    Args:
        *roles: One or more role codes from ``constants.ROLES``.

    Returns:
        A callable FastAPI dependency that resolves to the authenticated
        ``User`` if their role is in *roles*.

    Raises:
        ForbiddenError: If the authenticated user's role is not allowed.
    """
    allowed = frozenset(roles)

    def _check_role(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed:
            raise ForbiddenError(
                f"Access denied. Requires one of the roles: {sorted(allowed)}",
                {"role": current_user.role},
            )
        return current_user

    return _check_role
