"""
Authentication router for the Gridbase API.

Mounts under ``/api/auth`` (prefix set in ``main.py``).

Endpoints:
    POST /login   — Authenticate with username + password, receive JWT.
    POST /refresh — Exchange a valid token for a new one (extend session).
    GET  /me      — Return the currently authenticated user's profile.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.auth import TokenResponse, UserResponse
from app.services.auth_service import authenticate_user, get_current_user
from app.utils.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def _issue_token(user: User) -> TokenResponse:
    token = create_access_token(user.id, user.role, user.username)
    return TokenResponse(access_token=token)


# ---------------------------------------------------------------------------
# POST /login
# ---------------------------------------------------------------------------


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in",
    description=(
        "Authenticates with username and password (OAuth2 password form) and "
        "returns a JWT valid for ``JWT_EXPIRATION_MINUTES``."
    ),
    responses={
        200: {"description": "Authenticated; the body carries the JWT."},
        401: {"description": "Wrong credentials or inactive account."},
    },
)
def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[Session, Depends(get_db)],
) -> TokenResponse:
    """Authenticate a user and issue a JWT access token.

    Raises:
        HTTPException 401: If credentials are invalid or the account is inactive.
    """
    user = authenticate_user(db, form_data.username, form_data.password)

    if user is None:
        logger.warning("Failed login attempt for username='%s'", form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials or inactive account",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info("Successful login for username='%s' role='%s'", user.username, user.role)
    return _issue_token(user)


# ---------------------------------------------------------------------------
# POST /refresh
# ---------------------------------------------------------------------------


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh token",
    responses={
        200: {"description": "New token issued."},
        401: {"description": "Token missing, invalid or expired."},
    },
)
def refresh_token(
    current_user: Annotated[User, Depends(get_current_user)],
) -> TokenResponse:
    """Issue a fresh token for the holder of a still-valid one."""
    logger.info("Token refreshed for username='%s'", current_user.username)
    return _issue_token(current_user)


# ---------------------------------------------------------------------------
# GET /me
# ---------------------------------------------------------------------------


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user profile",
    responses={
        200: {"description": "Profile of the authenticated user."},
        401: {"description": "Token missing, invalid or expired."},
    },
)
def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    return UserResponse.model_validate(current_user)
