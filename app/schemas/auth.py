"""
Pydantic v2 schemas for the authentication endpoints.

Covers the login request payload, the JWT token response, and the
public user representation returned by ``GET /api/auth/me``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Payload accepted by ``POST /api/auth/login``.

    Attributes:
        username: The user's unique login name.
        password: Plain-text password (transmitted over HTTPS only).
    """

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "editor",
                "password": "secret1234",
            }
        }
    )


class TokenResponse(BaseModel):
    """Response body returned after a successful authentication.

    Attributes:
        access_token: Signed JWT string to be sent in the
                      ``Authorization: Bearer <token>`` header.
        token_type: Always ``"bearer"`` per OAuth2 convention.
    """

    access_token: str = Field(..., description="Signed JWT access token")
    token_type: str = Field(default="bearer", description="OAuth2 token type")


class UserResponse(BaseModel):
    """Public representation of an authenticated user.

    ``password_hash`` is deliberately excluded.

    Attributes:
        id: Database primary key.
        username: Unique login name.
        role: Role code; one of ``constants.ROLES``.
        active: Whether the account is currently active.
    """

    id: int
    username: str
    role: str
    active: bool

    model_config = ConfigDict(from_attributes=True)
