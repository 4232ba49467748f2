"""
Shared Pydantic v2 schemas reused across multiple modules.

Provides the error envelope rendered by the ``AppException`` handler and a
generic message response.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every error raised as an ``AppException``.

    Attributes:
        code: Machine-readable error kind, e.g. ``REVISION_CONFLICT``.
        message: Human-readable summary.
        details: Structured context (field attribution, conflicts, ...).
    """

    code: str = Field(..., description="Error kind.")
    message: str = Field(..., description="Human-readable summary.")
    details: dict[str, Any] | None = Field(default=None)


class MessageResponse(BaseModel):
    """Generic message envelope for operations that do not return a resource.

    Attributes:
        message: Short human-readable result summary.
        detail: Optional extended information.
    """

    message: str = Field(..., description="Result summary.")
    detail: str | None = Field(default=None)
