"""
Domain exception taxonomy shared by the service layer.

Services raise these instead of ``HTTPException`` so the same code paths can
run outside a request (tests, scripts).  ``app.main`` registers a single
handler that renders every ``AppException`` as::

    {"code": "<CODE>", "message": "<human readable>", "details": {...}}

``details`` is omitted when empty.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class AppException(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


class ValidationError(AppException):
    """Malformed or out-of-range input.

    ``field`` carries the column / field attribution when there is one so
    aggregated reports can point at the offending column.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.field = field
        merged = dict(details or {})
        if field is not None:
            merged.setdefault("field", field)
        super().__init__(message, merged)


class ConflictError(AppException):
    """Stale table revision; carries the latest revision and itemised conflicts."""

    status_code = status.HTTP_409_CONFLICT
    code = "REVISION_CONFLICT"

    def __init__(
        self,
        message: str,
        latest_revision: int | None = None,
        conflicts: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.latest_revision = latest_revision
        self.conflicts = conflicts or []
        merged = dict(details or {})
        if latest_revision is not None:
            merged["latest_revision"] = latest_revision
            merged["conflicts"] = self.conflicts
        super().__init__(message, merged)


class ForbiddenError(AppException):
    """Readonly record/field, or a role that is not permitted."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFoundError(AppException):
    """Missing table, record, field or view."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None, message: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if message is None:
            message = (
                f"{resource} {resource_id} not found"
                if resource_id is not None
                else f"{resource} not found"
            )
        super().__init__(message, {"resource": resource, "resource_id": resource_id})
