"""
Audit log router.

Mounts under ``/api/logs`` (prefix set in ``main.py``).  Admin only.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.logs import AuditLogListResponse, AuditLogResponse
from app.services import audit_service
from app.services.auth_service import require_role
from app.utils.constants import AUDIT_ROLES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Logs"])


@router.get(
    "",
    response_model=AuditLogListResponse,
    summary="List audit log",
    description="Newest first. Unknown ``action`` values are ignored.",
)
def list_logs(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*AUDIT_ROLES))],
    page: int = Query(default=1, ge=1),
    size: int = Query(default=50, ge=1, le=200),
    action: str | None = Query(default=None),
    user_id: int | None = Query(default=None),
    table_id: int | None = Query(default=None),
    view_id: int | None = Query(default=None),
) -> AuditLogListResponse:
    rows, total = audit_service.list_logs(
        db,
        page=page,
        size=size,
        action=action,
        user_id=user_id,
        table_id=table_id,
        view_id=view_id,
    )
    return AuditLogListResponse(
        data=[AuditLogResponse.model_validate(r) for r in rows],
        page=page,
        size=size,
        total=total,
    )
