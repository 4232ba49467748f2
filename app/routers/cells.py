"""
Cells router.

Mounts under ``/api/tables`` (prefix set in ``main.py``).

Endpoints
---------
POST /{table_id}/cells/batch-write — Revision-guarded batch cell write.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.cells import BatchWriteRequest, BatchWriteResponse
from app.schemas.common import ErrorResponse
from app.services import cell_service
from app.services.auth_service import require_role
from app.utils.constants import WRITE_ROLES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cells"])


@router.post(
    "/{table_id}/cells/batch-write",
    response_model=BatchWriteResponse,
    summary="Batch write cells",
    description=(
        "Writes a batch of cells if the table is still at ``revision``. The "
        "whole batch is validated first and applied atomically; the table "
        "revision increases by exactly one."
    ),
    responses={
        403: {"model": ErrorResponse, "description": "Readonly record/field or role not allowed."},
        404: {"model": ErrorResponse, "description": "Table not found."},
        409: {"model": ErrorResponse, "description": "Stale revision; details list the conflicts."},
        422: {"model": ErrorResponse, "description": "Invalid write."},
    },
)
def batch_write(
    body: BatchWriteRequest,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
    table_id: int = Path(..., ge=1),
) -> BatchWriteResponse:
    logger.debug(
        "batch_write: user='%s' table_id=%d writes=%d",
        current_user.username, table_id, len(body.writes),
    )
    return cell_service.batch_write(db, table_id, body.revision, body.writes, current_user)
