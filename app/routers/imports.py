"""
CSV import router.

Mounts under ``/api/tables`` (prefix set in ``main.py``).

The upload endpoint requires ``WRITE_ROLES``; progress and the failure
report are readable by any authenticated user.  The upload handler is a
plain ``def`` so it runs in the threadpool and progress can be polled while
it works.

Endpoints
---------
POST /{table_id}/import                  — Upload a CSV (dry run or commit).
GET  /{table_id}/import/progress         — Progress of the current/last run.
GET  /{table_id}/import/failures-report  — CSV of the last failing rows.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Path, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.common import ErrorResponse
from app.schemas.imports import CommitResult, DryRunResult, ProgressSnapshot
from app.services import import_service
from app.services.auth_service import get_current_user, require_role
from app.services.import_state import ImportStateStore, get_import_state_store
from app.utils.constants import WRITE_ROLES
from app.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Import"])


# ---------------------------------------------------------------------------
# POST /{table_id}/import
# ---------------------------------------------------------------------------


@router.post(
    "/{table_id}/import",
    response_model=DryRunResult | CommitResult,
    summary="Import CSV",
    description=(
        "Uploads a CSV file as multipart/form-data. ``mapping`` is a JSON "
        'object of column index to field id, e.g. ``{"0": 3, "2": 5}``.'
    ),
    responses={
        403: {"model": ErrorResponse, "description": "Role not allowed."},
        404: {"model": ErrorResponse, "description": "Table not found."},
        422: {"model": ErrorResponse, "description": "Empty/malformed file or bad options."},
    },
)
def import_csv(
    file: Annotated[UploadFile, File(description="CSV file")],
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
    store: Annotated[ImportStateStore, Depends(get_import_state_store)],
    table_id: int = Path(..., ge=1),
    delimiter: Annotated[str, Form()] = ",",
    encoding: Annotated[str, Form()] = "utf-8",
    has_header: Annotated[bool, Form()] = True,
    mapping: Annotated[str | None, Form()] = None,
    ignore_unknown_columns: Annotated[bool, Form()] = True,
    dry_run: Annotated[bool, Form()] = False,
    rollback_on_error: Annotated[bool, Form()] = True,
) -> DryRunResult | CommitResult:
    options = import_service.ImportOptions(
        delimiter=delimiter,
        encoding=encoding,
        has_header=has_header,
        mapping=import_service.parse_mapping_json(mapping),
        ignore_unknown_columns=ignore_unknown_columns,
        dry_run=dry_run,
        rollback_on_error=rollback_on_error,
    )
    raw = file.file.read()
    logger.info(
        "import_csv: user='%s' table_id=%d file='%s' bytes=%d",
        current_user.username, table_id, file.filename, len(raw),
    )
    return import_service.import_csv(db, table_id, current_user, raw, options, store=store)


# ---------------------------------------------------------------------------
# GET /{table_id}/import/progress
# ---------------------------------------------------------------------------


@router.get(
    "/{table_id}/import/progress",
    response_model=ProgressSnapshot,
    summary="Import progress",
)
def get_progress(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[ImportStateStore, Depends(get_import_state_store)],
    table_id: int = Path(..., ge=1),
) -> ProgressSnapshot:
    return store.get_progress(table_id)


# ---------------------------------------------------------------------------
# GET /{table_id}/import/failures-report
# ---------------------------------------------------------------------------


@router.get(
    "/{table_id}/import/failures-report",
    summary="Download last failure report",
    responses={
        200: {"content": {"text/csv": {}}, "description": "Failing rows as CSV."},
        404: {"model": ErrorResponse, "description": "No failure report stored."},
    },
)
def get_failures_report(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[ImportStateStore, Depends(get_import_state_store)],
    table_id: int = Path(..., ge=1),
) -> Response:
    report = store.get_last_failure_report(table_id)
    if report is None:
        raise NotFoundError("Failure report", message=f"No failure report for table {table_id}")
    filename = f"import-failures-table-{table_id}.csv"
    return Response(
        content=report.to_csv_bytes(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
