"""
Records router.

Mounts under ``/api/tables`` (prefix set in ``main.py``).  Reads are open to
any authenticated user; writes require ``WRITE_ROLES``.

Endpoints
---------
GET    /{table_id}/records              — Filtered, sorted, paginated list.
GET    /{table_id}/records/{record_id}  — One record with its values.
POST   /{table_id}/records              — Create a record.
PUT    /{table_id}/records/{record_id}  — Partially update a record.
DELETE /{table_id}/records/{record_id}  — Delete a record.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

import pydantic
from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.records import (
    RecordCreate,
    RecordFilter,
    RecordListResponse,
    RecordResponse,
    RecordUpdate,
)
from app.services import record_service
from app.services.auth_service import get_current_user, require_role
from app.utils.constants import RECORD_PAGE_SIZE_MAX, WRITE_ROLES
from app.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Records"])

_FILTERS_ADAPTER = TypeAdapter(list[RecordFilter])


def _parse_filters(filters: str | None) -> list[dict]:
    if filters is None or not filters.strip():
        return []
    try:
        parsed = _FILTERS_ADAPTER.validate_json(filters)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "filters must be a JSON list of {field_id, op, value}",
            field="filters",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
    return [f.model_dump() for f in parsed]


@router.get(
    "/{table_id}/records",
    response_model=RecordListResponse,
    summary="List records",
)
def list_records(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    table_id: int = Path(..., ge=1),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=RECORD_PAGE_SIZE_MAX),
    filters: str | None = Query(
        default=None,
        description='JSON list, e.g. [{"field_id": 1, "op": "gte", "value": 10}]',
    ),
    sort_field_id: int | None = Query(default=None, ge=1),
    sort_direction: Literal["asc", "desc"] = Query(default="asc"),
) -> RecordListResponse:
    data, total = record_service.list_records(
        db,
        table_id,
        page=page,
        size=size,
        filters=_parse_filters(filters),
        sort_field_id=sort_field_id,
        sort_direction=sort_direction,
    )
    return RecordListResponse(data=data, page=page, size=size, total=total)


@router.get(
    "/{table_id}/records/{record_id}",
    response_model=RecordResponse,
    summary="Get record",
)
def get_record(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    table_id: int = Path(..., ge=1),
    record_id: int = Path(..., ge=1),
) -> RecordResponse:
    return RecordResponse(**record_service.get_record(db, table_id, record_id))


@router.post(
    "/{table_id}/records",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create record",
)
def create_record(
    body: RecordCreate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
    table_id: int = Path(..., ge=1),
) -> RecordResponse:
    record = record_service.create_record(
        db,
        table_id,
        values=body.values,
        formulas=body.formulas,
        readonly=body.readonly,
        meta=body.meta_json,
    )
    return RecordResponse(**record_service.get_record(db, table_id, record.id))


@router.put(
    "/{table_id}/records/{record_id}",
    response_model=RecordResponse,
    summary="Update record",
)
def update_record(
    body: RecordUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
    table_id: int = Path(..., ge=1),
    record_id: int = Path(..., ge=1),
) -> RecordResponse:
    record_service.update_record(
        db,
        table_id,
        record_id,
        values=body.values,
        formulas=body.formulas,
        readonly=body.readonly,
        meta=body.meta_json,
    )
    return RecordResponse(**record_service.get_record(db, table_id, record_id))


@router.delete(
    "/{table_id}/records/{record_id}",
    response_model=MessageResponse,
    summary="Delete record",
)
def delete_record(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(require_role(*WRITE_ROLES))],
    table_id: int = Path(..., ge=1),
    record_id: int = Path(..., ge=1),
) -> MessageResponse:
    record_service.delete_record(db, table_id, record_id)
    return MessageResponse(message=f"Record {record_id} deleted")
