"""
Pydantic v2 schemas for the records endpoints.

Cell values travel as ``{"<field_id>": value}`` maps; formula expressions
travel in a parallel ``formulas`` map.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.utils.constants import RECORD_PAGE_SIZE_MAX


class RecordCreate(BaseModel):
    """Payload for ``POST /api/tables/{table_id}/records``."""

    values: dict[str, Any] = Field(default_factory=dict)
    formulas: dict[str, str] = Field(default_factory=dict)
    readonly: bool = False
    meta_json: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "values": {"1": 10, "2": 5, "4": "Widget"},
                "formulas": {"3": "A + B"},
            }
        }
    )


class RecordUpdate(BaseModel):
    """Partial update; omitted keys are left untouched."""

    values: dict[str, Any] | None = None
    formulas: dict[str, str] | None = None
    readonly: bool | None = None
    meta_json: dict[str, Any] | None = None


class RecordResponse(BaseModel):
    id: int
    table_id: int
    readonly: bool
    meta_json: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    values: dict[str, Any] = Field(default_factory=dict)
    formulas: dict[str, str] = Field(default_factory=dict)


class RecordFilter(BaseModel):
    """One AND-ed listing filter, e.g. ``{"field_id": 1, "op": "gte", "value": 10}``."""

    field_id: int
    op: Literal[
        "eq", "ne", "lt", "lte", "gt", "gte", "contains", "in", "between", "is_null", "is_not_null"
    ]
    value: Any = None


class RecordListResponse(BaseModel):
    data: list[RecordResponse]
    page: int = Field(..., ge=1)
    size: int = Field(..., ge=1, le=RECORD_PAGE_SIZE_MAX)
    total: int = Field(..., ge=0)
