"""
Pydantic v2 schemas for the batch cell write endpoint.

``POST /api/tables/{table_id}/cells/batch-write`` accepts a ``BatchWriteRequest``
and answers with a ``BatchWriteResponse``; a stale revision answers 409 with
``details.conflicts`` shaped as a list of ``CellConflict``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CellWriteItem(BaseModel):
    """One cell write.

    Attributes:
        record_id: Target record.
        field_id: Target field.
        value: New value (``null`` empties the cell).  Ignored for formula
            fields.
        formula_expr: Expression; only allowed for formula fields.
    """

    record_id: int = Field(..., ge=1)
    field_id: int = Field(..., ge=1)
    value: Any = None
    formula_expr: str | None = None


class BatchWriteRequest(BaseModel):
    """Body of a batch write.

    Attributes:
        revision: Table revision the client last read.
        writes: Non-empty list of cell writes.
    """

    revision: int = Field(..., ge=0)
    writes: list[CellWriteItem] = Field(..., min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "revision": 7,
                "writes": [
                    {"record_id": 1, "field_id": 2, "value": 10},
                    {"record_id": 1, "field_id": 4, "formula_expr": "A + B"},
                ],
            }
        }
    )


class BatchWriteResponse(BaseModel):
    success: bool = True
    revision: int = Field(..., description="New table revision.")
    written: int = Field(..., ge=0, description="Number of writes in the request.")


class CellConflict(BaseModel):
    """A write whose target cell changed since the client's revision."""

    record_id: int
    field_id: int
    current_value: Any = None
    attempted_value: Any = None
    current_formula_expr: str | None = None
    attempted_formula_expr: str | None = None
