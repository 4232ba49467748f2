"""
Pydantic v2 schemas for the CSV import module.

Covers:
- Per-row validation issues collected during an import.
- Dry-run and commit results of ``POST /api/tables/{table_id}/import``.
- The progress snapshot of ``GET /api/tables/{table_id}/import/progress``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Row errors
# ---------------------------------------------------------------------------


class RowIssue(BaseModel):
    """One failing cell (or a row-level failure when ``column_index`` is None)."""

    column_index: int | None = None
    field_id: int | None = None
    message: str


class RowError(BaseModel):
    """All issues of one source row.

    Attributes:
        row: 1-based line number in the source file, header included.
        issues: Failing cells of that row.
    """

    row: int = Field(..., ge=1)
    issues: list[RowIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class DryRunResult(BaseModel):
    """Outcome of a validation-only import; nothing was written."""

    dry_run: bool = True
    total_rows: int = Field(..., ge=0)
    valid: int = Field(..., ge=0)
    invalid: int = Field(..., ge=0)
    errors: list[RowError] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "dry_run": True,
                "total_rows": 3,
                "valid": 2,
                "invalid": 1,
                "errors": [
                    {"row": 3, "issues": [{"column_index": 0, "field_id": 1, "message": "A expects number, got 'abc'"}]}
                ],
            }
        }
    )


class CommitResult(BaseModel):
    """Outcome of a committing import.

    ``invalid`` counts rows that failed validation plus the row whose insert
    failed, if any.  ``inserted`` is the number of records retained after a
    rollback.
    """

    dry_run: bool = False
    total_rows: int = Field(..., ge=0)
    inserted: int = Field(..., ge=0)
    invalid: int = Field(..., ge=0)
    errors: list[RowError] = Field(default_factory=list)
    rolled_back: bool = False


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressSnapshot(BaseModel):
    """Latest known state of the current (or last) import for a table."""

    run_id: str | None = None
    status: str = "idle"
    total: int = 0
    processed: int = 0
    percent: int = Field(default=0, ge=0, le=100)
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
