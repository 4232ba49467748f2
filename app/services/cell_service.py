"""
Batch cell write engine.

``batch_write`` applies a list of cell writes to one table as a single
atomic unit guarded by the table's ``revision`` (optimistic concurrency):

1. A stale ``expected_revision`` fails with ``ConflictError`` listing the
   writes whose attempted value differs from what is stored now.
2. Every referenced record and field is resolved within the table; missing
   ids, readonly targets and misplaced formulas fail the whole batch.
3. Every write is validated before anything is written.
4. One transaction performs a compare-and-increment on the revision, upserts
   the cells, recomputes formulas of the touched records and appends the
   ``write_cells`` audit row.

The compare-and-increment (``UPDATE ... WHERE revision = :expected``) is what
serializes concurrent batches on the same table: of two writers that both
passed step 1 against the same revision, only one updates a row and the
other gets a fresh conflict.  Batches on different tables never contend.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.cell_value import CellValue
from app.models.data_table import DataTable
from app.models.record import Record
from app.models.table_field import TableField
from app.models.user import User
from app.schemas.cells import BatchWriteResponse, CellConflict, CellWriteItem
from app.services import audit_service
from app.services.field_validation import CoercedCell, validate_cell_value, values_equal
from app.services.formula_service import recompute_record_formulas
from app.services.record_service import get_table_or_404, upsert_cell
from app.utils.constants import FIELD_TYPE_FORMULA, LOG_ACTION_WRITE_CELLS
from app.utils.exceptions import AppException, ConflictError, ForbiddenError, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conflict detection
# ---------------------------------------------------------------------------


def _attempted(field: TableField, write: CellWriteItem) -> tuple[Any, str | None]:
    """Normalised (value, formula) the client tried to store.

    A write that would not validate is reported with its raw value so the
    client can still see what it sent.
    """
    try:
        coerced = validate_cell_value(field, write.value, write.formula_expr)
    except AppException:
        return write.value, write.formula_expr
    return coerced.value, coerced.formula_expr


def detect_conflicts(
    db: Session, table_id: int, writes: list[CellWriteItem]
) -> list[CellConflict]:
    """Compare each write against the stored cell at its (record, field) key.

    Only the batch's own keys are loaded.  Formula cells compare the stored
    expression (their value is derived); every other cell compares values.
    Writes that match what is stored are not conflicts.
    """
    keys = {(w.record_id, w.field_id) for w in writes}
    record_ids = {k[0] for k in keys}
    field_ids = {k[1] for k in keys}

    fields = {
        f.id: f
        for f in db.query(TableField)
        .filter(TableField.table_id == table_id, TableField.id.in_(field_ids))
        .all()
    }
    cells = {
        (c.record_id, c.field_id): c
        for c in db.query(CellValue)
        .join(Record, CellValue.record_id == Record.id)
        .filter(
            Record.table_id == table_id,
            CellValue.record_id.in_(record_ids),
            CellValue.field_id.in_(field_ids),
        )
        .all()
        if (c.record_id, c.field_id) in keys
    }

    conflicts: list[CellConflict] = []
    for write in writes:
        field = fields.get(write.field_id)
        if field is None:
            # Reported by the normal resolution step once the revision is current.
            continue
        cell = cells.get((write.record_id, write.field_id))
        current_value = cell.value_json if cell is not None else None
        current_formula = cell.formula_expr if cell is not None else None
        attempted_value, attempted_formula = _attempted(field, write)

        if field.type == FIELD_TYPE_FORMULA:
            changed = current_formula != attempted_formula
        else:
            changed = not values_equal(current_value, attempted_value)

        if changed:
            conflicts.append(
                CellConflict(
                    record_id=write.record_id,
                    field_id=write.field_id,
                    current_value=current_value,
                    attempted_value=attempted_value,
                    current_formula_expr=current_formula,
                    attempted_formula_expr=attempted_formula,
                )
            )
    return conflicts


def _conflict_error(db: Session, table_id: int, writes: list[CellWriteItem]) -> ConflictError:
    latest: int = (
        db.query(DataTable.revision).filter(DataTable.id == table_id).scalar() or 0
    )
    conflicts = detect_conflicts(db, table_id, writes)
    logger.warning(
        "batch_write: stale revision on table_id=%d latest=%d conflicts=%d",
        table_id, latest, len(conflicts),
    )
    return ConflictError(
        "Revision conflict",
        latest_revision=latest,
        conflicts=[c.model_dump() for c in conflicts],
    )


# ---------------------------------------------------------------------------
# Resolution and validation
# ---------------------------------------------------------------------------


def _resolve_and_validate(
    db: Session, table_id: int, writes: list[CellWriteItem]
) -> tuple[dict[tuple[int, int], CoercedCell], set[int]]:
    """Resolve targets and validate every write; nothing is written.

    Returns the coerced cells keyed by (record_id, field_id), last write
    winning for duplicate keys, and the set of touched record ids.
    """
    record_ids = {w.record_id for w in writes}
    field_ids = {w.field_id for w in writes}
    records = {
        r.id: r
        for r in db.query(Record)
        .filter(Record.table_id == table_id, Record.id.in_(record_ids))
        .all()
    }
    fields = {
        f.id: f
        for f in db.query(TableField)
        .filter(TableField.table_id == table_id, TableField.id.in_(field_ids))
        .all()
    }

    for write in writes:
        record = records.get(write.record_id)
        field = fields.get(write.field_id)
        if record is None:
            raise ValidationError(
                f"Record not found: {write.record_id}", details={"record_id": write.record_id}
            )
        if field is None:
            raise ValidationError(
                f"Field not found: {write.field_id}", details={"field_id": write.field_id}
            )
        if record.readonly:
            raise ForbiddenError(f"Record {record.id} is readonly")
        if field.readonly:
            raise ForbiddenError(f"Field {field.name} is readonly")
        if write.formula_expr is not None and field.type != FIELD_TYPE_FORMULA:
            raise ValidationError(f"{field.name} is not a formula field", field=field.name)

    coerced: dict[tuple[int, int], CoercedCell] = {}
    for write in writes:
        field = fields[write.field_id]
        coerced[(write.record_id, write.field_id)] = validate_cell_value(
            field, write.value, write.formula_expr
        )
    return coerced, record_ids


# ---------------------------------------------------------------------------
# Public service function
# ---------------------------------------------------------------------------


def batch_write(
    db: Session,
    table_id: int,
    expected_revision: int,
    writes: list[CellWriteItem],
    user: User | None,
) -> BatchWriteResponse:
    """Apply *writes* to table *table_id* if it is still at *expected_revision*.

    Args:
        db: Active SQLAlchemy session.
        table_id: Target table.
        expected_revision: Revision the client last read.
        writes: Cell writes; duplicate (record, field) pairs resolve to the
            last one.
        user: Acting user, recorded in the audit row.

    Returns:
        ``BatchWriteResponse`` with the new revision and the request's write
        count.

    Raises:
        NotFoundError: The table does not exist.
        ConflictError: The revision is stale (before or during the write).
        ValidationError: Empty batch, unknown record/field id, bad value or
            a formula for a non-formula field.
        ForbiddenError: A target record or field is readonly.
    """
    if not writes:
        raise ValidationError("writes required")

    table = get_table_or_404(db, table_id)
    if table.revision != expected_revision:
        raise _conflict_error(db, table_id, writes)

    coerced, record_ids = _resolve_and_validate(db, table_id, writes)

    try:
        result = db.execute(
            update(DataTable)
            .where(DataTable.id == table_id, DataTable.revision == expected_revision)
            .values(revision=DataTable.revision + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise _conflict_error(db, table_id, writes)

        for (record_id, field_id), cell in coerced.items():
            upsert_cell(db, record_id, field_id, cell)
        for record_id in sorted(record_ids):
            recompute_record_formulas(db, table_id, record_id)

        audit_service.append_log(
            db,
            LOG_ACTION_WRITE_CELLS,
            user_id=user.id if user is not None else None,
            table_id=table_id,
            count=len(writes),
        )
        db.commit()
    except ConflictError:
        raise
    except Exception:
        db.rollback()
        logger.exception("batch_write: rolled back table_id=%d", table_id)
        raise

    new_revision = expected_revision + 1
    logger.info(
        "batch_write: table_id=%d revision=%d written=%d user_id=%s",
        table_id, new_revision, len(writes), user.id if user is not None else None,
    )
    return BatchWriteResponse(success=True, revision=new_revision, written=len(writes))
