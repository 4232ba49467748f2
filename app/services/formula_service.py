"""
Formula recomputation for a single record.

Formula cells reference number cells of the *same* record only, so there is
no cross-record dependency graph: after any write that touches a record, the
caller runs ``recompute_record_formulas`` for that record inside its own
transaction.

The pass only flushes; committing (or rolling back) is always the caller's
decision.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.formulas import evaluate_expression
from app.models.cell_value import CellValue
from app.models.table_field import TableField
from app.services.field_validation import get_precision, round_to_precision
from app.utils.constants import FIELD_TYPE_FORMULA, FIELD_TYPE_NUMBER

logger = logging.getLogger(__name__)


def build_formula_context(
    fields: list[TableField], cells_by_field: dict[int, CellValue]
) -> dict[str, float]:
    """Map field name and ``str(field.id)`` to each numeric number-cell value.

    Booleans, strings and empty cells are left out, so a formula that refers
    to them evaluates to None.
    """
    context: dict[str, float] = {}
    for field in fields:
        if field.type != FIELD_TYPE_NUMBER:
            continue
        cell = cells_by_field.get(field.id)
        if cell is None:
            continue
        value = cell.value_json
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        context[field.name] = value
        context[str(field.id)] = value
    return context


def recompute_record_formulas(
    db: Session,
    table_id: int,
    record_id: int,
    now: datetime | None = None,
) -> int:
    """Re-evaluate every formula cell of a record.

    Args:
        db: Session holding the caller's open transaction.
        table_id: Table the record belongs to.
        record_id: Record to recompute.
        now: Timestamp stored as ``computed_at``; defaults to the current
            UTC time.

    Returns:
        Number of formula cells recomputed.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    # Cells staged by the caller must be visible to the queries below.
    db.flush()

    fields: list[TableField] = (
        db.query(TableField)
        .filter(TableField.table_id == table_id)
        .order_by(TableField.id)
        .all()
    )
    if not any(f.type == FIELD_TYPE_FORMULA for f in fields):
        return 0

    cells: list[CellValue] = (
        db.query(CellValue).filter(CellValue.record_id == record_id).all()
    )
    cells_by_field = {c.field_id: c for c in cells}
    context = build_formula_context(fields, cells_by_field)

    recomputed = 0
    for field in fields:
        if field.type != FIELD_TYPE_FORMULA:
            continue
        cell = cells_by_field.get(field.id)
        if cell is None or not cell.formula_expr:
            continue

        result = evaluate_expression(cell.formula_expr, context)
        precision = get_precision(field.options)
        if result is not None and precision is not None:
            result = round_to_precision(result, precision)

        cell.value_json = result
        cell.computed_at = now
        cell.is_dirty = False
        recomputed += 1

    db.flush()
    logger.debug(
        "recompute_record_formulas: table_id=%d record_id=%d recomputed=%d",
        table_id, record_id, recomputed,
    )
    return recomputed
