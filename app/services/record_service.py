"""
Record service layer.

CRUD and listing for the rows of a table.  Cell values are addressed by
field id; payloads use ``{"<field_id>": value}`` maps for plain values and a
parallel ``formulas`` map for formula expressions.

Every write validates *all* incoming cells before touching the database,
recomputes the record's formula cells, and commits once.  The CSV import
pipeline inserts its rows through ``create_record`` so both paths apply the
same rules.

Listing filters and sorts in memory over the table's cell values; tables are
expected to stay in the thousands of rows.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.cell_value import CellValue
from app.models.data_table import DataTable
from app.models.record import Record
from app.models.table_field import TableField
from app.services.field_validation import CoercedCell, validate_cell_value, values_equal
from app.services.formula_service import recompute_record_formulas
from app.utils.constants import FIELD_TYPE_FORMULA, RECORD_FILTER_OPS, RECORD_PAGE_SIZE_MAX
from app.utils.exceptions import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


def get_table_or_404(db: Session, table_id: int) -> DataTable:
    table: DataTable | None = db.query(DataTable).filter(DataTable.id == table_id).first()
    if table is None:
        raise NotFoundError("Table", table_id)
    return table


def _get_record_or_404(db: Session, table_id: int, record_id: int) -> Record:
    record: Record | None = (
        db.query(Record)
        .filter(Record.id == record_id, Record.table_id == table_id)
        .first()
    )
    if record is None:
        raise NotFoundError("Record", record_id)
    return record


def _table_fields(db: Session, table_id: int) -> dict[int, TableField]:
    fields = (
        db.query(TableField)
        .filter(TableField.table_id == table_id)
        .order_by(TableField.id)
        .all()
    )
    return {f.id: f for f in fields}


def _parse_field_key(key: Any) -> int:
    """Field ids arrive as JSON object keys, i.e. strings."""
    if isinstance(key, bool):
        raise ValidationError(f"Unknown field id: {key}", details={"field_id": key})
    try:
        return int(key)
    except (TypeError, ValueError):
        raise ValidationError(f"Unknown field id: {key}", details={"field_id": key})


def upsert_cell(db: Session, record_id: int, field_id: int, coerced: CoercedCell) -> CellValue:
    """Insert or overwrite the cell at ``(record_id, field_id)``; no flush."""
    cell: CellValue | None = (
        db.query(CellValue)
        .filter(CellValue.record_id == record_id, CellValue.field_id == field_id)
        .first()
    )
    if cell is None:
        cell = CellValue(record_id=record_id, field_id=field_id)
        db.add(cell)
    cell.value_json = coerced.value
    cell.formula_expr = coerced.formula_expr
    cell.is_dirty = coerced.is_dirty
    return cell


def _validate_payload(
    fields: dict[int, TableField],
    values: dict[Any, Any] | None,
    formulas: dict[Any, str] | None,
) -> dict[int, CoercedCell]:
    """Validate every cell of a create/update payload; nothing is written."""
    values = values or {}
    formulas = formulas or {}
    raw_by_id: dict[int, tuple[Any, str | None, bool]] = {}
    for key, raw in values.items():
        raw_by_id[_parse_field_key(key)] = (raw, None, False)
    for key, expr in formulas.items():
        field_id = _parse_field_key(key)
        raw = raw_by_id.get(field_id, (None, None, False))[0]
        raw_by_id[field_id] = (raw, expr, True)

    coerced: dict[int, CoercedCell] = {}
    for field_id, (raw, expr, has_formula) in raw_by_id.items():
        field = fields.get(field_id)
        if field is None:
            raise ValidationError(
                f"Unknown field id: {field_id}", details={"field_id": field_id}
            )
        if field.readonly:
            raise ForbiddenError(f"Field {field.name} is readonly")
        if has_formula and field.type != FIELD_TYPE_FORMULA:
            raise ValidationError(f"{field.name} is not a formula field", field=field.name)
        coerced[field_id] = validate_cell_value(field, raw, expr)
    return coerced


def _serialize(record: Record, cells: list[CellValue]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    formulas: dict[str, str] = {}
    for cell in cells:
        values[str(cell.field_id)] = cell.value_json
        if cell.formula_expr is not None:
            formulas[str(cell.field_id)] = cell.formula_expr
    return {
        "id": record.id,
        "table_id": record.table_id,
        "readonly": record.readonly,
        "meta_json": record.meta_json or {},
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "values": values,
        "formulas": formulas,
    }


# ---------------------------------------------------------------------------
# Public service functions — write operations
# ---------------------------------------------------------------------------


def create_record(
    db: Session,
    table_id: int,
    values: dict[Any, Any] | None = None,
    formulas: dict[Any, str] | None = None,
    readonly: bool = False,
    meta: dict[str, Any] | None = None,
) -> Record:
    """Create a record with its initial cells and commit.

    Args:
        db: Active SQLAlchemy session.
        table_id: Parent table.
        values: ``{field_id: value}`` for the new cells.
        formulas: ``{field_id: expression}`` for formula cells.
        readonly: Initial readonly flag.
        meta: Free-form metadata.

    Returns:
        The persisted ``Record`` (with ``id`` set).

    Raises:
        NotFoundError: If the table does not exist.
        ValidationError: Unknown field id, bad value, or a formula supplied
            for a non-formula field.
        ForbiddenError: A readonly field was given a value.
    """
    get_table_or_404(db, table_id)
    coerced = _validate_payload(_table_fields(db, table_id), values, formulas)

    try:
        record = Record(table_id=table_id, readonly=readonly, meta_json=meta or {})
        db.add(record)
        db.flush()
        for field_id, cell in coerced.items():
            upsert_cell(db, record.id, field_id, cell)
        recompute_record_formulas(db, table_id, record.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    logger.info(
        "create_record: table_id=%d record_id=%d cells=%d", table_id, record.id, len(coerced)
    )
    return record


def update_record(
    db: Session,
    table_id: int,
    record_id: int,
    values: dict[Any, Any] | None = None,
    formulas: dict[Any, str] | None = None,
    readonly: bool | None = None,
    meta: dict[str, Any] | None = None,
) -> Record:
    """Apply a partial update to a record and recompute its formulas.

    Raises:
        NotFoundError: Missing table or record.
        ForbiddenError: The record is readonly, or a readonly field was
            targeted.
        ValidationError: Unknown field id or bad value.
    """
    get_table_or_404(db, table_id)
    record = _get_record_or_404(db, table_id, record_id)

    touches_cells = values is not None or formulas is not None
    if record.readonly and (touches_cells or readonly is not None or meta is not None):
        raise ForbiddenError(f"Record {record_id} is readonly")

    coerced: dict[int, CoercedCell] = {}
    if touches_cells:
        coerced = _validate_payload(_table_fields(db, table_id), values, formulas)

    try:
        if readonly is not None:
            record.readonly = readonly
        if meta is not None:
            record.meta_json = meta
        for field_id, cell in coerced.items():
            upsert_cell(db, record.id, field_id, cell)
        if touches_cells:
            recompute_record_formulas(db, table_id, record.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    logger.info(
        "update_record: table_id=%d record_id=%d cells=%d", table_id, record_id, len(coerced)
    )
    return record


def delete_record(db: Session, table_id: int, record_id: int) -> None:
    """Delete a record; its cells go with it (``ON DELETE CASCADE``)."""
    get_table_or_404(db, table_id)
    record = _get_record_or_404(db, table_id, record_id)
    try:
        db.delete(record)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("delete_record: table_id=%d record_id=%d", table_id, record_id)


# ---------------------------------------------------------------------------
# Public service functions — read operations
# ---------------------------------------------------------------------------


def get_record(db: Session, table_id: int, record_id: int) -> dict[str, Any]:
    """Return a record with its ``values`` (and ``formulas``) keyed by field id."""
    get_table_or_404(db, table_id)
    record = _get_record_or_404(db, table_id, record_id)
    cells = db.query(CellValue).filter(CellValue.record_id == record.id).all()
    return _serialize(record, cells)


def _matches(op: str, actual: Any, expected: Any) -> bool:
    if op == "is_null":
        return actual is None
    if op == "is_not_null":
        return actual is not None
    if actual is None:
        return False
    if op == "eq":
        return values_equal(actual, expected)
    if op == "ne":
        return not values_equal(actual, expected)
    if op == "contains":
        if isinstance(actual, list):
            return expected in actual
        return isinstance(actual, str) and isinstance(expected, str) and expected in actual
    if op == "in":
        return isinstance(expected, list) and any(values_equal(actual, e) for e in expected)
    try:
        if op == "lt":
            return actual < expected
        if op == "lte":
            return actual <= expected
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "between":
            return (
                isinstance(expected, list)
                and len(expected) == 2
                and expected[0] <= actual <= expected[1]
            )
    except TypeError:
        # Ordering across incompatible types (e.g. str vs number) never matches.
        return False
    return False


def _sort_key(value: Any) -> tuple:
    """Total order over heterogeneous cell values; ``None`` sorts first."""
    if value is None:
        return (0,)
    if isinstance(value, (bool, int, float)):
        return (1, float(value))
    if isinstance(value, str):
        return (2, value)
    return (3, repr(value))


def list_records(
    db: Session,
    table_id: int,
    page: int = 1,
    size: int = 20,
    filters: list[dict[str, Any]] | None = None,
    sort_field_id: int | None = None,
    sort_direction: str = "asc",
) -> tuple[list[dict[str, Any]], int]:
    """Return one page of records with their values, plus the filtered total.

    Args:
        db: Active SQLAlchemy session.
        table_id: Table to list.
        page: 1-based page number.
        size: Page size, clamped to ``1..RECORD_PAGE_SIZE_MAX``.
        filters: ``[{"field_id": int, "op": str, "value": any}]``, AND-ed.
        sort_field_id: Field to sort by; records sort by id otherwise.
        sort_direction: ``"asc"`` (nulls first) or ``"desc"`` (nulls last).
            Equal values always fall back to ascending id.

    Raises:
        NotFoundError: If the table does not exist.
        ValidationError: Unknown filter op or field id.
    """
    get_table_or_404(db, table_id)
    page = max(1, page)
    size = max(1, min(RECORD_PAGE_SIZE_MAX, size))
    fields = _table_fields(db, table_id)

    for flt in filters or []:
        if flt.get("op") not in RECORD_FILTER_OPS:
            raise ValidationError(f"Unsupported filter op: {flt.get('op')}")
        if flt.get("field_id") not in fields:
            raise ValidationError(
                f"Unknown field id: {flt.get('field_id')}",
                details={"field_id": flt.get("field_id")},
            )
    if sort_field_id is not None and sort_field_id not in fields:
        raise ValidationError(
            f"Unknown field id: {sort_field_id}", details={"field_id": sort_field_id}
        )

    records: list[Record] = (
        db.query(Record).filter(Record.table_id == table_id).order_by(Record.id).all()
    )
    cells_by_record: dict[int, list[CellValue]] = {}
    if records:
        cells = (
            db.query(CellValue)
            .join(Record, CellValue.record_id == Record.id)
            .filter(Record.table_id == table_id)
            .all()
        )
        for cell in cells:
            cells_by_record.setdefault(cell.record_id, []).append(cell)

    def _value(record: Record, field_id: int) -> Any:
        for cell in cells_by_record.get(record.id, []):
            if cell.field_id == field_id:
                return cell.value_json
        return None

    filtered = [
        r
        for r in records
        if all(_matches(f["op"], _value(r, f["field_id"]), f.get("value")) for f in filters or [])
    ]

    if sort_field_id is not None:
        # ``records`` is already in id order and sorted() is stable.
        filtered = sorted(
            filtered,
            key=lambda r: _sort_key(_value(r, sort_field_id)),
            reverse=sort_direction == "desc",
        )

    total = len(filtered)
    start = (page - 1) * size
    data = [_serialize(r, cells_by_record.get(r.id, [])) for r in filtered[start : start + size]]

    logger.debug(
        "list_records: table_id=%d page=%d size=%d total=%d returned=%d",
        table_id, page, size, total, len(data),
    )
    return data, total
