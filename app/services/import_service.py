"""
CSV import service layer.

Handles CSV uploads end-to-end:

1. Tokenise the raw bytes with pandas (quote-aware; embedded delimiters and
   newlines, doubled quotes and CR/LF all handled by the CSV reader).
2. Derive the header (real first row or ``col1..colN``) and map columns to
   fields: an explicit ``{column_index: field_id}`` mapping wins, otherwise
   header cells match a field by exact name, then by id.
3. Validate every body row with ``coerce_csv_value``.  Invalid rows are
   collected with their 1-based source line and do not stop validation
   (fail-soft).
4. Dry run: report counts and store the failure report.  Commit: insert the
   valid rows one by one through ``record_service.create_record``, stopping
   at the first insert failure (fail-fast) and, unless disabled, deleting
   every record created by this run.
5. Write one ``import`` audit row and publish progress to the
   ``ImportStateStore`` throughout.

Row numbering
-------------
Blank lines are skipped before numbering, so ``row`` is the position among
non-blank lines: ``index + 2`` with a header, ``index + 1`` without.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
from pandas.errors import EmptyDataError, ParserError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.record import Record
from app.models.table_field import TableField
from app.models.user import User
from app.schemas.imports import CommitResult, DryRunResult, RowError, RowIssue
from app.services import audit_service, import_state, record_service
from app.services.field_validation import coerce_csv_value
from app.services.import_state import FailedRow, FailureReport, ImportStateStore
from app.utils.constants import (
    IMPORT_STATUS_DONE,
    IMPORT_STATUS_ERROR,
    IMPORT_STATUS_INSERTING,
    LOG_ACTION_IMPORT,
)
from app.utils.exceptions import AppException, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass
class ImportOptions:
    """Per-request import settings.

    Attributes:
        delimiter: Single character; ``"\\t"`` or ``"tab"`` select tabs.
        encoding: Text encoding of the file; a UTF-8 BOM is tolerated.
        has_header: Whether the first row is a header.
        mapping: ``{column_index: field_id}``; overrides header matching.
        ignore_unknown_columns: When False, non-blank cells in columns that
            map to no field are row errors.
        dry_run: Validate only; nothing is written.
        rollback_on_error: Delete the records created by this run when an
            insert fails.
    """

    delimiter: str = ","
    encoding: str = "utf-8"
    has_header: bool = True
    mapping: dict[int, int] = field(default_factory=dict)
    ignore_unknown_columns: bool = True
    dry_run: bool = False
    rollback_on_error: bool = True


def parse_mapping_json(text: str | None) -> dict[int, int]:
    """Parse a ``{"<column_index>": <field_id>}`` JSON object from a form field."""
    if text is None or not text.strip():
        return {}
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"mapping is not valid JSON: {exc.msg}", field="mapping") from exc
    if not isinstance(raw, dict):
        raise ValidationError("mapping must be a JSON object", field="mapping")
    mapping: dict[int, int] = {}
    for key, value in raw.items():
        try:
            column = int(key)
            field_id = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"mapping entry {key!r}: {value!r} is not column index -> field id",
                field="mapping",
            ) from exc
        mapping[column] = field_id
    return mapping


def _normalise_delimiter(delimiter: str | None) -> str:
    if delimiter is None or delimiter == "":
        return ","
    if delimiter in ("\\t", "tab", "TAB"):
        return "\t"
    if len(delimiter) != 1 or delimiter in ('"', "\n", "\r"):
        raise ValidationError(f"Unsupported delimiter: {delimiter!r}", field="delimiter")
    return delimiter


# ---------------------------------------------------------------------------
# Tokenising
# ---------------------------------------------------------------------------


def parse_csv_bytes(raw: bytes, delimiter: str = ",", encoding: str = "utf-8") -> list[list[str]]:
    """Split CSV bytes into rows of cell strings.

    The first non-blank row fixes the width: shorter rows are padded with
    empty cells, cells beyond the width are dropped.  Blank lines and rows
    whose cells are all blank are skipped.

    Raises:
        ValidationError: Empty input, undecodable bytes, unknown encoding or
            malformed CSV (e.g. an unterminated quote).
    """
    sep = _normalise_delimiter(delimiter)
    enc = (encoding or "utf-8").strip()
    if enc.lower().replace("_", "-") in ("utf-8", "utf8"):
        enc = "utf-8-sig"

    dropped: list[int] = []

    def _truncate(bad_line: list[str]) -> list[str]:
        dropped.append(len(bad_line) - width)
        return bad_line[:width]

    read_kwargs: dict[str, Any] = dict(
        sep=sep,
        header=None,
        dtype=str,
        keep_default_na=False,
        na_filter=False,
        skip_blank_lines=True,
        encoding=enc,
        engine="python",
        quotechar='"',
        doublequote=True,
        quoting=csv.QUOTE_MINIMAL,
    )
    try:
        first = pd.read_csv(io.BytesIO(raw), nrows=1, **read_kwargs)
        width = first.shape[1]
        frame = pd.read_csv(io.BytesIO(raw), on_bad_lines=_truncate, **read_kwargs)
    except EmptyDataError as exc:
        raise ValidationError("CSV content is empty", field="file") from exc
    except LookupError as exc:
        raise ValidationError(f"Unknown encoding: {encoding}", field="encoding") from exc
    except UnicodeDecodeError as exc:
        raise ValidationError(f"File is not valid {encoding}: {exc.reason}", field="encoding") from exc
    except ParserError as exc:
        raise ValidationError(f"Malformed CSV: {exc}", field="file") from exc

    if dropped:
        logger.warning(
            "parse_csv_bytes: %d row(s) wider than %d columns were truncated", len(dropped), width
        )

    rows = [
        ["" if cell is None or (isinstance(cell, float) and pd.isna(cell)) else str(cell) for cell in row]
        for row in frame.itertuples(index=False, name=None)
    ]
    rows = [row for row in rows if any(cell.strip() for cell in row)]
    if not rows:
        raise ValidationError("CSV content is empty", field="file")
    return rows


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


def build_column_map(
    header: list[str],
    fields: list[TableField],
    mapping: dict[int, int] | None = None,
) -> list[TableField | None]:
    """Return, per header column, the field it feeds (or None).

    Raises:
        ValidationError: An explicit mapping names a field id that is not in
            the table, or a column index outside the header.
    """
    if mapping:
        by_id = {f.id: f for f in fields}
        columns: list[TableField | None] = [None] * len(header)
        for column, field_id in mapping.items():
            if field_id not in by_id:
                raise ValidationError(
                    f"Unknown field id in mapping: {field_id}",
                    field="mapping",
                    details={"field_id": field_id},
                )
            if column < 0 or column >= len(header):
                raise ValidationError(
                    f"Mapping column index out of range: {column}",
                    field="mapping",
                    details={"column_index": column},
                )
            columns[column] = by_id[field_id]
        return columns

    by_name = {f.name: f for f in fields}
    by_id_str = {str(f.id): f for f in fields}
    return [by_name.get(h) or by_id_str.get(h) for h in header]


def _issue_text(issue: RowIssue) -> str:
    if issue.column_index is None:
        return issue.message
    label = f"col{issue.column_index + 1}"
    if issue.field_id is not None:
        label += f"(#{issue.field_id})"
    return f"{label}: {issue.message}"


def _validate_row(
    row: list[str],
    columns: list[TableField | None],
    ignore_unknown_columns: bool,
) -> tuple[dict[str, Any], list[RowIssue]]:
    settings = get_settings()
    values: dict[str, Any] = {}
    issues: list[RowIssue] = []
    for index, target in enumerate(columns):
        raw = row[index] if index < len(row) else ""
        if target is None:
            if not ignore_unknown_columns and raw.strip():
                issues.append(
                    RowIssue(
                        column_index=index,
                        message=f"column {index + 1} does not match any field",
                    )
                )
            continue
        try:
            coerced = coerce_csv_value(
                target, raw, settings.IMPORT_TRUE_TOKENS, settings.IMPORT_FALSE_TOKENS
            )
        except AppException as exc:
            issues.append(RowIssue(column_index=index, field_id=target.id, message=exc.message))
            continue
        if coerced.present:
            values[str(target.id)] = coerced.value
    return values, issues


def _failed_row(row_number: int, cells: list[str], messages: list[str]) -> FailedRow:
    return FailedRow(row=row_number, values=list(cells), errors=messages)


# ---------------------------------------------------------------------------
# Public service function
# ---------------------------------------------------------------------------


def import_csv(
    db: Session,
    table_id: int,
    user: User | None,
    raw: bytes,
    options: ImportOptions | None = None,
    store: ImportStateStore | None = None,
) -> DryRunResult | CommitResult:
    """Import CSV bytes into table *table_id*.

    Args:
        db: Active SQLAlchemy session.
        table_id: Target table.
        user: Acting user, recorded in the audit row.
        raw: File content.
        options: Import settings; defaults to ``ImportOptions()``.
        store: Progress/report store; defaults to the process-wide one.

    Returns:
        ``DryRunResult`` when ``options.dry_run`` is set, else
        ``CommitResult``.

    Raises:
        NotFoundError: The table does not exist.
        ValidationError: Empty or oversized file, malformed CSV, bad
            delimiter/encoding, or an invalid explicit mapping.
    """
    options = options or ImportOptions()
    if store is None:
        store = import_state.import_state_store

    if not raw:
        raise ValidationError("CSV file is missing or empty", field="file")
    max_bytes = get_settings().IMPORT_MAX_BYTES
    if len(raw) > max_bytes:
        raise ValidationError(f"CSV file exceeds {max_bytes} bytes", field="file")

    record_service.get_table_or_404(db, table_id)
    delimiter = _normalise_delimiter(options.delimiter)
    rows = parse_csv_bytes(raw, delimiter, options.encoding)

    if options.has_header:
        header = [cell.strip() for cell in rows[0]]
        body = rows[1:]
    else:
        header = [f"col{i + 1}" for i in range(len(rows[0]))]
        body = rows
    offset = 2 if options.has_header else 1

    fields: list[TableField] = (
        db.query(TableField)
        .filter(TableField.table_id == table_id)
        .order_by(TableField.id)
        .all()
    )
    columns = build_column_map(header, fields, options.mapping)

    run = store.start_run(table_id, total=len(body))
    user_id = user.id if user is not None else None
    logger.info(
        "import_csv: table_id=%d run_id=%s rows=%d dry_run=%s user_id=%s",
        table_id, run.run_id, len(body), options.dry_run, user_id,
    )

    try:
        errors: list[RowError] = []
        report_rows: list[FailedRow] = []
        valid_rows: list[tuple[int, dict[str, Any], list[str]]] = []

        for index, row in enumerate(body):
            row_number = index + offset
            values, issues = _validate_row(row, columns, options.ignore_unknown_columns)
            if issues:
                errors.append(RowError(row=row_number, issues=issues))
                report_rows.append(
                    _failed_row(row_number, row, [_issue_text(i) for i in issues])
                )
            else:
                valid_rows.append((row_number, values, row))

        def _report(source: str, failed: list[FailedRow]) -> FailureReport:
            return FailureReport(
                source=source,
                headers=header,
                rows=failed,
                total_rows=len(body),
                delimiter=delimiter,
                has_header=options.has_header,
            )

        # -- dry run --------------------------------------------------------
        if options.dry_run:
            audit_service.append_log(
                db,
                LOG_ACTION_IMPORT,
                user_id=user_id,
                table_id=table_id,
                count=0,
                meta={"dry_run": True, "total_rows": len(body), "invalid": len(errors)},
            )
            db.commit()
            store.set_last_failure_report(table_id, _report("dry_run", report_rows), run=run)
            store.update_run(
                run,
                status=IMPORT_STATUS_DONE,
                processed=len(body),
                message="dry run completed",
            )
            logger.info(
                "import_csv: dry run table_id=%d valid=%d invalid=%d",
                table_id, len(valid_rows), len(errors),
            )
            return DryRunResult(
                total_rows=len(body),
                valid=len(valid_rows),
                invalid=len(errors),
                errors=errors,
            )

        # -- commit ---------------------------------------------------------
        store.update_run(run, status=IMPORT_STATUS_INSERTING, total=len(valid_rows), processed=0)
        created_ids: list[int] = []
        insert_error: tuple[int, str, list[str]] | None = None

        for position, (row_number, values, cells) in enumerate(valid_rows, start=1):
            try:
                record = record_service.create_record(db, table_id, values=values)
            except AppException as exc:
                insert_error = (row_number, exc.message, cells)
            except Exception as exc:
                logger.exception("import_csv: insert failed at row %d", row_number)
                insert_error = (row_number, str(exc) or exc.__class__.__name__, cells)
            if insert_error is not None:
                store.update_run(run, message=insert_error[1])
                break
            created_ids.append(record.id)
            store.update_run(run, processed=position)

        rolled_back = False
        if insert_error is not None and options.rollback_on_error and created_ids:
            db.query(Record).filter(Record.id.in_(created_ids)).delete(synchronize_session=False)
            rolled_back = True
            logger.warning(
                "import_csv: rolled back %d record(s) on table_id=%d after row %d failed",
                len(created_ids), table_id, insert_error[0],
            )

        retained = 0 if rolled_back else len(created_ids)
        audit_service.append_log(
            db,
            LOG_ACTION_IMPORT,
            user_id=user_id,
            table_id=table_id,
            count=retained,
            meta={"dry_run": False, "total_rows": len(body), "rolled_back": rolled_back},
        )
        db.commit()

        if insert_error is not None:
            row_number, message, cells = insert_error
            errors.append(RowError(row=row_number, issues=[RowIssue(message=message)]))
            store.set_last_failure_report(
                table_id, _report("import", [_failed_row(row_number, cells, [message])]), run=run
            )
            store.update_run(run, status=IMPORT_STATUS_ERROR, message=message)
        else:
            store.set_last_failure_report(table_id, None, run=run)
            store.update_run(run, status=IMPORT_STATUS_DONE, total=len(body), processed=len(body))

        logger.info(
            "import_csv: table_id=%d inserted=%d invalid=%d rolled_back=%s",
            table_id, retained, len(errors), rolled_back,
        )
        return CommitResult(
            total_rows=len(body),
            inserted=retained,
            invalid=len(errors),
            errors=errors,
            rolled_back=rolled_back,
        )

    except Exception as exc:
        db.rollback()
        if run.active:
            store.update_run(run, status=IMPORT_STATUS_ERROR, message=str(exc))
        logger.exception("import_csv: run %s failed on table_id=%d", run.run_id, table_id)
        raise
