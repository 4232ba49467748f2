"""
Field-type validation and coercion shared by every write path.

Two entry points:

``validate_cell_value``
    Typed input (JSON values from a batch write or a record payload).
    Returns the normalised value, the formula expression to store and the
    dirty flag, or raises ``ValidationError``.

``coerce_csv_value``
    String input from a CSV cell.  Trims, skips blanks, parses numbers with
    thousands separators, maps boolean tokens, splits multi-select lists,
    then runs the parsed value through ``validate_cell_value`` so both paths
    apply identical range, option and precision rules.

Every error message starts with the field name so aggregated import reports
can attribute a failure to its column.

Rounding policy
---------------
``precision`` rounds half-up on the *decimal* representation of the value
(``Decimal(repr(x))``), so ``1.005`` becomes ``1.01`` even though the binary
float is slightly below it.  The same helper is used for formula results.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any

from app.config import get_settings
from app.formulas.errors import FormulaSyntaxError
from app.formulas.parser import parse_expression
from app.models.table_field import TableField
from app.utils.constants import (
    FIELD_TYPE_ATTACHMENT,
    FIELD_TYPE_BOOLEAN,
    FIELD_TYPE_DATE,
    FIELD_TYPE_FORMULA,
    FIELD_TYPE_MULTI_SELECT,
    FIELD_TYPE_NUMBER,
    FIELD_TYPE_SINGLE_SELECT,
    FIELD_TYPE_TEXT,
)
from app.utils.exceptions import ForbiddenError, ValidationError

logger = logging.getLogger(__name__)

# Wide enough for any finite double plus the requested decimals.
_ROUNDING_CONTEXT = Context(prec=400)

_INT_RE = re.compile(r"^[+-]?\d+$")
_MULTI_SELECT_SPLIT_RE = re.compile(r"[,;]")


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoercedCell:
    """Normalised cell ready to be upserted."""

    value: Any
    formula_expr: str | None
    is_dirty: bool


@dataclass(frozen=True)
class CsvCoercion:
    """Outcome of coercing one CSV cell.

    ``present`` is False when the cell was blank and should simply be
    skipped (no value written for that field).
    """

    present: bool
    value: Any = None


# ---------------------------------------------------------------------------
# Option helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    """True for int/float values, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: int | float) -> bool:
    """False for NaN, infinities and integers too large for a float."""
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _numeric_option(options: dict, key: str) -> float | None:
    value = options.get(key)
    return value if _is_number(value) else None


def get_precision(options: dict) -> int | None:
    """Return ``options["precision"]`` as a non-negative int, or None."""
    value = options.get("precision")
    if not _is_number(value) or value < 0:
        return None
    return int(value)


def values_equal(a: Any, b: Any) -> bool:
    """Compare two stored cell values.

    ``None`` equals only ``None`` and a boolean never equals a number
    (``True != 1``); everything else uses plain equality.
    """
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _allowed_options(options: dict) -> list[str]:
    values = options.get("options")
    return [str(v) for v in values] if isinstance(values, list) else []


def round_to_precision(value: float, precision: int) -> float:
    """Round *value* half-up to *precision* decimal places.

    Examples::

        round_to_precision(1.005, 2)  # 1.01
        round_to_precision(2.675, 2)  # 2.68
        round_to_precision(-1.005, 2)  # -1.01
    """
    quantum = Decimal(1).scaleb(-precision)
    try:
        rounded = Decimal(repr(value)).quantize(
            quantum, rounding=ROUND_HALF_UP, context=_ROUNDING_CONTEXT
        )
    except InvalidOperation:
        return float(value)
    return float(rounded)


# ---------------------------------------------------------------------------
# Typed input
# ---------------------------------------------------------------------------


def validate_cell_value(
    field: TableField,
    raw_value: Any,
    raw_formula_expr: str | None = None,
) -> CoercedCell:
    """Validate and normalise a typed value for *field*.

    Args:
        field: Target column.
        raw_value: Incoming value; ``None`` means "empty cell".
        raw_formula_expr: Expression, only meaningful for formula fields.

    Returns:
        A ``CoercedCell``.  Non-formula fields always come back with
        ``formula_expr=None``.

    Raises:
        ValidationError: If the value does not satisfy the field's type and
            options, or the field type is unknown.
    """
    opts = field.options
    name = field.name
    value = raw_value

    if field.type == FIELD_TYPE_TEXT:
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} expects string", field=name)
        max_length = _numeric_option(opts, "maxLength")
        if max_length is not None and value is not None and len(value) > max_length:
            raise ValidationError(f"{name} exceeds maxLength {max_length}", field=name)

    elif field.type == FIELD_TYPE_NUMBER:
        if value is not None:
            if not _is_number(value) or not _is_finite(value):
                raise ValidationError(f"{name} expects number", field=name)
            minimum = _numeric_option(opts, "min")
            maximum = _numeric_option(opts, "max")
            if minimum is not None and value < minimum:
                raise ValidationError(f"{name} < min {minimum}", field=name)
            if maximum is not None and value > maximum:
                raise ValidationError(f"{name} > max {maximum}", field=name)
            precision = get_precision(opts)
            if precision is not None:
                value = round_to_precision(value, precision)

    elif field.type == FIELD_TYPE_BOOLEAN:
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{name} expects boolean", field=name)

    elif field.type == FIELD_TYPE_SINGLE_SELECT:
        if value is not None:
            if not isinstance(value, str):
                raise ValidationError(f"{name} expects string option", field=name)
            if value not in _allowed_options(opts):
                raise ValidationError(f"{name} option not allowed: {value}", field=name)

    elif field.type == FIELD_TYPE_MULTI_SELECT:
        if value is not None:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValidationError(f"{name} expects list of strings", field=name)
            allowed = _allowed_options(opts)
            for item in value:
                if item not in allowed:
                    raise ValidationError(f"{name} option not allowed: {item}", field=name)

    elif field.type == FIELD_TYPE_DATE:
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} expects date string", field=name)

    elif field.type == FIELD_TYPE_ATTACHMENT:
        # Stored as-is; the attachment service owns the inner structure.
        if value is not None and not isinstance(value, (list, dict)):
            raise ValidationError(f"{name} expects attachment list or object", field=name)

    elif field.type == FIELD_TYPE_FORMULA:
        if not isinstance(raw_formula_expr, str) or not raw_formula_expr.strip():
            raise ValidationError(f"{name} requires formula expression", field=name)
        expr = raw_formula_expr.strip()
        try:
            parse_expression(expr)
        except FormulaSyntaxError as exc:
            raise ValidationError(f"{name} has invalid formula: {exc}", field=name) from exc
        return CoercedCell(value=None, formula_expr=expr, is_dirty=True)

    else:
        raise ValidationError(f"{name} has unsupported field type: {field.type}", field=name)

    return CoercedCell(value=value, formula_expr=None, is_dirty=False)


# ---------------------------------------------------------------------------
# String input (CSV)
# ---------------------------------------------------------------------------


def _token_set(tokens: Iterable[str] | None, default: list[str]) -> frozenset[str]:
    source = default if tokens is None else tokens
    return frozenset(str(t).strip().lower() for t in source)


def parse_csv_number(text: str) -> int | float | None:
    """Parse a numeric CSV cell, tolerating thousands separators.

    Commas and inner whitespace are stripped before parsing (``"1,234.5"``,
    ``"12 000"``).  Returns None when the text is not a finite number.
    """
    cleaned = re.sub(r"[,\s]", "", text)
    if not cleaned:
        return None
    if _INT_RE.match(cleaned):
        try:
            integer = int(cleaned)
        except ValueError:
            # Longer than the interpreter's int conversion limit.
            return None
        return integer if _is_finite(integer) else None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_csv_value(
    field: TableField,
    raw: str | None,
    true_tokens: Iterable[str] | None = None,
    false_tokens: Iterable[str] | None = None,
) -> CsvCoercion:
    """Coerce one CSV cell for *field*.

    Args:
        field: Target column.
        raw: Cell text as read from the file.
        true_tokens: Accepted truthy tokens (case-insensitive); defaults to
            ``IMPORT_TRUE_TOKENS``.
        false_tokens: Accepted falsy tokens; defaults to ``IMPORT_FALSE_TOKENS``.

    Returns:
        ``CsvCoercion(present=False)`` for a blank, optional cell, otherwise
        ``CsvCoercion(present=True, value=...)``.

    Raises:
        ValidationError: Unparseable or out-of-range text, blank required
            cell, or a type that cannot be imported.
        ForbiddenError: The field is readonly.
    """
    name = field.name
    text = "" if raw is None else str(raw).strip()
    opts = field.options

    if not text:
        if opts.get("required") is True:
            raise ValidationError(f"{name} is required", field=name)
        return CsvCoercion(present=False)

    if field.readonly:
        raise ForbiddenError(f"{name} is readonly")

    if field.type == FIELD_TYPE_NUMBER:
        number = parse_csv_number(text)
        if number is None:
            raise ValidationError(f"{name} expects number, got {text!r}", field=name)
        parsed: Any = number

    elif field.type == FIELD_TYPE_BOOLEAN:
        settings = get_settings()
        token = text.lower()
        if token in _token_set(true_tokens, settings.IMPORT_TRUE_TOKENS):
            parsed = True
        elif token in _token_set(false_tokens, settings.IMPORT_FALSE_TOKENS):
            parsed = False
        else:
            raise ValidationError(f"{name} expects boolean, got {text!r}", field=name)

    elif field.type == FIELD_TYPE_MULTI_SELECT:
        parsed = [p.strip() for p in _MULTI_SELECT_SPLIT_RE.split(text) if p.strip()]

    elif field.type in (FIELD_TYPE_TEXT, FIELD_TYPE_SINGLE_SELECT, FIELD_TYPE_DATE):
        parsed = text

    elif field.type == FIELD_TYPE_ATTACHMENT:
        raise ValidationError(f"{name} attachments cannot be imported from CSV", field=name)

    elif field.type == FIELD_TYPE_FORMULA:
        raise ValidationError(f"{name} is a formula field; its value is computed", field=name)

    else:
        raise ValidationError(f"{name} has unsupported field type: {field.type}", field=name)

    return CsvCoercion(present=True, value=validate_cell_value(field, parsed).value)
