"""Tests for typed-value validation and CSV cell coercion."""

from __future__ import annotations

import math

import pytest

from app.models.table_field import TableField
from app.services.field_validation import (
    coerce_csv_value,
    parse_csv_number,
    round_to_precision,
    validate_cell_value,
    values_equal,
)
from app.utils.exceptions import ForbiddenError, ValidationError


def _field(type_: str, options: dict | None = None, readonly: bool = False, name: str = "F") -> TableField:
    return TableField(id=1, name=name, type=type_, options_json=options or {}, readonly=readonly)


class TestRounding:
    @pytest.mark.parametrize(
        ("value", "precision", "expected"),
        [
            (1.005, 2, 1.01),
            (2.675, 2, 2.68),
            (1.004, 2, 1.0),
            (-1.005, 2, -1.01),
            (2.5, 0, 3.0),
            (123.456789, 3, 123.457),
        ],
    )
    def test_half_up_on_decimal_representation(self, value, precision, expected) -> None:
        assert round_to_precision(value, precision) == expected


class TestValidateCellValue:
    def test_text_max_length(self) -> None:
        field = _field("text", {"maxLength": 3}, name="Code")
        assert validate_cell_value(field, "abc").value == "abc"
        with pytest.raises(ValidationError, match=r"^Code exceeds maxLength 3"):
            validate_cell_value(field, "abcd")

    def test_text_rejects_non_string(self) -> None:
        with pytest.raises(ValidationError, match="expects string"):
            validate_cell_value(_field("text"), 12)

    def test_none_empties_any_plain_field(self) -> None:
        for type_ in ("text", "number", "boolean", "single_select", "multi_select", "date"):
            assert validate_cell_value(_field(type_), None).value is None

    def test_number_rejects_bool_nan_and_infinity(self) -> None:
        field = _field("number")
        for bad in (True, math.nan, math.inf, "12"):
            with pytest.raises(ValidationError, match="expects number"):
                validate_cell_value(field, bad)

    def test_number_rejects_integer_beyond_float_range(self) -> None:
        with pytest.raises(ValidationError, match="expects number") as exc:
            validate_cell_value(_field("number", name="Qty"), 10**400)
        assert exc.value.details == {"field": "Qty"}
        assert validate_cell_value(_field("number"), 10**300).value == 10**300

    def test_number_range_and_precision(self) -> None:
        field = _field("number", {"min": 0, "max": 10, "precision": 2}, name="Qty")
        assert validate_cell_value(field, 1.005).value == 1.01
        with pytest.raises(ValidationError, match=r"^Qty < min 0"):
            validate_cell_value(field, -1)
        with pytest.raises(ValidationError, match=r"^Qty > max 10"):
            validate_cell_value(field, 11)

    def test_boolean(self) -> None:
        assert validate_cell_value(_field("boolean"), False).value is False
        with pytest.raises(ValidationError, match="expects boolean"):
            validate_cell_value(_field("boolean"), 1)

    def test_single_select_options(self) -> None:
        field = _field("single_select", {"options": ["open", "closed"]}, name="Status")
        assert validate_cell_value(field, "open").value == "open"
        with pytest.raises(ValidationError, match="Status option not allowed: pending"):
            validate_cell_value(field, "pending")

    def test_multi_select_options(self) -> None:
        field = _field("multi_select", {"options": ["a", "b"]})
        assert validate_cell_value(field, ["a", "b"]).value == ["a", "b"]
        with pytest.raises(ValidationError, match="option not allowed: c"):
            validate_cell_value(field, ["a", "c"])
        with pytest.raises(ValidationError, match="expects list of strings"):
            validate_cell_value(field, "a")

    def test_attachment_stored_as_is(self) -> None:
        payload = [{"name": "a.pdf", "url": "/files/1"}]
        assert validate_cell_value(_field("attachment"), payload).value == payload

    def test_formula_stores_expression_and_marks_dirty(self) -> None:
        cell = validate_cell_value(_field("formula"), 99, "  A + B ")
        assert cell.value is None
        assert cell.formula_expr == "A + B"
        assert cell.is_dirty is True

    def test_formula_requires_expression(self) -> None:
        with pytest.raises(ValidationError, match="requires formula expression"):
            validate_cell_value(_field("formula"), None, "   ")

    def test_formula_rejects_invalid_syntax(self) -> None:
        with pytest.raises(ValidationError, match="invalid formula"):
            validate_cell_value(_field("formula"), None, "A + * B")

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError, match="unsupported field type"):
            validate_cell_value(_field("rating"), 3)

    def test_error_carries_field_attribution(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_cell_value(_field("number", name="Price"), "x")
        assert exc_info.value.details["field"] == "Price"


class TestValuesEqual:
    def test_bool_is_not_number(self) -> None:
        assert not values_equal(True, 1)
        assert not values_equal(0, False)

    def test_null_safe(self) -> None:
        assert values_equal(None, None)
        assert not values_equal(None, 0)
        assert not values_equal("", None)

    def test_structures(self) -> None:
        assert values_equal(["a", "b"], ["a", "b"])
        assert values_equal(10, 10.0)


class TestCsvCoercion:
    def test_parse_number_with_separators(self) -> None:
        assert parse_csv_number("1,234.5") == 1234.5
        assert parse_csv_number("12 000") == 12000
        assert parse_csv_number("-7") == -7
        assert parse_csv_number("abc") is None
        assert parse_csv_number("inf") is None

    def test_parse_number_too_large(self) -> None:
        assert parse_csv_number("9" * 400) is None
        assert parse_csv_number("9" * 5000) is None
        assert parse_csv_number("9" * 400 + ".5") is None

    def test_oversized_number_is_a_validation_error(self) -> None:
        for digits in (400, 5000):
            with pytest.raises(ValidationError, match="^A expects number"):
                coerce_csv_value(_field("number", name="A"), "9" * digits)

    def test_blank_is_skipped(self) -> None:
        assert coerce_csv_value(_field("number"), "   ").present is False

    def test_blank_required_fails(self) -> None:
        field = _field("text", {"required": True}, name="Title")
        with pytest.raises(ValidationError, match="^Title is required"):
            coerce_csv_value(field, "")

    def test_number_goes_through_precision(self) -> None:
        field = _field("number", {"precision": 2})
        assert coerce_csv_value(field, " 1.005 ").value == 1.01

    def test_number_range_applies(self) -> None:
        field = _field("number", {"max": 100}, name="Pct")
        with pytest.raises(ValidationError, match="Pct > max 100"):
            coerce_csv_value(field, "1,000")

    def test_boolean_tokens(self) -> None:
        field = _field("boolean")
        assert coerce_csv_value(field, "YES").value is True
        assert coerce_csv_value(field, "是").value is True
        assert coerce_csv_value(field, "0").value is False
        assert coerce_csv_value(field, "否").value is False
        with pytest.raises(ValidationError, match="expects boolean"):
            coerce_csv_value(field, "maybe")

    def test_custom_boolean_tokens(self) -> None:
        field = _field("boolean")
        assert coerce_csv_value(field, "si", true_tokens=["si"], false_tokens=["no"]).value is True
        with pytest.raises(ValidationError):
            coerce_csv_value(field, "yes", true_tokens=["si"], false_tokens=["no"])

    def test_multi_select_split(self) -> None:
        field = _field("multi_select", {"options": ["a", "b", "c"]})
        assert coerce_csv_value(field, "a; b,c ,").value == ["a", "b", "c"]

    def test_single_select_must_match(self) -> None:
        field = _field("single_select", {"options": ["open"]})
        with pytest.raises(ValidationError, match="option not allowed"):
            coerce_csv_value(field, "shut")

    def test_attachment_and_formula_not_importable(self) -> None:
        with pytest.raises(ValidationError, match="attachments cannot be imported"):
            coerce_csv_value(_field("attachment"), "a.pdf")
        with pytest.raises(ValidationError, match="formula field"):
            coerce_csv_value(_field("formula"), "A+B")

    def test_readonly_field_forbidden(self) -> None:
        with pytest.raises(ForbiddenError, match="readonly"):
            coerce_csv_value(_field("text", readonly=True, name="Locked"), "x")
