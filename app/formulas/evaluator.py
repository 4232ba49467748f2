"""Tree-walking evaluator for parsed formula expressions.

References resolve only from the explicit context mapping.  Every failure
(syntax, unknown reference, non-numeric reference, division by zero,
non-finite result) yields ``None`` instead of raising: a formula cell whose
inputs are missing simply displays empty.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

from lark import Token, Tree

from app.formulas.errors import FormulaError, FormulaRefError
from app.formulas.parser import parse_expression, ref_name

logger = logging.getLogger(__name__)


def evaluate_expression(expression: str, context: Mapping[str, float]) -> float | None:
    """Evaluate *expression* against *context*.

    A bare number is always a literal: ``"2 + 3"`` is 5 even when fields 2
    and 3 exist.  Refer to a field by id only in braces, ``"{2} + {3}"``.

    Args:
        expression: Formula text, e.g. ``"A + B"`` or ``"{Unit price} * {7}"``.
        context: Numeric values keyed by field name and by field id string.

    Returns:
        The finite numeric result, or None when the expression cannot be
        evaluated.
    """
    try:
        result = _eval(parse_expression(expression), context)
    except (FormulaError, ZeroDivisionError, OverflowError) as exc:
        logger.debug("evaluate_expression: %r -> None (%s)", expression, exc)
        return None
    if not math.isfinite(result):
        return None
    return result


def _eval(node: Tree | Token, ctx: Mapping[str, float]) -> float:
    """Recursively evaluate a tree node."""
    if isinstance(node, Token):
        # Only reachable through an unaliased atom; the grammar aliases all.
        raise FormulaError(f"Unexpected token {node!r}")

    rule = node.data

    if rule == "start":
        return _eval(node.children[0], ctx)

    if rule == "number":
        return float(node.children[0])
    if rule in ("ref_bare", "ref_braced"):
        return _resolve(ref_name(node.children[0]), ctx)

    if rule == "add":
        return _eval(node.children[0], ctx) + _eval(node.children[1], ctx)
    if rule == "sub":
        return _eval(node.children[0], ctx) - _eval(node.children[1], ctx)
    if rule == "mul":
        return _eval(node.children[0], ctx) * _eval(node.children[1], ctx)
    if rule == "div":
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        if right == 0:
            raise ZeroDivisionError("Division by zero in formula")
        return left / right
    if rule == "neg":
        return -_eval(node.children[0], ctx)
    if rule == "pos":
        return _eval(node.children[0], ctx)

    raise FormulaError(f"Unsupported node {rule!r}")


def _resolve(name: str, ctx: Mapping[str, float]) -> float:
    if name not in ctx:
        raise FormulaRefError(name)
    value = ctx[name]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormulaRefError(name)
    return float(value)
