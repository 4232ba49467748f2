"""Restricted four-operator formula language for formula fields."""

from app.formulas.errors import FormulaError, FormulaRefError, FormulaSyntaxError
from app.formulas.evaluator import evaluate_expression
from app.formulas.parser import extract_refs, parse_expression

__all__ = [
    "FormulaError",
    "FormulaRefError",
    "FormulaSyntaxError",
    "evaluate_expression",
    "extract_refs",
    "parse_expression",
]
