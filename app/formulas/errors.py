"""Error types for formula parsing and evaluation."""

from __future__ import annotations


class FormulaError(Exception):
    """Base class for all formula-related errors."""


class FormulaSyntaxError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        position: Character position (1-based column) where the error was
            detected, when the parser reports one.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        full = message
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class FormulaRefError(FormulaError):
    """Reference to a name that is not in the evaluation context."""

    def __init__(self, ref_name: str) -> None:
        self.ref_name = ref_name
        super().__init__(f"Unknown reference: {ref_name!r}")
