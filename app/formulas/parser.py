"""Lark-based parser for formula-field expressions.

Supports exactly:
- Decimal number literals: ``3``, ``2.5``, ``.5``
- Bare references: ``Price``, ``unit_cost``, ``数量``
- Braced references for names with spaces or for field ids:
  ``{Unit price}``, ``{12}``
- ``+ - * /``, unary ``+``/``-`` and parentheses

Anything else is a syntax error.  There is no function call, comparison,
string or attribute syntax, so nothing outside this grammar can ever be
evaluated.
"""

from __future__ import annotations

from functools import lru_cache

from lark import Lark, Token, Tree, Visitor
from lark.exceptions import LarkError

from app.formulas.errors import FormulaSyntaxError

# LALR(1) grammar.
# Operator precedence (lowest to highest):
#   1. Addition/subtraction: + -
#   2. Multiplication/division: * /
#   3. Unary plus/minus: + -
#   4. Atoms: number, reference, parenthesized expr
GRAMMAR = r"""
start: sum

?sum: product
    | sum "+" product   -> add
    | sum "-" product   -> sub

?product: unary
    | product "*" unary  -> mul
    | product "/" unary  -> div

?unary: atom
    | "-" unary  -> neg
    | "+" unary  -> pos

?atom: NUMBER           -> number
    | NAME              -> ref_bare
    | BRACED_REF        -> ref_braced
    | "(" sum ")"

NUMBER: /\d+(\.\d+)?|\.\d+/
NAME: /[^\W\d]\w*/
BRACED_REF: /\{[^{}]+\}/

%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")


@lru_cache(maxsize=1024)
def parse_expression(text: str) -> Tree:
    """Parse an expression into a Lark tree.

    Args:
        text: The expression, e.g. ``"A + B * 2"``.

    Returns:
        A parse tree rooted at ``start``.  Trees are cached and must not be
        mutated by callers.

    Raises:
        FormulaSyntaxError: If the expression is empty or not in the grammar.
    """
    if not text or not text.strip():
        raise FormulaSyntaxError("Empty expression")
    try:
        return _parser.parse(text)
    except LarkError as exc:
        pos = getattr(exc, "column", None)
        raise FormulaSyntaxError(f"Invalid expression {text!r}", position=pos) from exc


def ref_name(token: Token) -> str:
    """Return the context key a reference token resolves to."""
    if token.type == "BRACED_REF":
        return str(token)[1:-1].strip()
    return str(token)


class _RefCollector(Visitor):
    """Visitor that collects all references from a parse tree."""

    def __init__(self) -> None:
        self.refs: set[str] = set()

    def ref_bare(self, tree: Tree) -> None:
        self.refs.add(ref_name(tree.children[0]))

    def ref_braced(self, tree: Tree) -> None:
        self.refs.add(ref_name(tree.children[0]))


def extract_refs(text: str) -> set[str]:
    """Return every reference name used by an expression."""
    collector = _RefCollector()
    collector.visit(parse_expression(text))
    return collector.refs
