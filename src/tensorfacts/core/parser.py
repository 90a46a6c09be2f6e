"""Textual operator rules.

Each statement is an equality chain between sums of proxies and literals::

    inputs.len == 2
    outputs[0].rank == inputs[0].rank == 2
    inputs[0].shape[1] == inputs[1].shape[0]
    outputs[0].shape[0] + 1 == inputs[0].shape[0]
    outputs[0].datum_type == dtype(float32); outputs[0].shape == shape(2, ?)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional, Tuple

from lark import Lark, Transformer, Tree
from lark.exceptions import LarkError, UnexpectedInput, VisitError

from .exceptions import RuleParseError
from .expr import to_exp
from .facts import ShapeFact, TypeFact
from .proxies import (
    ElementProxy,
    ShapeProxy,
    TensorProxy,
    TensorsProxy,
    ValueProxy,
    tensors_proxies,
)
from .rules import RuleSet

logger = logging.getLogger(__name__)

GRAMMAR_PATH = Path(__file__).with_name("rules_grammar.lark")

_ATTRIBUTES = {
    TensorsProxy: {"len"},
    TensorProxy: {"datum_type", "rank", "shape", "value"},
    ValueProxy: {"root"},
}
_INDEXABLE = (TensorsProxy, ShapeProxy, ValueProxy, ElementProxy)


@lru_cache(maxsize=1)
def _build_lark() -> Lark:
    grammar = GRAMMAR_PATH.read_text()
    return Lark(
        grammar,
        parser="lalr",
        start="start",
        propagate_positions=True,
        maybe_placeholders=False,
    )


class _AccessError(Exception):
    def __init__(self, message: str, column: Optional[int]):
        super().__init__(message)
        self.column = column


class RuleTransformer(Transformer):
    """Turns a parsed relation into the list of expressions it equates."""

    def __init__(self, inputs: TensorsProxy, outputs: TensorsProxy):
        super().__init__()
        self.inputs = inputs
        self.outputs = outputs

    # ------------------------------------------------------------------ proxies
    def attr(self, items):
        (name,) = items
        return ("attr", str(name), name.column)

    def index(self, items):
        (value,) = items
        return ("index", int(value), value.column)

    def root(self, items):
        return ("root", None, None)

    def proxy(self, items):
        head, accessors = items[0], items[1:]
        node: Any = self.inputs if str(head) == "inputs" else self.outputs
        for kind, arg, column in accessors:
            node = self._access(node, kind, arg, column)
        return node

    def _access(self, node: Any, kind: str, arg: Any, column: Optional[int]) -> Any:
        if kind == "attr":
            allowed = _ATTRIBUTES.get(type(node), set())
            if arg not in allowed:
                raise _AccessError(f"{type(node).__name__} has no attribute '{arg}'", column)
            return getattr(node, arg)
        if kind == "index":
            if not isinstance(node, _INDEXABLE):
                raise _AccessError(f"{type(node).__name__} cannot be indexed", column)
            return node[arg]
        if not isinstance(node, ValueProxy):
            raise _AccessError(f"{type(node).__name__} has no scalar root", column)
        return node[()]

    # ------------------------------------------------------------------ literals
    def int_literal(self, items):
        return int(items[0])

    def dtype_literal(self, items):
        (name,) = items
        try:
            return TypeFact(str(name))
        except TypeError as exc:
            raise _AccessError(f"Unknown datum type '{name}'", name.column) from exc

    def known_dim(self, items):
        return int(items[0])

    def unknown_dim(self, items):
        return None

    def dims(self, items):
        return list(items)

    def shape_literal(self, items):
        return ShapeFact.closed(items[0] if items else [])

    # ------------------------------------------------------------------ arithmetic
    def add(self, items):
        left, right = items
        return to_exp(left) + right

    def sub(self, items):
        left, right = items
        return to_exp(left) - right

    def scale(self, items):
        factor, operand = items
        return int(factor) * to_exp(operand)

    def neg(self, items):
        return -to_exp(items[0])

    def relation(self, items):
        return [to_exp(item) for item in items]


@dataclass
class RuleStatement:
    tree: Tree
    line: int
    column: int
    source: str


class RuleProgram:
    """Parsed rule text, applicable to any pair of root proxies."""

    def __init__(self, statements: List[RuleStatement]):
        self.statements = statements

    def __len__(self) -> int:
        return len(self.statements)

    def apply(self, rules: RuleSet, inputs: TensorsProxy, outputs: TensorsProxy) -> RuleSet:
        for statement in self.statements:
            rules.equals_all(_transform(statement, inputs, outputs))
        return rules


def _transform(statement: RuleStatement, inputs: TensorsProxy, outputs: TensorsProxy) -> List[Any]:
    try:
        return RuleTransformer(inputs, outputs).transform(statement.tree)
    except VisitError as exc:
        orig = exc.orig_exc
        if isinstance(orig, _AccessError):
            column = None if orig.column is None else statement.column + orig.column - 1
            raise RuleParseError(
                str(orig), line=statement.line, column=column, line_text=statement.source
            ) from None
        if isinstance(orig, TypeError):
            raise RuleParseError(
                str(orig), line=statement.line, column=statement.column, line_text=statement.source
            ) from None
        raise


def _split_statements(text: str) -> List[Tuple[str, int, int, str]]:
    chunks: List[Tuple[str, int, int, str]] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        code = line.split("#", 1)[0]
        offset = 1
        for chunk in code.split(";"):
            if chunk.strip():
                chunks.append((chunk, lineno, offset, line))
            offset += len(chunk) + 1
    return chunks


def parse_rules(text: str) -> RuleProgram:
    parser = _build_lark()
    statements: List[RuleStatement] = []
    for chunk, lineno, offset, line in _split_statements(text):
        try:
            tree = parser.parse(chunk)
        except UnexpectedInput as exc:
            detail = getattr(exc, "token", None) or getattr(exc, "char", None)
            message = "Invalid rule" if detail is None else f"Invalid rule near {str(detail)!r}"
            column = exc.column if isinstance(exc.column, int) and exc.column > 0 else None
            raise RuleParseError(
                message,
                line=lineno,
                column=None if column is None else offset + column - 1,
                line_text=line,
            ) from None
        except LarkError as exc:
            raise RuleParseError(str(exc), line=lineno, line_text=line) from None
        statement = RuleStatement(tree=tree, line=lineno, column=offset, source=line)
        # Resolve once against throw-away roots so bad accessors fail at parse time.
        _transform(statement, *tensors_proxies())
        statements.append(statement)
    logger.debug("parsed %d rule statement(s)", len(statements))
    return RuleProgram(statements)
