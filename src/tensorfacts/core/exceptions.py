from __future__ import annotations

from typing import Any, Iterable, Optional


class TensorFactsError(Exception):
    """Base class for tensorfacts-specific exceptions."""


class Contradiction(TensorFactsError, ValueError):
    """Two facts asserted incompatible information about the same location."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Any] = None,
        rule: Optional[str] = None,
    ):
        self.reason = message
        self.path = path
        self.rule = rule
        super().__init__(f"{message}{_format_context(path, rule)}")

    def with_context(
        self,
        *,
        path: Optional[Any] = None,
        rule: Optional[str] = None,
    ) -> "Contradiction":
        """Return a copy that keeps already-known context and fills the gaps."""
        return Contradiction(
            self.reason,
            path=self.path if self.path is not None else path,
            rule=self.rule if self.rule is not None else rule,
        )


class PathError(TensorFactsError, KeyError):
    def __init__(self, message: str, *, path: Optional[Any] = None):
        super().__init__(f"{message}{_format_context(path, None)}")
        self.path = path

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0])


class SolverError(TensorFactsError, RuntimeError):
    pass


class RuleParseError(TensorFactsError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        line_text: Optional[str] = None,
    ):
        detail = _format_location(line, column, line_text)
        super().__init__(f"{message}{detail}")
        self.line = line
        self.column = column
        self.line_text = line_text


class UnresolvedReferenceError(TensorFactsError, LookupError):
    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        listed = ", ".join(repr(name) for name in self.names)
        super().__init__(f"{len(self.names)} unresolved input(s): {listed}")


class AnalysisError(TensorFactsError, RuntimeError):
    def __init__(self, message: str, *, node: Optional[str] = None):
        super().__init__(message if node is None else f"{node}: {message}")
        self.node = node


def _format_context(path: Optional[Any], rule: Optional[str]) -> str:
    parts = []
    if path is not None:
        parts.append(f"at {path!r}")
    if rule is not None:
        parts.append(f"in rule {rule}")
    if not parts:
        return ""
    return " (" + " ".join(parts) + ")"


def _format_location(
    line: Optional[int],
    column: Optional[int],
    line_text: Optional[str],
) -> str:
    if line is None and column is None:
        return ""
    location = []
    if line is not None:
        location.append(f"line {line}")
    if column is not None:
        location.append(f"col {column}")
    location_str = f" ({', '.join(location)})"
    if line_text is None or column is None or column < 1:
        return location_str
    caret = " " * (column - 1) + "^"
    return f"{location_str}\n  {line_text}\n  {caret}"
