"""Symbolic handles used to write rules about a node's tensors.

A proxy only carries a :class:`Path`; the facts themselves live in the
solver context.  Indexable proxies hand out children through a
:class:`Cache`, so ``inputs[0]`` is the same object every time it is
written.  Indices are not checked against any length here: an index that
does not exist in the node is reported when the solver resolves the path.
"""

from __future__ import annotations

import operator
from typing import Any, Tuple, Type, Union

from .cache import Cache
from .facts import DimFact, Fact, IntFact, ShapeFact, TypeFact, ValueFact
from .path import DATUM_TYPE, INPUTS, LEN, OUTPUTS, RANK, SHAPE, VALUE, Path


class Proxy:
    __slots__ = ("_path",)

    def __init__(self, path: Union[Path, Tuple[int, ...], list]):
        self._path = path if isinstance(path, Path) else Path(path)

    def get_path(self) -> Path:
        """Symbolic address of the value, e.g. ``[0, 0, 2, 1]`` for ``inputs[0].shape[1]``."""
        return self._path

    @property
    def path(self) -> Path:
        return self._path

    def __repr__(self) -> str:
        return f"{type(self).__name__}{self._path!r}"


class ComparableProxy(Proxy):
    """A proxy that may appear as an operand of a solver rule."""

    __slots__ = ()
    fact_type: Type[Fact] = Fact


class _IntArithmetic:
    """Arithmetic on integer-valued proxies, building solver expressions."""

    __slots__ = ()

    def _exp(self):
        from .expr import to_exp

        return to_exp(self)

    def __add__(self, other: Any):
        return self._exp() + other

    def __radd__(self, other: Any):
        return other + self._exp()

    def __sub__(self, other: Any):
        return self._exp() - other

    def __rsub__(self, other: Any):
        return other - self._exp()

    def __neg__(self):
        return -self._exp()

    def __mul__(self, other: int):
        return self._exp() * other

    def __rmul__(self, other: int):
        return self._exp() * other


def _child_index(index: Any) -> int:
    index = operator.index(index)
    if index < 0:
        raise IndexError(f"Proxy indices must be non-negative (got {index})")
    return index


class IntProxy(_IntArithmetic, ComparableProxy):
    __slots__ = ()
    fact_type = IntFact


class TypeProxy(ComparableProxy):
    __slots__ = ()
    fact_type = TypeFact


class DimProxy(_IntArithmetic, ComparableProxy):
    __slots__ = ()
    fact_type = DimFact


class ShapeProxy(ComparableProxy):
    __slots__ = ("_dims",)
    fact_type = ShapeFact

    def __init__(self, path):
        super().__init__(path)
        self._dims: Cache[int, DimProxy] = Cache()

    def __getitem__(self, index: int) -> DimProxy:
        index = _child_index(index)
        return self._dims.get(index, lambda: DimProxy(self._path.concat(index)))

    # __getitem__ alone would make the proxy look iterable.
    __iter__ = None


class ElementProxy(_IntArithmetic, ComparableProxy):
    """One element of a tensor value, indexable to any depth."""

    __slots__ = ("_sub",)
    fact_type = IntFact

    def __init__(self, path):
        super().__init__(path)
        self._sub: Cache[int, ElementProxy] = Cache()

    def __getitem__(self, index: Union[int, Tuple[int, ...]]) -> "ElementProxy":
        if isinstance(index, tuple):
            node = self
            for item in index:
                node = node[item]
            return node
        index = _child_index(index)
        return self._sub.get(index, lambda: ElementProxy(self._path.concat(index)))

    __iter__ = None


class ValueProxy(ComparableProxy):
    """The whole value of a tensor.

    ``value[()]`` (or ``value.root``) is the value of a scalar tensor, and
    ``value[1][6][2]`` reaches nested elements, created on first use.
    """

    __slots__ = ("_sub", "root")
    fact_type = ValueFact

    def __init__(self, path):
        super().__init__(path)
        self.root = IntProxy(self._path.concat(LEN))
        self._sub: Cache[int, ElementProxy] = Cache()

    def __getitem__(self, index: Union[int, Tuple[int, ...]]) -> Union[IntProxy, ElementProxy]:
        if isinstance(index, tuple):
            if not index:
                return self.root
            return self[index[0]][index[1:]]
        index = _child_index(index)
        return self._sub.get(index, lambda: ElementProxy(self._path.concat(index)))

    __iter__ = None


class TensorProxy(Proxy):
    """A single tensor; its four properties sit at fixed sub-paths."""

    __slots__ = ("datum_type", "rank", "shape", "value")

    def __init__(self, path):
        super().__init__(path)
        self.datum_type = TypeProxy(self._path.concat(DATUM_TYPE))
        self.rank = IntProxy(self._path.concat(RANK))
        self.shape = ShapeProxy(self._path.concat(SHAPE))
        self.value = ValueProxy(self._path.concat(VALUE))


class TensorsProxy(Proxy):
    """The inputs or outputs of a node.

    ``len`` addresses the number of tensors; ``tensors[i]`` is created on
    first access and cached.
    """

    __slots__ = ("len", "_tensors")

    def __init__(self, path):
        super().__init__(path)
        self.len = IntProxy(self._path.concat(LEN))
        self._tensors: Cache[int, TensorProxy] = Cache()

    def __getitem__(self, index: int) -> TensorProxy:
        index = _child_index(index)
        return self._tensors.get(index, lambda: TensorProxy(self._path.concat(index)))

    __iter__ = None


def tensors_proxies() -> Tuple[TensorsProxy, TensorsProxy]:
    """Fresh root proxies for a node's inputs and outputs."""
    return TensorsProxy(Path([INPUTS])), TensorsProxy(Path([OUTPUTS]))
