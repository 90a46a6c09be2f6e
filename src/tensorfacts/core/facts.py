"""Partial-knowledge facts about tensors.

Every fact kind forms a meet-semilattice: ``any`` knows nothing, a concrete
fact knows everything, and :meth:`Fact.unify` returns the most precise fact
entailed by both operands or raises :class:`Contradiction`.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import Contradiction


class _AnyValue:
    _instance: Optional["_AnyValue"] = None

    def __new__(cls) -> "_AnyValue":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "?"


ANY = _AnyValue()


class Fact:
    """Common interface of the fact lattice."""

    def is_concrete(self) -> bool:
        raise NotImplementedError

    def concretize(self) -> Any:
        raise NotImplementedError

    def unify(self, other: Any) -> "Fact":
        raise NotImplementedError


def meet(a: Fact, b: Fact) -> Fact:
    return a.unify(b)


class GenericFact(Fact):
    """A value that is unknown, one of a finite set of candidates, or known.

    ``_options`` is ``None`` for total ignorance, otherwise the non-empty set
    of values still possible.  Facts sharing a ``kind`` unify with each other,
    the result taking the class of the left operand.
    """

    __slots__ = ("_options",)
    kind = "generic"

    def __init__(self, value: Any = ANY):
        if value is ANY or value is None:
            self._options: Optional[FrozenSet[Any]] = None
        elif isinstance(value, GenericFact):
            self._options = self._accept(value)._options
        else:
            self._options = frozenset([self._coerce(value)])

    @classmethod
    def _coerce(cls, value: Any) -> Any:
        return value

    @classmethod
    def _from_options(cls, options: Optional[Iterable[Any]]) -> "GenericFact":
        fact = cls.__new__(cls)
        if options is None:
            fact._options = None
            return fact
        coerced = frozenset(cls._coerce(value) for value in options)
        if not coerced:
            raise Contradiction(f"{cls.__name__} has no possible value left")
        fact._options = coerced
        return fact

    @classmethod
    def any(cls) -> "GenericFact":
        return cls()

    @classmethod
    def only(cls, value: Any) -> "GenericFact":
        return cls(value)

    @classmethod
    def one_of(cls, values: Iterable[Any]) -> "GenericFact":
        return cls._from_options(list(values))

    @property
    def options(self) -> Optional[FrozenSet[Any]]:
        return self._options

    def is_any(self) -> bool:
        return self._options is None

    def is_concrete(self) -> bool:
        return self._options is not None and len(self._options) == 1

    def concretize(self) -> Any:
        if not self.is_concrete():
            return None
        (value,) = self._options
        return value

    def _accept(self, other: Any) -> "GenericFact":
        if isinstance(other, type(self)):
            return other
        if isinstance(other, GenericFact) and other.kind == self.kind:
            if other._options is None:
                return type(self)()
            admitted = [value for value in other._options if self._admits(value)]
            if not admitted:
                raise Contradiction(f"{other!r} is not a valid {type(self).__name__}")
            return type(self)._from_options(admitted)
        raise TypeError(f"Cannot unify {type(self).__name__} with {type(other).__name__}")

    @classmethod
    def _admits(cls, value: Any) -> bool:
        return True

    def unify(self, other: Any) -> "GenericFact":
        other = self._accept(other)
        if other._options is None:
            return self
        if self._options is None:
            return other
        common = self._options & other._options
        if not common:
            raise Contradiction(f"Impossible to unify {self!r} with {other!r}")
        if common == self._options:
            return self
        return type(self)._from_options(common)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GenericFact) or other.kind != self.kind:
            return NotImplemented
        return self._options == other._options

    def __hash__(self) -> int:
        return hash((self.kind, self._options))

    def __repr__(self) -> str:
        if self._options is None:
            return "?"
        if len(self._options) == 1:
            return self._format(self.concretize())
        listed = ", ".join(sorted(self._format(value) for value in self._options))
        return "{" + listed + "}"

    def _format(self, value: Any) -> str:
        return repr(value)


class IntFact(GenericFact):
    __slots__ = ()
    kind = "int"

    @classmethod
    def _coerce(cls, value: Any) -> int:
        if isinstance(value, bool):
            raise TypeError("booleans are not integer facts")
        return operator.index(value)


class DimFact(IntFact):
    """An integer fact restricted to valid dimension sizes."""

    __slots__ = ()

    @classmethod
    def _coerce(cls, value: Any) -> int:
        value = super()._coerce(value)
        if value < 0:
            raise Contradiction(f"Dimension cannot be negative (got {value})")
        return value

    @classmethod
    def _admits(cls, value: Any) -> bool:
        return value >= 0


class TypeFact(GenericFact):
    __slots__ = ()
    kind = "type"

    @classmethod
    def _coerce(cls, value: Any) -> np.dtype:
        return np.dtype(value)

    def _format(self, value: Any) -> str:
        return str(value)


class ValueFact(Fact):
    """Either nothing is known about a tensor's contents or all of it is."""

    __slots__ = ("_value",)

    def __init__(self, value: Any = ANY):
        if value is ANY or value is None:
            self._value: Optional[np.ndarray] = None
        elif isinstance(value, ValueFact):
            self._value = value._value
        else:
            array = np.array(value, copy=True)
            array.setflags(write=False)
            self._value = array

    @classmethod
    def any(cls) -> "ValueFact":
        return cls()

    @classmethod
    def only(cls, value: Any) -> "ValueFact":
        return cls(value)

    def is_any(self) -> bool:
        return self._value is None

    def is_concrete(self) -> bool:
        return self._value is not None

    def concretize(self) -> Optional[np.ndarray]:
        return self._value

    def unify(self, other: Any) -> "ValueFact":
        if not isinstance(other, ValueFact):
            raise TypeError(f"Cannot unify ValueFact with {type(other).__name__}")
        if other._value is None:
            return self
        if self._value is None:
            return other
        if _same_array(self._value, other._value):
            return self
        raise Contradiction(f"Impossible to unify {self!r} with {other!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValueFact):
            return NotImplemented
        if self._value is None or other._value is None:
            return self._value is None and other._value is None
        return _same_array(self._value, other._value)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._value is None:
            return "?"
        return f"{self._value.dtype} {self._value.tolist()!r}"


def _same_array(a: np.ndarray, b: np.ndarray) -> bool:
    if a is b:
        return True
    return a.dtype == b.dtype and a.shape == b.shape and bool(np.array_equal(a, b))


def element_fact(element: Any) -> IntFact:
    """Integer view of one element of a value.

    Integer and boolean elements, and floats holding an integral value, read
    as exact integers.  Anything else reads as unknown.
    """
    element = np.asarray(element)
    if np.issubdtype(element.dtype, np.integer) or element.dtype == np.bool_:
        return IntFact(int(element))
    if np.issubdtype(element.dtype, np.floating) and np.isfinite(element):
        number = float(element)
        if number.is_integer():
            return IntFact(int(number))
    return IntFact()


def check_element(element: Any, fact: Any) -> IntFact:
    """Meet ``fact`` with a known element, failing when no integer can match it."""
    current = element_fact(element)
    merged = current.unify(fact)
    if current.is_any() and not merged.is_any():
        raise Contradiction(f"Element {np.asarray(element).item()!r} is not the integer {merged!r}")
    return merged


ElementIndex = Tuple[int, ...]


def _dim(value: Any) -> DimFact:
    return value if isinstance(value, DimFact) else DimFact(value)


class ShapeFact(Fact):
    """Partial knowledge about a shape.

    A closed shape has exactly ``len(dims)`` axes.  An open shape has at
    least that many, the listed dims being a known prefix.
    """

    __slots__ = ("open", "dims")

    def __init__(self, dims: Iterable[Any] = (), open: bool = False):
        self.open = bool(open)
        self.dims: Tuple[DimFact, ...] = tuple(_dim(d) for d in dims)

    @classmethod
    def any(cls) -> "ShapeFact":
        return cls((), open=True)

    @classmethod
    def closed(cls, dims: Iterable[Any]) -> "ShapeFact":
        return cls(dims, open=False)

    @classmethod
    def partial(cls, dims: Iterable[Any]) -> "ShapeFact":
        return cls(dims, open=True)

    def rank(self) -> IntFact:
        if self.open:
            return IntFact()
        return IntFact(len(self.dims))

    def is_concrete(self) -> bool:
        return not self.open and all(d.is_concrete() for d in self.dims)

    def concretize(self) -> Optional[Tuple[int, ...]]:
        if not self.is_concrete():
            return None
        return tuple(d.concretize() for d in self.dims)

    def dim(self, axis: int) -> DimFact:
        if axis < len(self.dims):
            return self.dims[axis]
        if self.open:
            return DimFact()
        raise Contradiction(f"Axis {axis} is out of range for shape {self!r}")

    def with_dim(self, axis: int, fact: Any) -> "ShapeFact":
        if axis < len(self.dims):
            merged = self.dims[axis].unify(fact)
            if merged is self.dims[axis]:
                return self
            dims = list(self.dims)
            dims[axis] = merged
            return ShapeFact(dims, open=self.open)
        if not self.open:
            raise Contradiction(f"Axis {axis} is out of range for shape {self!r}")
        merged = DimFact().unify(fact)
        if merged.is_any():
            return self
        padding = [DimFact()] * (axis - len(self.dims))
        return ShapeFact(list(self.dims) + padding + [merged], open=True)

    def with_rank(self, rank: IntFact) -> "ShapeFact":
        if not self.open:
            self.rank().unify(rank)
            return self
        if rank.options is None:
            return self
        options = [value for value in rank.options if value >= len(self.dims)]
        if not options:
            raise Contradiction(f"Rank {rank!r} is too small for shape {self!r}")
        if len(options) > 1:
            return self
        padding = [DimFact()] * (options[0] - len(self.dims))
        return ShapeFact(list(self.dims) + padding, open=False)

    def unify(self, other: Any) -> "ShapeFact":
        if not isinstance(other, ShapeFact):
            raise TypeError(f"Cannot unify ShapeFact with {type(other).__name__}")
        if not self.open and not other.open and len(self.dims) != len(other.dims):
            raise Contradiction(f"Impossible to unify {self!r} with {other!r}")
        for closed, partial in ((self, other), (other, self)):
            if not closed.open and partial.open and len(partial.dims) > len(closed.dims):
                raise Contradiction(f"Impossible to unify {self!r} with {other!r}")
        length = max(len(self.dims), len(other.dims))
        dims: List[DimFact] = []
        for axis in range(length):
            left = self.dims[axis] if axis < len(self.dims) else DimFact()
            right = other.dims[axis] if axis < len(other.dims) else DimFact()
            try:
                dims.append(left.unify(right))
            except Contradiction as exc:
                raise Contradiction(
                    f"Impossible to unify {self!r} with {other!r} on axis {axis}"
                ) from exc
        merged = ShapeFact(dims, open=self.open and other.open)
        if merged == self:
            return self
        return merged

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShapeFact):
            return NotImplemented
        return self.open == other.open and self.dims == other.dims

    def __hash__(self) -> int:
        return hash((self.open, self.dims))

    def __repr__(self) -> str:
        items = [repr(d) for d in self.dims]
        if self.open:
            items.append("..")
        return "[" + ", ".join(items) + "]"


def _as_type_fact(value: Any) -> TypeFact:
    if isinstance(value, TypeFact):
        return value
    return TypeFact(value)


def _as_shape_fact(value: Any) -> ShapeFact:
    if isinstance(value, ShapeFact):
        return value
    if value is None or value is ANY:
        return ShapeFact.any()
    return ShapeFact.closed(value)


def _as_value_fact(value: Any) -> ValueFact:
    if isinstance(value, ValueFact):
        return value
    return ValueFact(value)


@dataclass(eq=True)
class InferenceFact:
    """Everything known about one tensor: datum type, shape and value.

    The rank is not stored; it is read from the shape.  Setting a concrete
    value pins down the datum type and shape as well.

    ``elements`` holds integer facts about single elements while the value
    itself is still unknown.  They are checked against the shape as it gets
    refined, and against the value once it becomes concrete, at which point
    the table is emptied.
    """

    datum_type: TypeFact = field(default_factory=TypeFact)
    shape: ShapeFact = field(default_factory=ShapeFact.any)
    value: ValueFact = field(default_factory=ValueFact)
    elements: Dict[ElementIndex, IntFact] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.datum_type = _as_type_fact(self.datum_type)
        self.shape = _as_shape_fact(self.shape)
        self.value = _as_value_fact(self.value)
        self.elements = {tuple(index): IntFact(fact) for index, fact in self.elements.items()}
        self._normalize()

    @classmethod
    def default(cls) -> "InferenceFact":
        return cls()

    @classmethod
    def dt_shape(cls, datum_type: Any, shape: Any) -> "InferenceFact":
        return cls(datum_type=datum_type, shape=shape)

    @classmethod
    def from_tensor(cls, tensor: Any) -> "InferenceFact":
        return cls(value=tensor)

    @property
    def rank(self) -> IntFact:
        return self.shape.rank()

    def is_concrete(self) -> bool:
        return self.datum_type.is_concrete() and self.shape.is_concrete()

    def copy(self) -> "InferenceFact":
        return InferenceFact(self.datum_type, self.shape, self.value, dict(self.elements))

    def unify(self, other: "InferenceFact") -> "InferenceFact":
        if not isinstance(other, InferenceFact):
            raise TypeError(f"Cannot unify InferenceFact with {type(other).__name__}")
        elements = dict(self.elements)
        for index, fact in other.elements.items():
            elements[index] = elements[index].unify(fact) if index in elements else fact
        return InferenceFact(
            datum_type=self.datum_type.unify(other.datum_type),
            shape=self.shape.unify(other.shape),
            value=self.value.unify(other.value),
            elements=elements,
        )

    def update(
        self,
        *,
        datum_type: Optional[TypeFact] = None,
        shape: Optional[ShapeFact] = None,
        value: Optional[ValueFact] = None,
        elements: Optional[Dict[ElementIndex, IntFact]] = None,
    ) -> bool:
        """Replace components with refinements of themselves; True if anything changed."""
        before = (self.datum_type, self.shape, self.value, self.elements)
        if datum_type is not None:
            self.datum_type = datum_type
        if shape is not None:
            self.shape = shape
        if value is not None:
            self.value = value
        if elements is not None:
            self.elements = elements
        try:
            self._normalize()
        except Contradiction:
            self.datum_type, self.shape, self.value, self.elements = before
            raise
        return (self.datum_type, self.shape, self.value, self.elements) != before

    def refine(self, other: "InferenceFact") -> bool:
        merged = self.unify(other)
        return self.update(
            datum_type=merged.datum_type,
            shape=merged.shape,
            value=merged.value,
            elements=merged.elements,
        )

    def _normalize(self) -> None:
        tensor = self.value.concretize()
        if tensor is None:
            self._check_element_indices()
            return
        self.datum_type = self.datum_type.unify(TypeFact(tensor.dtype))
        self.shape = self.shape.unify(ShapeFact.closed(tensor.shape))
        for index, fact in self.elements.items():
            if len(index) != tensor.ndim or any(i >= n for i, n in zip(index, tensor.shape)):
                raise Contradiction(
                    f"Element {list(index)} does not exist in a value of shape {list(tensor.shape)}"
                )
            check_element(tensor[index], fact)
        if self.elements:
            self.elements = {}

    def _check_element_indices(self) -> None:
        shape = self.shape
        for index in self.elements:
            fits = len(index) >= len(shape.dims) and (shape.open or len(index) == len(shape.dims))
            fits = fits and all(
                not dim.is_concrete() or i < dim.concretize() for i, dim in zip(index, shape.dims)
            )
            if not fits:
                raise Contradiction(f"Element {list(index)} does not fit in shape {shape!r}")

    def to_json(self) -> dict:
        shape: Optional[List[Optional[int]]] = None
        if not (self.shape.open and not self.shape.dims):
            shape = [d.concretize() for d in self.shape.dims]
        datum_type = self.datum_type.concretize()
        tensor = self.value.concretize()
        return {
            "datum_type": None if datum_type is None else str(datum_type),
            "shape": shape,
            "open": self.shape.open,
            "value": None if tensor is None else tensor.tolist(),
        }

    def __str__(self) -> str:
        text = f"{self.datum_type!r} {self.shape!r}"
        tensor = self.value.concretize()
        if tensor is not None and tensor.size <= 16:
            text += f" = {tensor.tolist()!r}"
        return text


def coerce_facts(facts: Sequence[Any]) -> List[InferenceFact]:
    return [f if isinstance(f, InferenceFact) else InferenceFact(**f) for f in facts]
