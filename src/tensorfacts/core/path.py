"""Addresses into a node's fact trees.

A path starts with the tensor list (``0`` for inputs, ``1`` for outputs),
then either ``-1`` for the list length or a tensor index.  Below a tensor,
``0`` is the datum type, ``1`` the rank, ``2`` the shape (optionally followed
by an axis) and ``3`` the value (optionally followed by ``-1`` for the scalar
root or by element indices).  ``inputs[0].shape[1]`` is ``[0, 0, 2, 1]``.
"""

from __future__ import annotations

import operator
from typing import TYPE_CHECKING, Any, Iterable, List, Tuple

import numpy as np

from .exceptions import Contradiction, PathError
from .facts import Fact, InferenceFact, IntFact, ValueFact, check_element, element_fact

if TYPE_CHECKING:
    from .solver import SolverContext

INPUTS = 0
OUTPUTS = 1

DATUM_TYPE = 0
RANK = 1
SHAPE = 2
VALUE = 3

# Length of a tensor list, or scalar root of a value.
LEN = -1


class Path(tuple):
    __slots__ = ()

    def __new__(cls, components: Iterable[int] = ()) -> "Path":
        return super().__new__(cls, (operator.index(c) for c in components))

    def concat(self, *suffix: Any) -> "Path":
        """``path.concat(2, -1)`` or ``path.concat(other_path)``."""
        if len(suffix) == 1 and not hasattr(suffix[0], "__index__"):
            suffix = tuple(suffix[0])
        return Path(tuple(self) + tuple(suffix))

    def __repr__(self) -> str:
        return "[" + ", ".join(str(c) for c in self) + "]"

    __str__ = __repr__


def get_path(context: "SolverContext", path: Path) -> Fact:
    tensors, rest = _split(context, path)
    if rest[0] == LEN:
        if len(rest) != 1:
            raise PathError("Nothing can be addressed below a tensor list length", path=path)
        return IntFact(len(tensors))
    tensor = _tensor_at(tensors, rest[0], path)
    return _get_tensor_path(tensor, rest[1:], path)


def set_path(context: "SolverContext", path: Path, fact: Any) -> bool:
    """Unify ``fact`` into the location at ``path``; True if it got more precise."""
    tensors, rest = _split(context, path)
    if rest[0] == LEN:
        if len(rest) != 1:
            raise PathError("Nothing can be addressed below a tensor list length", path=path)
        # The graph fixes the number of tensors, so a length can only be checked.
        _unify_at(IntFact(len(tensors)), fact, path)
        return False
    tensor = _tensor_at(tensors, rest[0], path)
    return _set_tensor_path(tensor, rest[1:], fact, path)


def _split(context: "SolverContext", path: Path) -> Tuple[List[InferenceFact], Tuple[int, ...]]:
    if len(path) < 2:
        raise PathError("A path must address a tensor list member or length", path=path)
    if path[0] == INPUTS:
        return context.inputs, tuple(path[1:])
    if path[0] == OUTPUTS:
        return context.outputs, tuple(path[1:])
    raise PathError(f"Unknown tensor list {path[0]}", path=path)


def _tensor_at(tensors: List[InferenceFact], index: int, path: Path) -> InferenceFact:
    if index < 0:
        raise PathError(f"Invalid tensor index {index}", path=path)
    if index >= len(tensors):
        side = "inputs" if path[0] == INPUTS else "outputs"
        raise Contradiction(
            f"Tensor index {index} is out of range for {len(tensors)} {side}",
            path=path,
        )
    return tensors[index]


def _unify_at(current: Any, fact: Any, path: Path) -> Any:
    try:
        return current.unify(fact)
    except Contradiction as exc:
        raise exc.with_context(path=path) from None


def _get_tensor_path(tensor: InferenceFact, rest: Tuple[int, ...], path: Path) -> Any:
    if not rest:
        return tensor
    head, tail = rest[0], rest[1:]
    if head == DATUM_TYPE and not tail:
        return tensor.datum_type
    if head == RANK and not tail:
        return tensor.rank
    if head == SHAPE:
        if not tail:
            return tensor.shape
        if len(tail) == 1 and tail[0] >= 0:
            try:
                return tensor.shape.dim(tail[0])
            except Contradiction as exc:
                raise exc.with_context(path=path) from None
    if head == VALUE:
        if not tail:
            return tensor.value
        index = _element_index(tail, path)
        element = _known_element(tensor.value, index, path)
        if element is None:
            return tensor.elements.get(index, IntFact())
        return element_fact(element)
    raise PathError("Path does not address a tensor property", path=path)


def _element_index(tail: Tuple[int, ...], path: Path) -> Tuple[int, ...]:
    # The scalar root is the element with an empty index.
    if tail == (LEN,):
        return ()
    if any(index < 0 for index in tail):
        raise PathError("Element indices must be non-negative", path=path)
    return tail


def _known_element(value: ValueFact, index: Tuple[int, ...], path: Path) -> Any:
    array = value.concretize()
    if array is None:
        return None
    if not index and array.ndim != 0:
        raise Contradiction(f"Value of rank {array.ndim} has no scalar root", path=path)
    if len(index) != array.ndim or any(i >= n for i, n in zip(index, array.shape)):
        raise Contradiction(
            f"Element {list(index)} does not exist in a value of shape {list(array.shape)}",
            path=path,
        )
    return array[index]


def _set_tensor_path(
    tensor: InferenceFact,
    rest: Tuple[int, ...],
    fact: Any,
    path: Path,
) -> bool:
    try:
        return _set_tensor_field(tensor, rest, fact, path)
    except Contradiction as exc:
        raise exc.with_context(path=path) from None


def _set_tensor_field(
    tensor: InferenceFact,
    rest: Tuple[int, ...],
    fact: Any,
    path: Path,
) -> bool:
    if not rest:
        return tensor.refine(fact)
    head, tail = rest[0], rest[1:]
    if head == DATUM_TYPE and not tail:
        return tensor.update(datum_type=tensor.datum_type.unify(fact))
    if head == RANK and not tail:
        rank = tensor.rank.unify(fact)
        return tensor.update(shape=tensor.shape.with_rank(rank))
    if head == SHAPE:
        if not tail:
            return tensor.update(shape=tensor.shape.unify(fact))
        if len(tail) == 1 and tail[0] >= 0:
            return tensor.update(shape=tensor.shape.with_dim(tail[0], fact))
    if head == VALUE:
        if not tail:
            return tensor.update(value=tensor.value.unify(fact))
        return _set_element(tensor, _element_index(tail, path), fact, path)
    raise PathError("Path does not address a tensor property", path=path)


def _set_element(tensor: InferenceFact, index: Tuple[int, ...], fact: Any, path: Path) -> bool:
    element = _known_element(tensor.value, index, path)
    if element is not None:
        check_element(element, fact)
        return False
    current = tensor.elements.get(index, IntFact())
    merged = current.unify(fact)
    if not index and merged.is_concrete():
        datum_type = tensor.datum_type.concretize()
        if datum_type is None:
            datum_type = np.dtype(np.int64)
        scalar = np.array(merged.concretize(), dtype=datum_type)
        elements = dict(tensor.elements)
        elements[index] = merged
        return tensor.update(value=ValueFact(scalar), elements=elements)
    if merged is current:
        return False
    elements = dict(tensor.elements)
    elements[index] = merged
    return tensor.update(elements=elements)
