"""
Operators and the rules they declare over their input and output facts.

Every operator implements ``rules(s, inputs, outputs)`` where ``s`` is a
:class:`~tensorfacts.core.rules.RuleSet` and ``inputs``/``outputs`` are
:class:`~tensorfacts.core.proxies.TensorsProxy` roots.  Rules run in both
directions: an output fact known from downstream can refine an input.
:data:`OP_REGISTRY` maps graph op types to builders taking the node
attributes.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.exceptions import Contradiction
from ..core.facts import InferenceFact
from ..core.parser import RuleProgram, parse_rules
from ..core.proxies import TensorsProxy, tensors_proxies
from ..core.rules import RuleSet
from ..core.solver import Solver, SolverConfig

__all__ = [
    "Op",
    "Source",
    "Constant",
    "Identity",
    "Cast",
    "BinaryOp",
    "MatMul",
    "Shape",
    "Reshape",
    "Concat",
    "Transpose",
    "TextRulesOp",
    "UnimplementedOp",
    "OP_REGISTRY",
    "build_op",
]


class Op:
    name = "Op"

    def rules(self, s: RuleSet, inputs: TensorsProxy, outputs: TensorsProxy) -> None:
        raise NotImplementedError

    def infer_facts(
        self,
        inputs: Sequence[Any],
        outputs: Sequence[Any],
        config: Optional[SolverConfig] = None,
    ) -> Tuple[List[InferenceFact], List[InferenceFact]]:
        solver = Solver(config)
        self.rules(solver, *tensors_proxies())
        return solver.infer_facts(inputs, outputs)

    def __repr__(self) -> str:
        return self.name


def check_arity(s: RuleSet, inputs: TensorsProxy, outputs: TensorsProxy, n_in: int, n_out: int):
    s.equals(inputs.len, n_in)
    s.equals(outputs.len, n_out)


# ---------------------------------------------------------------------------
# Graph boundary


class Source(Op):
    name = "Source"

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 0, 1)


class Constant(Op):
    name = "Constant"

    def __init__(self, value: Any):
        self.value = np.array(value)

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 0, 1)
        s.equals(outputs[0].value, self.value)


class UnimplementedOp(Op):
    """Placeholder for op types without rules; its outputs stay as found."""

    def __init__(self, op_type: str, n_outputs: int):
        self.name = op_type
        self.n_outputs = n_outputs

    def rules(self, s, inputs, outputs):
        s.equals(outputs.len, self.n_outputs)


class TextRulesOp(Op):
    def __init__(self, text: str, name: str = "TextRules"):
        self.name = name
        self.program: RuleProgram = parse_rules(text)

    def rules(self, s, inputs, outputs):
        self.program.apply(s, inputs, outputs)


# ---------------------------------------------------------------------------
# Element-wise


class Identity(Op):
    name = "Identity"

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 1, 1)
        s.equals(inputs[0].datum_type, outputs[0].datum_type)
        s.equals(inputs[0].shape, outputs[0].shape)
        s.equals(inputs[0].value, outputs[0].value)


class Cast(Op):
    name = "Cast"

    def __init__(self, to: Any):
        self.to = np.dtype(to)

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 1, 1)
        s.equals(outputs[0].datum_type, self.to)
        s.equals(inputs[0].shape, outputs[0].shape)
        s.given(
            inputs[0].value,
            lambda s, value: s.equals(outputs[0].value, value.astype(self.to)),
        )


def _broadcast(left: Tuple[int, ...], right: Tuple[int, ...]) -> Tuple[int, ...]:
    try:
        return tuple(np.broadcast_shapes(left, right))
    except ValueError as exc:
        raise Contradiction(f"Shapes {list(left)} and {list(right)} do not broadcast") from exc


class BinaryOp(Op):
    """Element-wise arithmetic with numpy broadcasting."""

    def __init__(self, name: str, function: Callable[[np.ndarray, np.ndarray], np.ndarray]):
        self.name = name
        self.function = function

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 2, 1)
        s.equals_all([inputs[0].datum_type, inputs[1].datum_type, outputs[0].datum_type])
        s.given_2(
            inputs[0].rank,
            inputs[1].rank,
            lambda s, a, b: s.equals(outputs[0].rank, max(a, b)),
        )
        s.given_2(
            inputs[0].shape,
            inputs[1].shape,
            lambda s, a, b: s.equals(outputs[0].shape, _broadcast(a, b)),
        )
        s.given_2(inputs[0].value, inputs[1].value, self._evaluate(outputs))

    def _evaluate(self, outputs):
        def closure(s, a, b):
            result = np.asarray(self.function(a, b)).astype(a.dtype, copy=False)
            s.equals(outputs[0].value, result)

        return closure


# ---------------------------------------------------------------------------
# Linear algebra and layout


class MatMul(Op):
    """Product of two matrices."""

    name = "MatMul"

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 2, 1)
        a, b, c = inputs[0], inputs[1], outputs[0]
        s.equals_all([a.datum_type, b.datum_type, c.datum_type])
        s.equals_all([a.rank, b.rank, c.rank, 2])
        s.equals(a.shape[1], b.shape[0])
        s.equals(c.shape[0], a.shape[0])
        s.equals(c.shape[1], b.shape[1])
        s.given_2(a.value, b.value, lambda s, x, y: s.equals(c.value, x @ y))


class Shape(Op):
    name = "Shape"

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 1, 1)
        data, shape = inputs[0], outputs[0]
        s.equals(shape.datum_type, np.int64)
        s.equals(shape.rank, 1)
        s.equals(shape.shape[0], data.rank)
        s.given(
            data.shape,
            lambda s, dims: s.equals(shape.value, np.array(dims, dtype=np.int64)),
        )

        def per_axis(s, rank):
            for axis in range(rank):
                s.equals(shape.value[axis], data.shape[axis])

        s.given(data.rank, per_axis)


def _reshape_dims(shape: Tuple[int, ...], target: np.ndarray) -> Tuple[int, ...]:
    dims = [int(d) for d in np.asarray(target).reshape(-1)]
    for axis, dim in enumerate(dims):
        if dim == 0:
            if axis >= len(shape):
                raise Contradiction(f"Reshape copies axis {axis} of a rank {len(shape)} tensor")
            dims[axis] = shape[axis]
    volume = int(np.prod(shape, dtype=np.int64))
    wildcards = [axis for axis, dim in enumerate(dims) if dim == -1]
    if len(wildcards) > 1:
        raise Contradiction(f"Reshape target {dims} has more than one -1")
    if wildcards:
        known = int(np.prod([d for d in dims if d != -1], dtype=np.int64))
        if known == 0 or volume % known:
            raise Contradiction(f"Cannot reshape {list(shape)} to {dims}")
        dims[wildcards[0]] = volume // known
    if int(np.prod(dims, dtype=np.int64)) != volume:
        raise Contradiction(f"Cannot reshape {list(shape)} to {dims}")
    return tuple(dims)


class Reshape(Op):
    """Reshape by a shape tensor; ``0`` copies an input axis, ``-1`` is inferred."""

    name = "Reshape"

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 2, 1)
        data, target, out = inputs[0], inputs[1], outputs[0]
        s.equals(out.datum_type, data.datum_type)
        s.equals(target.datum_type, np.int64)
        s.equals(target.rank, 1)
        s.equals(out.rank, target.shape[0])
        s.given_2(
            data.shape,
            target.value,
            lambda s, shape, dims: s.equals(out.shape, _reshape_dims(shape, dims)),
        )
        s.given_2(
            data.value,
            target.value,
            lambda s, value, dims: s.equals(
                out.value, value.reshape(_reshape_dims(value.shape, dims))
            ),
        )


class Concat(Op):
    """Concatenation of any number of inputs along ``axis``."""

    name = "Concat"

    def __init__(self, axis: int = 0):
        self.axis = int(axis)

    def rules(self, s, inputs, outputs):
        s.equals(outputs.len, 1)
        s.given(inputs.len, lambda s, n: self._rules_for(s, inputs, outputs, n))

    def _rules_for(self, s, inputs, outputs, n: int) -> None:
        if n < 1:
            raise Contradiction("Concat needs at least one input")
        out = outputs[0]
        tensors = [inputs[i] for i in range(n)]
        s.equals_all([t.datum_type for t in tensors] + [out.datum_type])
        s.equals_all([t.rank for t in tensors] + [out.rank])

        def per_axis(s, rank):
            axis = self.axis + rank if self.axis < 0 else self.axis
            if not 0 <= axis < rank:
                raise Contradiction(f"Concat axis {self.axis} is out of range for rank {rank}")
            for d in range(rank):
                if d == axis:
                    s.equals_zero([t.shape[d] for t in tensors] + [-out.shape[d]])
                else:
                    s.equals_all([t.shape[d] for t in tensors] + [out.shape[d]])

        s.given(out.rank, per_axis)
        s.given_all(
            [t.value for t in tensors],
            lambda s, values: s.equals(
                out.value, np.concatenate(values, axis=self.axis)
            ),
        )


class Transpose(Op):
    name = "Transpose"

    def __init__(self, perm: Optional[Sequence[int]] = None):
        self.perm = None if perm is None else [int(p) for p in perm]

    def _perm(self, rank: int) -> List[int]:
        perm = list(reversed(range(rank))) if self.perm is None else self.perm
        if sorted(perm) != list(range(rank)):
            raise Contradiction(f"{perm} is not a permutation of {rank} axes")
        return perm

    def rules(self, s, inputs, outputs):
        check_arity(s, inputs, outputs, 1, 1)
        data, out = inputs[0], outputs[0]
        s.equals(data.datum_type, out.datum_type)
        s.equals(data.rank, out.rank)

        def per_axis(s, rank):
            for axis, source in enumerate(self._perm(rank)):
                s.equals(out.shape[axis], data.shape[source])

        s.given(data.rank, per_axis)
        s.given(
            data.value,
            lambda s, value: s.equals(out.value, np.transpose(value, self._perm(value.ndim))),
        )


# ---------------------------------------------------------------------------
# Registry

OP_REGISTRY: Dict[str, Callable[[Dict[str, Any]], Op]] = {
    "Identity": lambda attrs: Identity(),
    "Cast": lambda attrs: Cast(attrs["to"]),
    "Add": lambda attrs: BinaryOp("Add", np.add),
    "Sub": lambda attrs: BinaryOp("Sub", np.subtract),
    "Mul": lambda attrs: BinaryOp("Mul", np.multiply),
    "Div": lambda attrs: BinaryOp("Div", np.divide),
    "MatMul": lambda attrs: MatMul(),
    "Shape": lambda attrs: Shape(),
    "Reshape": lambda attrs: Reshape(),
    "Concat": lambda attrs: Concat(attrs.get("axis", 0)),
    "Transpose": lambda attrs: Transpose(attrs.get("perm")),
    "Constant": lambda attrs: Constant(np.array(attrs["value"], dtype=attrs.get("dtype"))),
}


def build_op(
    op_type: str,
    attrs: Optional[Dict[str, Any]] = None,
    registry: Optional[Dict[str, Callable[[Dict[str, Any]], Op]]] = None,
) -> Optional[Op]:
    """Build a registered operator, or return ``None`` for an unknown op type."""
    builder = (registry if registry is not None else OP_REGISTRY).get(op_type)
    if builder is None:
        return None
    return builder(dict(attrs or {}))
