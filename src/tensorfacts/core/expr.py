from __future__ import annotations

import operator
from typing import TYPE_CHECKING, Any, List, Sequence

import numpy as np

from .exceptions import Contradiction
from .facts import Fact, IntFact, ShapeFact, TypeFact, ValueFact
from .path import Path
from .proxies import ComparableProxy

if TYPE_CHECKING:
    from .solver import SolverContext


class Exp:
    """Something a rule can read a fact from and unify a fact into."""

    def get(self, context: "SolverContext") -> Any:
        raise NotImplementedError

    def set(self, context: "SolverContext", fact: Any) -> bool:
        raise NotImplementedError

    def get_paths(self) -> List[Path]:
        raise NotImplementedError

    def __add__(self, other: Any) -> "SumExp":
        return SumExp([self, to_exp(other)])

    def __radd__(self, other: Any) -> "SumExp":
        return SumExp([to_exp(other), self])

    def __sub__(self, other: Any) -> "SumExp":
        return SumExp([self, -to_exp(other)])

    def __rsub__(self, other: Any) -> "SumExp":
        return SumExp([to_exp(other), -self])

    def __neg__(self) -> "ScaledExp":
        return ScaledExp(-1, self)

    def __mul__(self, other: Any) -> "ScaledExp":
        if isinstance(other, bool) or not isinstance(other, (int, np.integer)):
            return NotImplemented
        return ScaledExp(int(other), self)

    __rmul__ = __mul__


class ConstantExp(Exp):
    def __init__(self, fact: Fact):
        self.fact = fact

    def get(self, context):
        return self.fact

    def set(self, context, fact):
        self.fact.unify(fact)
        return False

    def get_paths(self):
        return []

    def __repr__(self) -> str:
        return repr(self.fact)


class VariableExp(Exp):
    def __init__(self, proxy: ComparableProxy):
        self.proxy = proxy

    def get(self, context):
        return context.get(self.proxy.get_path())

    def set(self, context, fact):
        return context.set(self.proxy.get_path(), fact)

    def get_paths(self):
        return [self.proxy.get_path()]

    def __repr__(self) -> str:
        return repr(self.proxy.get_path())


class ScaledExp(Exp):
    """``scale * inner`` over integers."""

    def __init__(self, scale: int, inner: Exp):
        self.scale = scale
        self.inner = inner

    def get(self, context):
        fact = IntFact().unify(self.inner.get(context))
        if fact.options is None:
            return IntFact()
        return IntFact.one_of(self.scale * value for value in fact.options)

    def set(self, context, fact):
        target = IntFact().unify(fact)
        if target.options is None:
            return False
        if self.scale == 0:
            IntFact(0).unify(target)
            return False
        candidates = [value // self.scale for value in target.options if value % self.scale == 0]
        if not candidates:
            raise Contradiction(f"No integer x satisfies {self.scale}*x = {target!r}")
        return self.inner.set(context, IntFact.one_of(candidates))

    def get_paths(self):
        return self.inner.get_paths()

    def __neg__(self) -> "ScaledExp":
        return ScaledExp(-self.scale, self.inner)

    def __repr__(self) -> str:
        return f"{self.scale}*{self.inner!r}"


class SumExp(Exp):
    """Sum of integer expressions; setting it solves for a single unknown term."""

    def __init__(self, items: Sequence[Exp]):
        flat: List[Exp] = []
        for item in items:
            if isinstance(item, SumExp):
                flat.extend(item.items)
            else:
                flat.append(item)
        self.items = flat

    def get(self, context):
        total = 0
        for item in self.items:
            value = IntFact().unify(item.get(context)).concretize()
            if value is None:
                return IntFact()
            total += value
        return IntFact(total)

    def set(self, context, fact):
        target = IntFact().unify(fact).concretize()
        if target is None:
            return False
        known = 0
        unknown: List[Exp] = []
        for item in self.items:
            value = IntFact().unify(item.get(context)).concretize()
            if value is None:
                unknown.append(item)
            else:
                known += value
        if not unknown:
            IntFact(known).unify(IntFact(target))
            return False
        if len(unknown) > 1:
            return False
        return unknown[0].set(context, IntFact(target - known))

    def get_paths(self):
        return [path for item in self.items for path in item.get_paths()]

    def __repr__(self) -> str:
        return " + ".join(repr(item) for item in self.items)


def to_exp(value: Any) -> Exp:
    """Turn a proxy, fact or Python literal into an expression."""
    if isinstance(value, Exp):
        return value
    if isinstance(value, ComparableProxy):
        return VariableExp(value)
    if isinstance(value, Fact):
        return ConstantExp(value)
    if isinstance(value, bool):
        raise TypeError("booleans cannot be used in rules")
    if isinstance(value, (int, np.integer)):
        return ConstantExp(IntFact(operator.index(value)))
    if isinstance(value, (str, np.dtype)) or (
        isinstance(value, type) and issubclass(value, np.generic)
    ):
        return ConstantExp(TypeFact(value))
    if isinstance(value, np.ndarray):
        return ConstantExp(ValueFact(value))
    if isinstance(value, (tuple, list)):
        return ConstantExp(ShapeFact.closed(value))
    raise TypeError(f"Cannot use {type(value).__name__} in a rule")
