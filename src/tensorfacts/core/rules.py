from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence

from .exceptions import Contradiction
from .expr import Exp, SumExp, to_exp
from .facts import IntFact
from .path import Path

if TYPE_CHECKING:
    from .solver import SolverContext


@dataclass
class RuleOutcome:
    changed: bool = False
    consumed: bool = False
    new_rules: List["Rule"] = field(default_factory=list)


class Rule:
    def apply(self, context: "SolverContext") -> RuleOutcome:
        raise NotImplementedError

    def get_paths(self) -> List[Path]:
        raise NotImplementedError


def _set_all(context: "SolverContext", items: Sequence[Exp], fact: Any) -> bool:
    changed = False
    for item in items:
        changed |= item.set(context, fact)
    return changed


class EqualsAllRule(Rule):
    """All items hold the same fact; each is refined with the common meet."""

    def __init__(self, items: Sequence[Exp]):
        self.items = list(items)

    def apply(self, context):
        merged = self.items[0].get(context)
        for item in self.items[1:]:
            try:
                merged = merged.unify(item.get(context))
            except Contradiction as exc:
                paths = item.get_paths() or self.get_paths()
                raise exc.with_context(path=paths[0] if paths else None) from None
        return RuleOutcome(changed=_set_all(context, self.items, merged))

    def get_paths(self):
        return [path for item in self.items for path in item.get_paths()]

    def __repr__(self) -> str:
        return "Equals(" + ", ".join(repr(item) for item in self.items) + ")"


class EqualsZeroRule(Rule):
    """The items sum to zero."""

    def __init__(self, items: Sequence[Exp]):
        self.sum = SumExp(items)

    def apply(self, context):
        return RuleOutcome(changed=self.sum.set(context, IntFact(0)))

    def get_paths(self):
        return self.sum.get_paths()

    def __repr__(self) -> str:
        return f"EqualsZero({self.sum!r})"


class GivenAllRule(Rule):
    """Once every item is concrete, hand the values to a closure that adds rules.

    The rule is consumed when it fires.
    """

    def __init__(self, items: Sequence[Exp], closure: Callable[..., None]):
        self.items = list(items)
        self.closure = closure

    def apply(self, context):
        values = []
        for item in self.items:
            fact = item.get(context)
            if not fact.is_concrete():
                return RuleOutcome()
            values.append(fact.concretize())
        rules = RuleSet()
        self.closure(rules, values)
        return RuleOutcome(consumed=True, new_rules=rules.take_rules())

    def get_paths(self):
        return [path for item in self.items for path in item.get_paths()]

    def __repr__(self) -> str:
        return "GivenAll(" + ", ".join(repr(item) for item in self.items) + ")"


class GivenRule(GivenAllRule):
    def __init__(self, item: Exp, closure: Callable[..., None]):
        super().__init__([item], lambda rules, values: closure(rules, values[0]))

    def __repr__(self) -> str:
        return f"Given({self.items[0]!r})"


class TransformRule(Rule):
    """General computed rule.

    ``function`` receives the current facts of the items and returns either
    ``None`` (nothing to add) or one fact per item, ``None`` entries meaning
    no refinement for that item.
    """

    def __init__(self, items: Sequence[Exp], function: Callable[[List[Any]], Optional[Sequence[Any]]]):
        self.items = list(items)
        self.function = function

    def apply(self, context):
        facts = [item.get(context) for item in self.items]
        refined = self.function(facts)
        if refined is None:
            return RuleOutcome()
        if len(refined) != len(self.items):
            raise ValueError(
                f"Transform returned {len(refined)} facts for {len(self.items)} items"
            )
        changed = False
        for item, fact in zip(self.items, refined):
            if fact is not None:
                changed |= item.set(context, fact)
        return RuleOutcome(changed=changed)

    def get_paths(self):
        return [path for item in self.items for path in item.get_paths()]

    def __repr__(self) -> str:
        name = getattr(self.function, "__name__", "transform")
        return f"Transform[{name}](" + ", ".join(repr(item) for item in self.items) + ")"


class RuleSet:
    """Authoring surface for operator rules.

    Methods return the rule set so calls can be chained::

        s.equals(inputs.len, 2).equals(outputs[0].rank, inputs[0].rank)
    """

    def __init__(self) -> None:
        self.rules: List[Rule] = []

    def add(self, rule: Rule) -> "RuleSet":
        self.rules.append(rule)
        return self

    def equals(self, left: Any, right: Any) -> "RuleSet":
        return self.add(EqualsAllRule([to_exp(left), to_exp(right)]))

    def equals_all(self, items: Sequence[Any]) -> "RuleSet":
        items = [to_exp(item) for item in items]
        if len(items) < 2:
            return self
        return self.add(EqualsAllRule(items))

    def equals_zero(self, items: Sequence[Any]) -> "RuleSet":
        return self.add(EqualsZeroRule([to_exp(item) for item in items]))

    def given(self, item: Any, closure: Callable[["RuleSet", Any], None]) -> "RuleSet":
        return self.add(GivenRule(to_exp(item), closure))

    def given_2(
        self,
        first: Any,
        second: Any,
        closure: Callable[["RuleSet", Any, Any], None],
    ) -> "RuleSet":
        return self.add(
            GivenAllRule(
                [to_exp(first), to_exp(second)],
                lambda rules, values: closure(rules, values[0], values[1]),
            )
        )

    def given_all(
        self,
        items: Sequence[Any],
        closure: Callable[["RuleSet", List[Any]], None],
    ) -> "RuleSet":
        return self.add(GivenAllRule([to_exp(item) for item in items], closure))

    def transform(
        self,
        items: Sequence[Any],
        function: Callable[[List[Any]], Optional[Sequence[Any]]],
    ) -> "RuleSet":
        return self.add(TransformRule([to_exp(item) for item in items], function))

    def take_rules(self) -> List[Rule]:
        rules, self.rules = self.rules, []
        return rules
