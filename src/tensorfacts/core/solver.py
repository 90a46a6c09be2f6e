from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Sequence, Tuple

from .exceptions import Contradiction, SolverError
from .facts import InferenceFact, coerce_facts
from .path import Path, get_path, set_path
from .rules import Rule, RuleSet

logger = logging.getLogger(__name__)


@dataclass
class SolverConfig:
    """
    Switches for a single solver run.

    * ``max_passes`` bounds the number of passes over the rules.  ``None``
      (the default) runs until no rule refines anything; a diverging rule set
      is then the rule author's problem.
    * ``rollback_on_contradiction`` restores every fact to its state before
      :meth:`Solver.solve` when a contradiction, or any other error raised
      by a rule, aborts the run.
    """

    max_passes: Optional[int] = None
    rollback_on_contradiction: bool = True

    def normalized(self) -> "SolverConfig":
        max_passes = self.max_passes
        if max_passes is not None:
            max_passes = int(max_passes)
            if max_passes <= 0:
                raise ValueError("max_passes must be positive when provided")
        return replace(
            self,
            max_passes=max_passes,
            rollback_on_contradiction=bool(self.rollback_on_contradiction),
        )


class SolverContext:
    """The facts of one node's inputs and outputs, mutated in place by a solve."""

    def __init__(self, inputs: List[InferenceFact], outputs: List[InferenceFact]):
        self.inputs = inputs
        self.outputs = outputs

    def get(self, path: Path) -> Any:
        return get_path(self, path)

    def set(self, path: Path, fact: Any) -> bool:
        changed = set_path(self, path, fact)
        if changed:
            logger.debug("refined %r to %r", path, get_path(self, path))
        return changed

    def snapshot(self) -> List[Tuple[Any, Any, Any, Any]]:
        return [(f.datum_type, f.shape, f.value, f.elements) for f in self.inputs + self.outputs]

    def restore(self, snapshot: List[Tuple[Any, Any, Any, Any]]) -> None:
        for fact, saved in zip(self.inputs + self.outputs, snapshot):
            fact.datum_type, fact.shape, fact.value, fact.elements = saved


class Solver(RuleSet):
    """Runs a rule set to a fixpoint over a :class:`SolverContext`.

    Each pass applies every pending rule once.  A pass makes progress when a
    fact became strictly more precise or a fired ``given`` rule added rules;
    the first pass without progress ends the run.  A :class:`Contradiction`
    stops the run immediately and is re-raised naming the rule and path.

    The rule list itself is never modified by :meth:`solve`, so the same
    solver can be run again on its own result.
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        super().__init__()
        self.config = (config or SolverConfig()).normalized()

    def solve(self, context: SolverContext) -> int:
        """Refine ``context`` in place; returns the number of passes made."""
        cfg = self.config
        snapshot = context.snapshot() if cfg.rollback_on_contradiction else None
        pending: List[Rule] = list(self.rules)
        passes = 0
        try:
            while True:
                passes += 1
                if cfg.max_passes is not None and passes > cfg.max_passes:
                    raise SolverError(
                        f"No fixpoint reached after {cfg.max_passes} passes "
                        f"({len(pending)} rules pending)"
                    )
                progress = False
                remaining: List[Rule] = []
                added: List[Rule] = []
                for rule in pending:
                    try:
                        outcome = rule.apply(context)
                    except Contradiction as exc:
                        raise exc.with_context(rule=repr(rule)) from None
                    progress |= outcome.changed or bool(outcome.new_rules)
                    added.extend(outcome.new_rules)
                    if not outcome.consumed:
                        remaining.append(rule)
                pending = remaining + added
                logger.debug(
                    "pass %d: progress=%s, %d rules pending", passes, progress, len(pending)
                )
                if not progress:
                    break
        except Exception:
            if snapshot is not None:
                context.restore(snapshot)
            raise
        return passes

    def infer_facts(
        self,
        inputs: Sequence[Any],
        outputs: Sequence[Any],
    ) -> Tuple[List[InferenceFact], List[InferenceFact]]:
        """Solve over fresh lists built from ``inputs``/``outputs`` and return them.

        :class:`InferenceFact` items are refined in place; dicts are turned into
        facts first.
        """
        context = SolverContext(coerce_facts(inputs), coerce_facts(outputs))
        passes = self.solve(context)
        logger.debug("fixpoint reached after %d pass(es)", passes)
        return context.inputs, context.outputs
