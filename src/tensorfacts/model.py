"""Graph-level fact propagation.

:class:`InferenceModel` holds nodes whose outputs carry facts and whose
inputs are wired to upstream outlets.  :meth:`InferenceModel.analyse` solves
every node's rules, pushes refined input facts back to their producers and
refined output facts forward, and sweeps until nothing changes.
:func:`parse_graph` builds a model from a JSON-compatible description,
collecting names that nothing produces instead of failing on the first one.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from .core.exceptions import AnalysisError, Contradiction, UnresolvedReferenceError
from .core.facts import InferenceFact, ShapeFact
from .core.proxies import tensors_proxies
from .core.solver import Solver, SolverConfig, SolverContext
from .ops import Constant, Op, Source, TextRulesOp, UnimplementedOp, build_op

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutletId:
    node: int
    slot: int


@dataclass(frozen=True)
class InletId:
    node: int
    slot: int


@dataclass
class Node:
    id: int
    name: str
    op: Op
    inputs: List[Optional[OutletId]] = field(default_factory=list)
    outputs: List[InferenceFact] = field(default_factory=list)


@dataclass
class AnalysisConfig:
    """
    Switches for :meth:`InferenceModel.analyse`.

    * ``obstinate`` keeps going after a node fails and reports every failure
      instead of raising the first one.
    * ``max_sweeps`` bounds the number of passes over the graph (``None``
      sweeps until a graph-wide fixpoint).
    * ``solver`` is handed to every per-node :class:`Solver`.
    """

    obstinate: bool = False
    max_sweeps: Optional[int] = None
    solver: SolverConfig = field(default_factory=SolverConfig)

    def normalized(self) -> "AnalysisConfig":
        max_sweeps = self.max_sweeps
        if max_sweeps is not None:
            max_sweeps = int(max_sweeps)
            if max_sweeps <= 0:
                raise ValueError("max_sweeps must be positive when provided")
        return replace(
            self,
            obstinate=bool(self.obstinate),
            max_sweeps=max_sweeps,
            solver=self.solver.normalized(),
        )


@dataclass
class AnalysisReport:
    sweeps: int
    failures: Dict[str, Contradiction] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class InferenceModel:
    def __init__(self) -> None:
        self.nodes: List[Node] = []
        self.inputs: List[OutletId] = []
        self.outputs: List[OutletId] = []
        self.outlet_labels: Dict[OutletId, str] = {}

    # ------------------------------------------------------------------ building
    def add_node(self, name: str, op: Op, facts: Sequence[InferenceFact]) -> int:
        node_id = len(self.nodes)
        self.nodes.append(Node(id=node_id, name=name, op=op, outputs=list(facts)))
        return node_id

    def add_source(self, name: str, fact: Optional[InferenceFact] = None) -> OutletId:
        node_id = self.add_node(name, Source(), [fact if fact is not None else InferenceFact()])
        outlet = OutletId(node_id, 0)
        self.inputs.append(outlet)
        self.outlet_labels[outlet] = name
        return outlet

    def add_const(self, name: str, tensor: Any) -> OutletId:
        op = Constant(tensor)
        node_id = self.add_node(name, op, [InferenceFact.from_tensor(op.value)])
        outlet = OutletId(node_id, 0)
        self.outlet_labels[outlet] = name
        return outlet

    def add_edge(self, outlet: OutletId, inlet: InletId) -> None:
        self._check_outlet(outlet)
        node = self.nodes[inlet.node]
        while len(node.inputs) <= inlet.slot:
            node.inputs.append(None)
        node.inputs[inlet.slot] = outlet

    def set_outlet_label(self, outlet: OutletId, label: str) -> None:
        self._check_outlet(outlet)
        self.outlet_labels[outlet] = label

    def set_output_outlets(self, outlets: Sequence[OutletId]) -> None:
        for outlet in outlets:
            self._check_outlet(outlet)
        self.outputs = list(outlets)

    def _check_outlet(self, outlet: OutletId) -> None:
        if outlet.node >= len(self.nodes) or outlet.slot >= len(self.nodes[outlet.node].outputs):
            raise ValueError(f"No such outlet {outlet}")

    # ------------------------------------------------------------------ facts
    def outlet_fact(self, outlet: OutletId) -> InferenceFact:
        self._check_outlet(outlet)
        return self.nodes[outlet.node].outputs[outlet.slot]

    def set_outlet_fact(self, outlet: OutletId, fact: InferenceFact) -> bool:
        return self.outlet_fact(outlet).refine(fact)

    def outlet_label(self, outlet: OutletId) -> str:
        label = self.outlet_labels.get(outlet)
        if label is not None:
            return label
        node = self.nodes[outlet.node]
        return node.name if outlet.slot == 0 else f"{node.name}:{outlet.slot}"

    def node_by_name(self, name: str) -> Node:
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(name)

    def incomplete_outlets(self) -> List[OutletId]:
        return [
            OutletId(node.id, slot)
            for node in self.nodes
            for slot, fact in enumerate(node.outputs)
            if not fact.is_concrete()
        ]

    # ------------------------------------------------------------------ analysis
    def eval_order(self) -> List[int]:
        """Node ids with producers before consumers."""
        consumers: Dict[int, List[int]] = {node.id: [] for node in self.nodes}
        pending: Dict[int, int] = {}
        for node in self.nodes:
            producers = {outlet.node for outlet in node.inputs if outlet is not None}
            pending[node.id] = len(producers)
            for producer in producers:
                consumers[producer].append(node.id)
        ready = deque(node_id for node_id, count in pending.items() if count == 0)
        order: List[int] = []
        while ready:
            node_id = ready.popleft()
            order.append(node_id)
            for consumer in consumers[node_id]:
                pending[consumer] -= 1
                if pending[consumer] == 0:
                    ready.append(consumer)
        if len(order) != len(self.nodes):
            stuck = sorted(self.nodes[i].name for i, count in pending.items() if count > 0)
            raise AnalysisError(f"Graph has a cycle through {', '.join(stuck)}")
        return order

    def analyse_node(self, node_id: int, config: Optional[SolverConfig] = None) -> bool:
        """Solve one node; True if any fact of the graph got more precise."""
        node = self.nodes[node_id]
        missing = [slot for slot, outlet in enumerate(node.inputs) if outlet is None]
        if missing:
            raise AnalysisError(f"inputs {missing} are not connected", node=node.name)
        # Inlets wired to the same outlet share one fact during the solve.
        copies: Dict[OutletId, InferenceFact] = {}
        for outlet in node.inputs:
            if outlet not in copies:
                copies[outlet] = self.outlet_fact(outlet).copy()
        inputs = [copies[outlet] for outlet in node.inputs]
        outputs = [fact.copy() for fact in node.outputs]
        solver = Solver(config)
        node.op.rules(solver, *tensors_proxies())
        solver.solve(SolverContext(inputs, outputs))
        changed = False
        for outlet, fact in copies.items():
            changed |= self.outlet_fact(outlet).refine(fact)
        for current, fact in zip(node.outputs, outputs):
            changed |= current.refine(fact)
        return changed

    def analyse(self, config: Optional[AnalysisConfig] = None) -> AnalysisReport:
        cfg = (config or AnalysisConfig()).normalized()
        order = self.eval_order()
        failures: Dict[str, Contradiction] = {}
        sweeps = 0
        while True:
            sweeps += 1
            if cfg.max_sweeps is not None and sweeps > cfg.max_sweeps:
                raise AnalysisError(f"No graph-wide fixpoint after {cfg.max_sweeps} sweeps")
            changed = False
            for node_id in order:
                node = self.nodes[node_id]
                if node.name in failures:
                    continue
                logger.debug("analysing node %s (%s)", node.name, node.op)
                try:
                    changed |= self.analyse_node(node_id, cfg.solver)
                except Contradiction as exc:
                    if not cfg.obstinate:
                        raise AnalysisError(str(exc), node=node.name) from exc
                    logger.warning("node %s failed: %s", node.name, exc)
                    failures[node.name] = exc
            if not changed:
                break
        logger.info(
            "analysed %d node(s) in %d sweep(s), %d failure(s)",
            len(self.nodes),
            sweeps,
            len(failures),
        )
        return AnalysisReport(sweeps=sweeps, failures=failures)


# ---------------------------------------------------------------------------
# Graph descriptions

OpRegistry = Dict[str, Callable[[Dict[str, Any]], Op]]


@dataclass
class ParseResult:
    model: InferenceModel
    unresolved_inputs: List[str] = field(default_factory=list)
    outlets_by_name: Dict[str, OutletId] = field(default_factory=dict)

    def raise_for_unresolved(self) -> None:
        if self.unresolved_inputs:
            raise UnresolvedReferenceError(self.unresolved_inputs)


def fact_from_json(entry: Dict[str, Any]) -> InferenceFact:
    """``{"dtype": "float32", "shape": [2, null, 3]}``; a trailing ``"..."`` opens the shape."""
    shape_entry = entry.get("shape")
    if shape_entry is None:
        shape = ShapeFact.any()
    else:
        dims = list(shape_entry)
        is_open = bool(dims) and dims[-1] == "..."
        if is_open:
            dims = dims[:-1]
        shape = ShapeFact(dims, open=is_open)
    return InferenceFact(datum_type=entry.get("dtype"), shape=shape)


def tensor_from_json(entry: Any) -> np.ndarray:
    if not isinstance(entry, dict):
        return np.array(entry)
    tensor = np.array(entry["data"], dtype=entry.get("dtype"))
    if "shape" in entry:
        tensor = tensor.reshape(entry["shape"])
    return tensor


def _node_name(pbnode: Dict[str, Any], outputs: List[str], model: InferenceModel) -> str:
    if pbnode.get("name"):
        return str(pbnode["name"])
    if outputs:
        return outputs[0]
    return f"{len(model.nodes)}-{pbnode.get('op_type', 'Unknown')}"


def _build_node_op(
    name: str,
    pbnode: Dict[str, Any],
    n_outputs: int,
    registry: Optional[OpRegistry],
) -> Op:
    op_type = str(pbnode.get("op_type", ""))
    try:
        op = build_op(op_type, pbnode.get("attrs"), registry)
    except (KeyError, TypeError, ValueError) as exc:
        raise AnalysisError(f"Building node {name} ({op_type}): {exc}") from exc
    if op is not None:
        return op
    if pbnode.get("rules"):
        return TextRulesOp(pbnode["rules"], name=op_type or "TextRules")
    logger.warning("no rules for op type %r (node %s)", op_type, name)
    return UnimplementedOp(op_type, n_outputs)


def parse_graph(
    description: Dict[str, Any],
    registry: Optional[OpRegistry] = None,
) -> ParseResult:
    model = InferenceModel()
    unresolved: List[str] = []
    outlets_by_name: Dict[str, OutletId] = {}
    initializers = {
        name: tensor_from_json(entry)
        for name, entry in (description.get("initializers") or {}).items()
    }

    for graph_input in description.get("inputs") or []:
        name = graph_input["name"]
        if name in initializers:
            logger.debug("input %s initialized by a constant", name)
            outlets_by_name[name] = model.add_const(name, initializers.pop(name))
        else:
            outlets_by_name[name] = model.add_source(name, fact_from_json(graph_input))
    for name, tensor in initializers.items():
        outlets_by_name[name] = model.add_const(name, tensor)

    node_ids: List[int] = []
    pbnodes = description.get("nodes") or []
    for pbnode in pbnodes:
        outputs = [o for o in pbnode.get("outputs") or [] if o]
        name = _node_name(pbnode, outputs, model)
        op = _build_node_op(name, pbnode, len(outputs), registry)
        node_id = model.add_node(name, op, [InferenceFact() for _ in outputs])
        for slot, output in enumerate(outputs):
            outlet = OutletId(node_id, slot)
            outlets_by_name[output] = outlet
            model.set_outlet_label(outlet, output)
        node_ids.append(node_id)

    def resolve(name: str) -> OutletId:
        if name not in outlets_by_name:
            logger.warning("input %s has no producer", name)
            outlets_by_name[name] = model.add_source(name, InferenceFact())
            unresolved.append(name)
        return outlets_by_name[name]

    # Wire after every node exists so names may be used before their producer.
    for node_id, pbnode in zip(node_ids, pbnodes):
        wired = [i for i in pbnode.get("inputs") or [] if i]
        for slot, input_name in enumerate(wired):
            model.add_edge(resolve(input_name), InletId(node_id, slot))

    model.set_output_outlets(
        [resolve(name) for name in description.get("outputs") or [] if name]
    )
    return ParseResult(model=model, unresolved_inputs=unresolved, outlets_by_name=outlets_by_name)


def load_graph(
    path: Union[str, Path],
    registry: Optional[OpRegistry] = None,
) -> ParseResult:
    source = Path(path).read_text(encoding="utf-8")
    return parse_graph(json.loads(source), registry)
