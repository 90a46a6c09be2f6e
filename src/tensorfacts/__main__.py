from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .core.exceptions import TensorFactsError
from .core.solver import SolverConfig
from .model import AnalysisConfig, OutletId, ParseResult, load_graph


def _load(path: Path) -> ParseResult:
    try:
        return load_graph(path)
    except FileNotFoundError as exc:
        raise SystemExit(f"Graph file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Graph file is not valid JSON: {path}: {exc}") from exc
    except TensorFactsError as exc:
        raise SystemExit(f"Cannot build graph from {path}: {exc}") from exc


def _analyse(path: Path, obstinate: bool, as_json: bool, max_passes: Optional[int]) -> int:
    result = _load(path)
    model = result.model
    config = AnalysisConfig(obstinate=obstinate, solver=SolverConfig(max_passes=max_passes))
    try:
        report = model.analyse(config)
    except TensorFactsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    facts: Dict[str, Any] = {}
    for node in model.nodes:
        for slot, fact in enumerate(node.outputs):
            facts[model.outlet_label(OutletId(node.id, slot))] = fact

    if as_json:
        payload = {
            "facts": {label: fact.to_json() for label, fact in facts.items()},
            "unresolved_inputs": result.unresolved_inputs,
            "failures": {name: str(exc) for name, exc in report.failures.items()},
            "sweeps": report.sweeps,
        }
        print(json.dumps(payload, indent=2))
    else:
        for label, fact in facts.items():
            print(f"{label}: {fact}")
        for name in result.unresolved_inputs:
            print(f"# unresolved input: {name}")
        for name, exc in report.failures.items():
            print(f"# failed: {name}: {exc}")
    return 0 if report.ok else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tensorfacts command line utilities")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Log more (-vv for debug)")
    subparsers = parser.add_subparsers(dest="cmd")

    analyse_parser = subparsers.add_parser("analyse", help="Infer tensor facts for a JSON graph")
    analyse_parser.add_argument("graph", type=Path, help="Path to a JSON graph description")
    analyse_parser.add_argument(
        "--obstinate",
        action="store_true",
        help="Keep analysing after a node fails and report every failure",
    )
    analyse_parser.add_argument(
        "--json",
        action="store_true",
        help="Print facts as JSON instead of one line per tensor",
    )
    analyse_parser.add_argument(
        "--max-passes",
        type=int,
        default=None,
        help="Abort a node's solve after this many passes (default: unbounded)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "analyse":
        return _analyse(
            args.graph,
            obstinate=args.obstinate,
            as_json=args.json,
            max_passes=args.max_passes,
        )

    parser.print_help()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
