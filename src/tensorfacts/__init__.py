from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from . import ops
from .core.cache import Cache
from .core.exceptions import (
    AnalysisError,
    Contradiction,
    PathError,
    RuleParseError,
    SolverError,
    TensorFactsError,
    UnresolvedReferenceError,
)
from .core.facts import (
    DimFact,
    InferenceFact,
    IntFact,
    ShapeFact,
    TypeFact,
    ValueFact,
    meet,
)
from .core.parser import RuleProgram, parse_rules
from .core.path import Path
from .core.proxies import (
    DimProxy,
    ElementProxy,
    IntProxy,
    ShapeProxy,
    TensorProxy,
    TensorsProxy,
    TypeProxy,
    ValueProxy,
    tensors_proxies,
)
from .core.rules import RuleSet
from .core.solver import Solver, SolverConfig, SolverContext
from .model import (
    AnalysisConfig,
    AnalysisReport,
    InferenceModel,
    InletId,
    OutletId,
    ParseResult,
    load_graph,
    parse_graph,
)

try:
    __version__ = _load_version("tensorfacts")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "Path",
    "Cache",
    "TensorsProxy",
    "TensorProxy",
    "TypeProxy",
    "IntProxy",
    "ShapeProxy",
    "DimProxy",
    "ValueProxy",
    "ElementProxy",
    "tensors_proxies",
    "IntFact",
    "DimFact",
    "TypeFact",
    "ValueFact",
    "ShapeFact",
    "InferenceFact",
    "meet",
    "RuleSet",
    "Solver",
    "SolverConfig",
    "SolverContext",
    "RuleProgram",
    "parse_rules",
    "InferenceModel",
    "OutletId",
    "InletId",
    "AnalysisConfig",
    "AnalysisReport",
    "ParseResult",
    "parse_graph",
    "load_graph",
    "TensorFactsError",
    "Contradiction",
    "PathError",
    "SolverError",
    "RuleParseError",
    "UnresolvedReferenceError",
    "AnalysisError",
    "ops",
    "__version__",
]
