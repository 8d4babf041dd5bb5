"""Strategy graph module exports."""

from .compiler import CompiledGraph, GraphCompiler
from .loader import StrategyGraph, load_graph, load_graph_file, parse_edges, parse_node
from .model import (
    Comparator,
    Edge,
    FilterSubtype,
    GraphCycleError,
    GraphValidationError,
    LogicSubtype,
    Node,
    NodeKind,
)

__all__ = [
    "CompiledGraph",
    "Comparator",
    "Edge",
    "FilterSubtype",
    "GraphCompiler",
    "GraphCycleError",
    "GraphValidationError",
    "LogicSubtype",
    "Node",
    "NodeKind",
    "StrategyGraph",
    "load_graph",
    "load_graph_file",
    "parse_edges",
    "parse_node",
]
