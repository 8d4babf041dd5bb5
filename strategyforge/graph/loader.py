"""Parse and validate strategy graph payloads.

Two payload shapes are accepted:

* canonical: ``{"nodes": [{"id", "kind", "subtype", "config"}], "edges": [{"source", "target"}]}``
* canvas: the editor's export, ``{"id", "type", "data": {"type", "logic", ...}}`` per node.

Tags are resolved to the closed enums in :mod:`strategyforge.graph.model` here,
so an unknown node kind or subtype fails at load time instead of during a run.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from ..logging_config import get_logger
from .model import Edge, GraphValidationError, LogicSubtype, Node, NodeKind

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "strategy_graph.schema.json"

_KIND_ALIASES = {
    "source": NodeKind.SOURCE,
    "sourcenode": NodeKind.SOURCE,
    "datasource": NodeKind.SOURCE,
    "logic": NodeKind.LOGIC,
    "process": NodeKind.LOGIC,
    "processnode": NodeKind.LOGIC,
    "filter": NodeKind.FILTER,
    "filternode": NodeKind.FILTER,
    "result": NodeKind.RESULT,
    "resultnode": NodeKind.RESULT,
    "output": NodeKind.RESULT,
}

_SUBTYPE_ALIASES = {
    "custom": LogicSubtype.THRESHOLD.value,
    "compare": LogicSubtype.THRESHOLD.value,
}

# Presentation-only keys the editor stores next to the node config
_CANVAS_KEYS = {"type", "label", "logic", "position"}


@dataclass(frozen=True, slots=True)
class StrategyGraph:
    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


def load_schema() -> dict[str, Any]:
    text = SCHEMA_PATH.read_text(encoding="utf-8")
    return json.loads(text)


def parse_kind(raw: Any) -> NodeKind:
    if isinstance(raw, NodeKind):
        return raw
    kind = _KIND_ALIASES.get(str(raw or "").strip().lower())
    if kind is None:
        raise GraphValidationError(f"Unknown node kind: {raw!r}")
    return kind


def parse_node(raw: Mapping[str, Any] | Node) -> Node:
    if isinstance(raw, Node):
        return raw
    data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
    kind = parse_kind(raw.get("kind") or data.get("type") or raw.get("type"))

    subtype = raw.get("subtype")
    if subtype is None and kind in (NodeKind.LOGIC, NodeKind.FILTER):
        subtype = data.get("logic")
    if isinstance(subtype, str):
        subtype = _SUBTYPE_ALIASES.get(subtype.strip().lower(), subtype.strip())

    if "config" in raw:
        config = raw.get("config") or {}
    else:
        config = {key: value for key, value in data.items() if key not in _CANVAS_KEYS}
    label = raw.get("label") or data.get("label")
    return Node.create(
        raw["id"],
        kind,
        subtype,
        config,
        label=str(label) if label else None,
    )


def parse_edges(raw_edges: Iterable[Any], node_ids: Iterable[str] | None = None) -> list[Edge]:
    """Build edges, dropping malformed ones and those that reference unknown nodes."""
    known = set(node_ids) if node_ids is not None else None
    edges: list[Edge] = []
    for raw in raw_edges or []:
        if isinstance(raw, Edge):
            edge = raw
        elif isinstance(raw, Mapping) and raw.get("source") is not None and raw.get("target") is not None:
            edge = Edge(source=str(raw["source"]), target=str(raw["target"]))
        else:
            logger.warning("Dropping malformed edge: %r", raw)
            continue
        if known is not None and (edge.source not in known or edge.target not in known):
            logger.warning("Dropping dangling edge %s -> %s", edge.source, edge.target)
            continue
        edges.append(edge)
    return edges


def load_graph(payload: Mapping[str, Any] | StrategyGraph) -> StrategyGraph:
    """Validate ``payload`` against the graph schema and build typed nodes.

    Raises:
        GraphValidationError: schema violation, unknown tag, bad config value
            or duplicate node id.
    """
    if isinstance(payload, StrategyGraph):
        return payload
    try:
        jsonschema.validate(payload, load_schema())
    except jsonschema.ValidationError as exc:
        raise GraphValidationError(f"Invalid strategy graph: {exc.message}") from exc

    nodes = [parse_node(raw) for raw in payload["nodes"]]
    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            raise GraphValidationError(f"Duplicate node id: {node.id!r}")
        seen.add(node.id)
    edges = parse_edges(payload.get("edges", []), seen)
    logger.debug("Loaded graph with %d nodes and %d edges", len(nodes), len(edges))
    return StrategyGraph(nodes=tuple(nodes), edges=tuple(edges))


def load_graph_file(path: Path) -> StrategyGraph:
    text = Path(path).read_text(encoding="utf-8")
    if Path(path).suffix.lower() in {".yaml", ".yml"}:
        payload = yaml.safe_load(text)
    else:
        payload = json.loads(text)
    if not isinstance(payload, Mapping):
        raise GraphValidationError(f"Graph file must contain a mapping: {path}")
    return load_graph(payload)


__all__ = [
    "SCHEMA_PATH",
    "StrategyGraph",
    "load_graph",
    "load_graph_file",
    "load_schema",
    "parse_edges",
    "parse_kind",
    "parse_node",
]
