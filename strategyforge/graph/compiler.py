"""Execution ordering for strategy graphs."""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

from ..logging_config import get_logger
from .model import Edge, GraphCycleError, Node

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CompiledGraph:
    order: tuple[Node, ...]
    inputs: dict[str, tuple[str, ...]]
    terminals: frozenset[str]
    excluded: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.order)

    def inputs_for(self, node_id: str) -> tuple[str, ...]:
        return self.inputs.get(node_id, ())

    def is_terminal(self, node_id: str) -> bool:
        return node_id in self.terminals


class GraphCompiler:
    """Order nodes so that every node runs after all of its producers.

    Breadth-first topological sort (Kahn). Nodes that never reach in-degree
    zero sit on or behind a cycle and are left out of the order. With
    ``strict=True`` that situation raises :class:`GraphCycleError` instead.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self._strict = strict

    def order(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> list[Node]:
        node_map: dict[str, Node] = {}
        in_degree: dict[str, int] = {}
        adjacency: dict[str, list[str]] = {}
        for node in nodes:
            node_map[node.id] = node
            in_degree[node.id] = 0
            adjacency[node.id] = []

        for edge in self._valid_edges(edges, node_map):
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        ordered: list[Node] = []
        while queue:
            current = queue.popleft()
            ordered.append(node_map[current])
            for neighbor in adjacency[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(ordered) < len(node_map):
            scheduled = {node.id for node in ordered}
            excluded = [node_id for node_id in node_map if node_id not in scheduled]
            if self._strict:
                raise GraphCycleError(excluded)
            logger.warning("Excluding %d node(s) caught in a cycle: %s", len(excluded), excluded)
        return ordered

    @staticmethod
    def inputs_of(node_id: str, edges: Sequence[Edge]) -> list[str]:
        """Direct upstream producers of ``node_id``, in edge order."""
        return [edge.source for edge in edges if edge.target == node_id]

    def compile(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> CompiledGraph:
        order = self.order(nodes, edges)
        known = {node.id for node in nodes}
        valid = list(self._valid_edges(edges, known, log=False))
        scheduled = {node.id for node in order}
        inputs = {node.id: tuple(self.inputs_of(node.id, valid)) for node in order}
        producers = {edge.source for edge in valid if edge.target in scheduled}
        terminals = frozenset(node_id for node_id in scheduled if node_id not in producers)
        excluded = tuple(node.id for node in nodes if node.id not in scheduled)
        return CompiledGraph(order=tuple(order), inputs=inputs, terminals=terminals, excluded=excluded)

    @staticmethod
    def _valid_edges(edges: Sequence[Edge], known, *, log: bool = True):
        for edge in edges:
            if edge.source in known and edge.target in known:
                yield edge
            elif log:
                logger.warning("Ignoring edge with unknown endpoint: %s -> %s", edge.source, edge.target)


__all__ = ["CompiledGraph", "GraphCompiler"]
