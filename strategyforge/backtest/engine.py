"""Backtesting engine main entry point."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from operator import attrgetter
from typing import Any

import pandas as pd

from ..data.candles import candles_from_frame
from ..graph.compiler import CompiledGraph, GraphCompiler
from ..graph.loader import StrategyGraph, parse_edges, parse_node
from ..graph.model import GraphValidationError, Node, NodeKind
from ..logging_config import get_logger
from ..nodes.registry import NodeEvaluatorRegistry, SignalIdGenerator
from .components.position import PositionBook
from .components.records import (
    BacktestMetrics,
    BacktestResult,
    Candle,
    EquityPoint,
    ExecutionContext,
    TradeSignal,
)
from .config import BacktestConfig
from .metrics import MetricsCalculator

logger = get_logger(__name__)

CandleInput = Sequence[Candle | Mapping[str, Any]] | pd.DataFrame


class SimulationEngine:
    """Run a strategy graph over a candle series, one candle at a time.

    Each :meth:`run` owns its position book, signal list, equity curve and
    signal id sequence, so one engine instance can be reused and separate
    instances can run side by side. The engine never raises: structural
    problems are logged and skipped, and any unexpected failure degrades to
    an empty result.
    """

    def __init__(
        self,
        config: BacktestConfig | None = None,
        *,
        compiler: GraphCompiler | None = None,
        metrics: MetricsCalculator | None = None,
    ) -> None:
        self._config = config or BacktestConfig()
        self._compiler = compiler or GraphCompiler()
        self._metrics = metrics or MetricsCalculator()
        self._stop = threading.Event()

    @property
    def config(self) -> BacktestConfig:
        return self._config

    def cancel(self) -> None:
        """Ask a running simulation to stop before its next candle."""
        self._stop.set()

    def run(
        self,
        nodes: Iterable[Node | Mapping[str, Any]],
        edges: Iterable[Any],
        candles: CandleInput,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> BacktestResult:
        try:
            return self._simulate(nodes, edges, candles, should_stop)
        except Exception:
            logger.exception("Simulation failed; returning empty result")
            return self._empty_result()
        finally:
            self._stop.clear()

    def run_graph(
        self,
        graph: StrategyGraph,
        candles: CandleInput,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> BacktestResult:
        return self.run(graph.nodes, graph.edges, candles, should_stop=should_stop)

    def _simulate(
        self,
        nodes: Iterable[Node | Mapping[str, Any]],
        edges: Iterable[Any],
        candles: CandleInput,
        should_stop: Callable[[], bool] | None,
    ) -> BacktestResult:
        cfg = self._config
        series = sorted(self._coerce_candles(candles), key=attrgetter("timestamp"))
        if not series:
            logger.info("No candles supplied; nothing to simulate")
            return self._empty_result()

        graph_nodes = self._coerce_nodes(nodes)
        graph_edges = parse_edges(edges, {node.id for node in graph_nodes})
        compiled = self._compiler.compile(graph_nodes, graph_edges)
        if not compiled.order:
            logger.warning("No executable nodes in strategy graph")
            return self._empty_result()

        registry = NodeEvaluatorRegistry(SignalIdGenerator())
        book = PositionBook(
            cfg.initial_capital,
            cfg.position_size,
            slippage=cfg.effective_slippage,
            commission=cfg.effective_commission,
        )
        signals: list[TradeSignal] = []
        equity_curve: list[EquityPoint] = []
        window = cfg.lookback_window
        cancelled = False

        for idx, candle in enumerate(series):
            if self._stop.is_set() or (should_stop is not None and should_stop()):
                logger.info(
                    "Simulation cancelled after %d of %d candles",
                    idx,
                    len(series),
                    extra={"candle_index": idx},
                )
                cancelled = True
                break
            context = ExecutionContext(candle, tuple(series[max(0, idx - window) : idx]))
            for signal in self._evaluate_candle(compiled, registry, context):
                if book.apply(signal, candle.close, candle.timestamp):
                    signals.append(signal)
            equity_curve.append(EquityPoint(time=candle.timestamp, equity=book.mark_to_market(candle.close)))

        metrics = self._metrics.compute(signals, equity_curve, cfg.initial_capital, book.trades)
        logger.debug(
            "Simulation finished: %d candles, %d signals, %d closed trades",
            len(equity_curve),
            len(signals),
            len(book.trades),
        )
        return BacktestResult(
            signals=signals,
            equity_curve=equity_curve,
            metrics=metrics,
            trades=list(book.trades),
            cancelled=cancelled,
        )

    @staticmethod
    def _evaluate_candle(
        compiled: CompiledGraph,
        registry: NodeEvaluatorRegistry,
        context: ExecutionContext,
    ) -> list[TradeSignal]:
        outputs: dict[str, Any] = {}
        emitted: list[TradeSignal] = []
        for node in compiled.order:
            inputs = [outputs.get(source) for source in compiled.inputs_for(node.id)]
            result = registry.evaluate_node(node, inputs, context)
            outputs[node.id] = result.value if result.passed else False
            if result.signal is None:
                continue
            if node.kind is NodeKind.RESULT or (node.kind is NodeKind.LOGIC and compiled.is_terminal(node.id)):
                emitted.append(result.signal)
        return emitted

    @staticmethod
    def _coerce_candles(candles: CandleInput) -> list[Candle]:
        if candles is None:
            return []
        if isinstance(candles, pd.DataFrame):
            return candles_from_frame(candles)
        return [c if isinstance(c, Candle) else Candle.from_dict(c) for c in candles]

    @staticmethod
    def _coerce_nodes(nodes: Iterable[Node | Mapping[str, Any]]) -> list[Node]:
        parsed: list[Node] = []
        for raw in nodes or []:
            try:
                parsed.append(parse_node(raw))
            except (GraphValidationError, KeyError) as exc:
                logger.warning("Skipping node that cannot be resolved: %s", exc)
        return parsed

    def _empty_result(self) -> BacktestResult:
        now_ms = int(time.time() * 1000)
        return BacktestResult(
            signals=[],
            equity_curve=[EquityPoint(time=now_ms, equity=self._config.initial_capital)],
            metrics=BacktestMetrics.zeroed(),
        )


def run_simulation(
    nodes: Iterable[Node | Mapping[str, Any]],
    edges: Iterable[Any],
    candles: CandleInput,
    config: BacktestConfig | Mapping[str, Any] | None = None,
) -> BacktestResult:
    """Run one simulation with a fresh engine; ``config`` may be the UI's camelCase mapping.

    An unusable config mapping is logged and yields the zeroed result of the
    default config.
    """
    if config is not None and not isinstance(config, BacktestConfig):
        try:
            config = BacktestConfig.from_dict(config)
        except (TypeError, ValueError):
            logger.exception("Rejected simulation config %r", config)
            return SimulationEngine()._empty_result()
    return SimulationEngine(config).run(nodes, edges, candles)


__all__ = ["SimulationEngine", "run_simulation"]
