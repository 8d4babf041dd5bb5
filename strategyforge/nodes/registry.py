"""Dispatch from node kind/subtype to evaluation logic."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from numbers import Real
from typing import Any

from ..backtest.components.records import ExecutionContext, SignalType, TradeSignal
from ..graph.model import (
    FilterSubtype,
    LogicSubtype,
    Node,
    NodeKind,
    RegimeCheckConfig,
    ResultConfig,
    build_config,
)
from ..logging_config import get_logger
from .filters import regime_check
from .logic import LOGIC_EVALUATORS

logger = get_logger(__name__)

RESULT_REASON = "Result triggered"


@dataclass(frozen=True, slots=True)
class NodeResult:
    value: Any = None
    passed: bool = False
    signal: TradeSignal | None = None


class SignalIdGenerator:
    """Sequential signal ids scoped to a single simulation run."""

    def __init__(self, prefix: str = "sig") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


def _numeric_input(inputs: Sequence[Any], fallback: float) -> float:
    if inputs:
        first = inputs[0]
        if isinstance(first, Real) and not isinstance(first, bool):
            return float(first)
    return fallback


class NodeEvaluatorRegistry:
    """Evaluate one node against one candle.

    Failures never escape: an exception raised by an evaluator (a missing
    metric, a bad config, an unknown tag) is logged and reported as a
    non-passing result so the candle loop keeps going.
    """

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        self._next_id = id_factory or SignalIdGenerator()

    def evaluate(
        self,
        kind: NodeKind | str,
        subtype: str,
        config: Any,
        inputs: Sequence[Any],
        context: ExecutionContext,
        *,
        node_id: str | None = None,
    ) -> NodeResult:
        try:
            kind = NodeKind(kind)
            subtype = str(getattr(subtype, "value", subtype))
            if isinstance(config, Mapping) or config is None:
                config = build_config(kind, subtype, config or {})
            if kind is NodeKind.SOURCE:
                return NodeResult(value=context.current_candle.close, passed=True)
            if kind is NodeKind.LOGIC:
                return self._evaluate_logic(LogicSubtype(subtype), config, inputs, context)
            if kind is NodeKind.FILTER:
                return self._evaluate_filter(FilterSubtype(subtype), config, context)
            return self._evaluate_result(config, inputs, context)
        except Exception as exc:
            logger.warning(
                "Node evaluation failed (%s/%s): %s",
                getattr(kind, "value", kind),
                subtype,
                exc,
                extra={
                    "node_id": node_id,
                    "subtype": subtype,
                    "candle_time": context.current_candle.timestamp,
                },
            )
            return NodeResult()

    def evaluate_node(self, node: Node, inputs: Sequence[Any], context: ExecutionContext) -> NodeResult:
        return self.evaluate(node.kind, node.subtype, node.config, inputs, context, node_id=node.id)

    def _evaluate_logic(
        self,
        subtype: LogicSubtype,
        config: Any,
        inputs: Sequence[Any],
        context: ExecutionContext,
    ) -> NodeResult:
        candle = context.current_candle
        outcome = LOGIC_EVALUATORS[subtype](config, _numeric_input(inputs, candle.close), context)
        if not outcome.passed:
            return NodeResult(value=outcome.value, passed=False)
        return NodeResult(
            value=outcome.value,
            passed=True,
            signal=self._signal(context, outcome.signal_type, subtype.value),
        )

    @staticmethod
    def _evaluate_filter(subtype: FilterSubtype, config: RegimeCheckConfig, context: ExecutionContext) -> NodeResult:
        # RegimeCheck is the only filter; it classifies, it never trades
        passed, value = regime_check(config, context)
        return NodeResult(value=value, passed=passed)

    def _evaluate_result(self, config: ResultConfig, inputs: Sequence[Any], context: ExecutionContext) -> NodeResult:
        if not inputs or not inputs[0]:
            return NodeResult(value=False, passed=False)
        return NodeResult(
            value=True,
            passed=True,
            signal=self._signal(context, config.signal_type, RESULT_REASON),
        )

    def _signal(self, context: ExecutionContext, signal_type: SignalType, reason: str) -> TradeSignal:
        candle = context.current_candle
        return TradeSignal(
            id=self._next_id(),
            timestamp=candle.timestamp,
            type=signal_type,
            price=candle.close,
            reason=reason,
        )


def available_logic_types() -> list[str]:
    return [member.value for member in LogicSubtype]


def available_filter_types() -> list[str]:
    return [member.value for member in FilterSubtype]


__all__ = [
    "NodeEvaluatorRegistry",
    "NodeResult",
    "RESULT_REASON",
    "SignalIdGenerator",
    "available_filter_types",
    "available_logic_types",
]
