"""Node evaluation exports."""

from .indicators import MissingMetricError, sma, wilder_rsi
from .registry import (
    NodeEvaluatorRegistry,
    NodeResult,
    SignalIdGenerator,
    available_filter_types,
    available_logic_types,
)

__all__ = [
    "MissingMetricError",
    "NodeEvaluatorRegistry",
    "NodeResult",
    "SignalIdGenerator",
    "available_filter_types",
    "available_logic_types",
    "sma",
    "wilder_rsi",
]
