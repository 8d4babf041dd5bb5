"""Backtest component module exports."""

from .position import Position, PositionBook, PositionState
from .records import (
    BacktestMetrics,
    BacktestResult,
    Candle,
    EquityPoint,
    ExecutionContext,
    MarketMetrics,
    SignalType,
    SpotPrice,
    TradeRecord,
    TradeSignal,
)

__all__ = [
    "BacktestMetrics",
    "BacktestResult",
    "Candle",
    "EquityPoint",
    "ExecutionContext",
    "MarketMetrics",
    "Position",
    "PositionBook",
    "PositionState",
    "SignalType",
    "SpotPrice",
    "TradeRecord",
    "TradeSignal",
]
