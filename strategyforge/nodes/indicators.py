"""Indicator math used by node evaluators.

All functions work on the trailing window of an :class:`ExecutionContext` and
return plain floats; vector inputs are numpy arrays of closes.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from ..backtest.components.records import Candle

NEUTRAL_RSI = 50.0


class MissingMetricError(LookupError):
    """A candle lacks a metric field that a node needs."""

    def __init__(self, name: str, timestamp: int) -> None:
        super().__init__(f"Candle {timestamp} has no '{name}' metric")
        self.name = name
        self.timestamp = timestamp


def require_metric(candle: Candle, name: str) -> float:
    value = candle.metric(name)
    if value is None:
        raise MissingMetricError(name, candle.timestamp)
    return float(value)


def wilder_rsi(closes: np.ndarray, period: int = 14) -> float:
    """Relative Strength Index over the trailing ``period`` price changes.

    Only the last ``period + 1`` closes count. Fewer than that gives the
    neutral 50; no loss inside the window gives 100.
    """
    closes = np.asarray(closes, dtype=float)
    if len(closes) < period + 1:
        return NEUTRAL_RSI
    deltas = np.diff(closes[-(period + 1):])
    avg_gain = float(np.clip(deltas, 0.0, None).mean())
    avg_loss = float(np.clip(-deltas, 0.0, None).mean())
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def sma(closes: np.ndarray, period: int) -> float:
    """Mean of the last ``period`` closes, or of all of them when fewer are available."""
    closes = np.asarray(closes, dtype=float)
    if closes.size == 0:
        raise ValueError("sma requires at least one close")
    return float(closes[-period:].mean())


def mean_volume(candles: Sequence[Candle], lookback: int) -> float | None:
    """Average volume over the trailing ``lookback`` candles; None when there are none."""
    window = candles[-lookback:]
    if not window:
        return None
    return float(np.mean([c.volume for c in window]))


def average_range(candles: Sequence[Candle], period: int) -> float:
    """Mean high-low range of the trailing ``period`` candles."""
    window = candles[-period:]
    if not window:
        return 0.0
    return float(np.mean([c.high - c.low for c in window]))


def pct_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100.0


__all__ = [
    "MissingMetricError",
    "NEUTRAL_RSI",
    "average_range",
    "mean_volume",
    "pct_change",
    "require_metric",
    "sma",
    "wilder_rsi",
]
