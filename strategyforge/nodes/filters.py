"""Market regime filters."""

from __future__ import annotations

from typing import Any

from ..backtest.components.records import ExecutionContext
from ..graph.model import RegimeCheckConfig
from .indicators import average_range

HIGH_VOLATILITY = "HIGH_VOLATILITY"
LOW_VOLATILITY = "LOW_VOLATILITY"
NORMAL = "NORMAL"

RECOMMENDATIONS = {
    HIGH_VOLATILITY: "Wide stops, momentum strategies",
    LOW_VOLATILITY: "Tight stops, mean reversion",
    NORMAL: "Standard parameters",
}


def classify_volatility(atr_pct: float, config: RegimeCheckConfig) -> str:
    if atr_pct > config.high_volatility_pct:
        return HIGH_VOLATILITY
    if atr_pct < config.low_volatility_pct:
        return LOW_VOLATILITY
    return NORMAL


def regime_check(config: RegimeCheckConfig, ctx: ExecutionContext) -> tuple[bool, dict[str, Any]]:
    """Average high-low range as a percentage of close; passes only in high volatility."""
    atr = average_range(ctx.history(), config.period)
    atr_pct = atr / ctx.current_candle.close * 100.0
    regime = classify_volatility(atr_pct, config)
    value = {
        "atr": round(atr, 2),
        "atr_pct": round(atr_pct, 2),
        "regime": regime,
        "recommendation": RECOMMENDATIONS[regime],
    }
    return regime == HIGH_VOLATILITY, value
