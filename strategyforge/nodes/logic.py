"""Trading rules behind Logic nodes.

Each evaluator takes the node's typed config, the numeric input flowing into
the node and the per-candle context, and returns a :class:`LogicOutcome`.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..backtest.components.records import ExecutionContext, SignalType
from ..graph.model import (
    AbsorptionConfig,
    DivergenceConfig,
    FundingAnomalyConfig,
    FundingPositiveConfig,
    InflowDivergenceConfig,
    LogicSubtype,
    MovingAverageConfig,
    OpenInterestIncreaseConfig,
    RsiConfig,
    ThresholdConfig,
    VolumeSpikeConfig,
)
from .indicators import mean_volume, pct_change, require_metric, sma, wilder_rsi


@dataclass(frozen=True, slots=True)
class LogicOutcome:
    passed: bool
    value: Any
    signal_type: SignalType


LogicEvaluator = Callable[[Any, float, ExecutionContext], LogicOutcome]


def _previous_close(ctx: ExecutionContext) -> float:
    prev = ctx.previous
    return prev.close if prev is not None else ctx.current_candle.close


# ─────────────────────────────── classic indicators ─────────────────────────


def rsi_above(config: RsiConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    rsi = wilder_rsi(ctx.closes(), config.period)
    return LogicOutcome(rsi > config.threshold, rsi, SignalType.SELL)


def rsi_below(config: RsiConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    rsi = wilder_rsi(ctx.closes(), config.period)
    return LogicOutcome(rsi < config.threshold, rsi, SignalType.BUY)


def price_above_ma(config: MovingAverageConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    close = ctx.current_candle.close
    ma = sma(ctx.closes(), config.period)
    return LogicOutcome(close > ma, {"price": close, "ma": ma}, SignalType.BUY)


def price_below_ma(config: MovingAverageConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    close = ctx.current_candle.close
    ma = sma(ctx.closes(), config.period)
    return LogicOutcome(close < ma, {"price": close, "ma": ma}, SignalType.SELL)


def volume_spike(config: VolumeSpikeConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    current = ctx.current_candle.volume
    avg = mean_volume(ctx.prior_window, config.lookback)
    passed = avg is not None and current > avg * config.multiplier
    return LogicOutcome(passed, {"current": current, "avg": avg}, SignalType.BUY)


# ─────────────────────────────── futures metrics ────────────────────────────


def oi_increase(config: OpenInterestIncreaseConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    current = require_metric(ctx.current_candle, "open_interest")
    prev = ctx.previous
    if prev is None:
        return LogicOutcome(False, {"prev": None, "current": current}, SignalType.BUY)
    prev_oi = require_metric(prev, "open_interest")
    return LogicOutcome(current > prev_oi * config.ratio, {"prev": prev_oi, "current": current}, SignalType.BUY)


def funding_positive(config: FundingPositiveConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    rate = require_metric(ctx.current_candle, "funding_rate")
    return LogicOutcome(rate > config.threshold, rate, SignalType.SELL)


def price_oi_divergence(config: DivergenceConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    past = ctx.lookback(config.lookback)
    if past is None:
        return LogicOutcome(False, {"price_increasing": None, "oi_decreasing": None}, SignalType.SELL)
    current = ctx.current_candle
    price_increasing = current.close > past.close
    oi_decreasing = require_metric(current, "open_interest") < require_metric(past, "open_interest")
    return LogicOutcome(
        price_increasing and oi_decreasing,
        {"price_increasing": price_increasing, "oi_decreasing": oi_decreasing},
        SignalType.SELL,
    )


# ─────────────────────────────── composite heuristics ───────────────────────


def funding_anomaly(config: FundingAnomalyConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    """Price rallying while funding is negative: shorts are paying into a squeeze."""
    candle = ctx.current_candle
    price_change = pct_change(candle.close, _previous_close(ctx))
    funding = require_metric(candle, "funding_rate")
    passed = price_change > config.min_price_change_pct and funding < config.max_funding_rate
    payload = {
        "price_change_pct": round(price_change, 2),
        "funding_rate": funding,
        "signal": "Spot Driven Rally / Short Squeeze Warning" if passed else "Normal",
    }
    return LogicOutcome(passed, payload, SignalType.BUY)


def absorption(config: AbsorptionConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    """Flat price with rising open interest and heavy activity: positions are being loaded."""
    candle = ctx.current_candle
    prev = ctx.previous
    if prev is None:
        return LogicOutcome(False, {"signal": "Normal"}, SignalType.BUY)
    price_change = abs(pct_change(candle.close, prev.close))
    prev_oi = require_metric(prev, "open_interest")
    current_oi = require_metric(candle, "open_interest")
    oi_change = pct_change(current_oi, prev_oi) if prev_oi > 0 else 0.0
    cvd = candle.metric("cvd") or 0.0
    avg_volume = mean_volume(ctx.prior_window, config.lookback)
    volume_ratio = candle.volume / avg_volume if avg_volume else None
    volume_high = (volume_ratio is not None and volume_ratio >= config.volume_multiplier) or cvd != 0
    passed = price_change < config.max_price_change_pct and oi_change > config.min_oi_change_pct and volume_high
    payload = {
        "price_change_pct": round(price_change, 3),
        "oi_change_pct": round(oi_change, 2),
        "volume_ratio": round(volume_ratio, 2) if volume_ratio is not None else None,
        "cvd": cvd,
        "signal": "Positions being loaded (Accumulation/Distribution)" if passed else "Normal",
    }
    return LogicOutcome(passed, payload, SignalType.BUY)


def inflow_divergence(config: InflowDivergenceConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    """Price falling while spot net inflow stays positive: dips are being bought."""
    candle = ctx.current_candle
    price_change = pct_change(candle.close, _previous_close(ctx))
    inflow = require_metric(candle, "net_inflow")
    passed = price_change < config.max_price_change_pct and inflow > config.min_net_inflow
    payload = {
        "price_change_pct": round(price_change, 2),
        "net_inflow": inflow,
        "signal": "Bullish Divergence - Smart Money Accumulating" if passed else "Normal",
    }
    return LogicOutcome(passed, payload, SignalType.BUY)


def threshold(config: ThresholdConfig, value: float, ctx: ExecutionContext) -> LogicOutcome:
    passed = config.operator.compare(value, config.value)
    signal_type = SignalType.BUY if config.operator.value == ">" else SignalType.SELL
    return LogicOutcome(passed, value, signal_type)


LOGIC_EVALUATORS: dict[LogicSubtype, LogicEvaluator] = {
    LogicSubtype.RSI_GT_70: rsi_above,
    LogicSubtype.RSI_LT_30: rsi_below,
    LogicSubtype.PRICE_GT_MA200: price_above_ma,
    LogicSubtype.PRICE_LT_MA200: price_below_ma,
    LogicSubtype.VOLUME_SPIKE: volume_spike,
    LogicSubtype.OI_INCREASE: oi_increase,
    LogicSubtype.FUNDING_POSITIVE: funding_positive,
    LogicSubtype.DIVERGENCE: price_oi_divergence,
    LogicSubtype.FUNDING_ANOMALY: funding_anomaly,
    LogicSubtype.ABSORPTION: absorption,
    LogicSubtype.INFLOW_DIVERGENCE: inflow_divergence,
    LogicSubtype.THRESHOLD: threshold,
}

_missing = set(LogicSubtype) - set(LOGIC_EVALUATORS)
if _missing:
    raise RuntimeError(f"Logic subtypes without an evaluator: {sorted(m.value for m in _missing)}")
