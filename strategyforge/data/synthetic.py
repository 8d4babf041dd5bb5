"""Synthetic candle series for exercising strategy graphs.

Two families of generators live here:

* ``synthesize`` builds a labelled market regime (normal tape, short squeeze,
  spot pump, accumulation, distribution). Each regime is a deterministic drift
  curve per field plus Gaussian noise drawn through a Box-Muller transform
  from an injected ``numpy.random.Generator``, so a fixed seed reproduces the
  series exactly. Drift sizes sit well clear of the default node thresholds so
  every regime fires its matching heuristic regardless of the noise draw.
* ``periodic``, ``overbought`` and ``oversold`` are pure functions of their
  arguments; ``trend`` and ``range_bound`` add uniform noise from the
  injected generator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..backtest.components.records import Candle, MarketMetrics, SpotPrice
from ..backtest.config import SynthConfig
from ..graph.model import LogicSubtype
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_START_TIME = 1_700_000_000_000
HOUR_MS = 3_600_000
BASE_OPEN_INTEREST = 100_000.0
BASE_VOLUME = 1_000.0


class MarketScenario(str, Enum):
    NORMAL = "NORMAL"
    SHORT_SQUEEZE = "SHORT_SQUEEZE"
    SPOT_PUMP = "SPOT_PUMP"
    ACCUMULATION = "ACCUMULATION"
    DISTRIBUTION = "DISTRIBUTION"

    @classmethod
    def parse(cls, value: str | MarketScenario) -> MarketScenario:
        if isinstance(value, MarketScenario):
            return value
        key = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown market scenario: {value!r}") from None


# Logic subtypes each regime is built to trigger under default thresholds
SCENARIO_TRIGGERS: dict[MarketScenario, tuple[LogicSubtype, ...]] = {
    MarketScenario.NORMAL: (),
    MarketScenario.SHORT_SQUEEZE: (LogicSubtype.FUNDING_ANOMALY,),
    MarketScenario.SPOT_PUMP: (LogicSubtype.INFLOW_DIVERGENCE,),
    MarketScenario.ACCUMULATION: (LogicSubtype.ABSORPTION,),
    MarketScenario.DISTRIBUTION: (LogicSubtype.DIVERGENCE, LogicSubtype.FUNDING_POSITIVE),
}


def box_muller(rng: np.random.Generator, size: int) -> np.ndarray:
    """Standard normal draws from pairs of uniforms."""
    u1 = 1.0 - rng.random(size)  # (0, 1], keeps log finite
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


@dataclass(frozen=True, slots=True)
class _Drift:
    price_returns: np.ndarray
    oi_returns: np.ndarray
    funding: np.ndarray
    net_inflow: np.ndarray
    volume_factor: np.ndarray
    spot_premium: float = 0.0
    price_noise: float = 0.0005
    inflow_noise: float = 200_000.0


def _normal_drift(idx: np.ndarray) -> _Drift:
    n = len(idx)
    return _Drift(
        price_returns=0.001 * np.cos(2.0 * np.pi * idx / 24.0),
        oi_returns=np.zeros(n),
        funding=np.full(n, 0.0001),
        net_inflow=np.zeros(n),
        volume_factor=np.ones(n),
        inflow_noise=1_000_000.0,
    )


def _short_squeeze_drift(idx: np.ndarray) -> _Drift:
    # squeeze legs every fifth candle, shallow pullbacks between them
    leg = idx % 5 == 4
    n = len(idx)
    return _Drift(
        price_returns=np.where(leg, 0.025, -0.002),
        oi_returns=np.where(leg, -0.015, 0.0),
        funding=np.full(n, -0.015),
        net_inflow=np.where(leg, 3_000_000.0, 0.0),
        volume_factor=np.where(leg, 3.0, 1.0),
        inflow_noise=100_000.0,
    )


def _spot_pump_drift(idx: np.ndarray) -> _Drift:
    dip = idx % 4 == 3
    n = len(idx)
    return _Drift(
        price_returns=np.where(dip, -0.015, 0.01),
        oi_returns=np.full(n, 0.003),
        funding=np.full(n, 0.0002),
        net_inflow=np.full(n, 4_000_000.0),
        volume_factor=np.where(dip, 1.5, 1.2),
        spot_premium=0.005,
    )


def _accumulation_drift(idx: np.ndarray) -> _Drift:
    burst = idx % 4 == 3
    n = len(idx)
    return _Drift(
        price_returns=np.zeros(n),
        oi_returns=np.where(burst, 0.03, 0.0005),
        funding=np.full(n, 0.00005),
        net_inflow=np.full(n, 500_000.0),
        volume_factor=np.where(burst, 2.0, 1.0),
        price_noise=0.0002,
    )


def _distribution_drift(idx: np.ndarray) -> _Drift:
    rising = idx < 0.6 * len(idx)
    n = len(idx)
    return _Drift(
        price_returns=np.where(rising, 0.004, -0.008),
        oi_returns=np.full(n, -0.005),
        funding=np.full(n, 0.0003),
        net_inflow=np.full(n, -3_000_000.0),
        volume_factor=np.ones(n),
        price_noise=0.0003,
    )


_DRIFTS = {
    MarketScenario.NORMAL: _normal_drift,
    MarketScenario.SHORT_SQUEEZE: _short_squeeze_drift,
    MarketScenario.SPOT_PUMP: _spot_pump_drift,
    MarketScenario.ACCUMULATION: _accumulation_drift,
    MarketScenario.DISTRIBUTION: _distribution_drift,
}


def synthesize(
    scenario: MarketScenario | str,
    length: int,
    config: SynthConfig | None = None,
    rng: np.random.Generator | None = None,
    *,
    seed: int | None = None,
) -> list[Candle]:
    """Generate ``length`` candles for one market regime.

    Args:
        scenario: Regime label, enum member or its name.
        length: Number of candles; 0 gives an empty list.
        config: Base price, start time, spacing and noise multiplier.
        rng: Noise source. When omitted a generator is seeded from ``seed``.
        seed: Seed used only when ``rng`` is not supplied.
    """
    scenario = MarketScenario.parse(scenario)
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")
    if length == 0:
        return []
    cfg = config or SynthConfig()
    rng = rng if rng is not None else np.random.default_rng(seed)
    scale = cfg.noise_scale

    idx = np.arange(length)
    drift = _DRIFTS[scenario](idx)

    returns = drift.price_returns + box_muller(rng, length) * drift.price_noise * scale
    returns[0] = 0.0
    close = cfg.base_price * np.cumprod(1.0 + returns)
    open_ = np.concatenate(([cfg.base_price], close[:-1]))
    wick = (0.0005 + np.abs(box_muller(rng, length)) * 0.001 * scale) * close
    high = np.maximum(open_, close) + wick
    low = np.minimum(open_, close) - wick

    oi_steps = drift.oi_returns + box_muller(rng, length) * 0.001 * scale
    oi_steps[0] = 0.0
    open_interest = BASE_OPEN_INTEREST * np.cumprod(1.0 + oi_steps)
    funding = drift.funding + box_muller(rng, length) * 1e-5 * scale
    net_inflow = drift.net_inflow + box_muller(rng, length) * drift.inflow_noise * scale
    volume = np.maximum(BASE_VOLUME * drift.volume_factor * (1.0 + 0.05 * box_muller(rng, length) * scale), 1.0)
    direction = np.sign(close - open_)
    cvd = np.cumsum(volume * 0.3 * np.where(direction == 0, 1.0, direction))

    candles: list[Candle] = []
    for i in range(length):
        spot = None
        if drift.spot_premium:
            spot = SpotPrice(
                open=float(open_[i] * (1.0 + drift.spot_premium)),
                close=float(close[i] * (1.0 + drift.spot_premium)),
                volume=float(volume[i] * 0.6),
            )
        candles.append(
            Candle(
                timestamp=cfg.start_time + i * cfg.interval_ms,
                open=float(open_[i]),
                high=float(high[i]),
                low=float(low[i]),
                close=float(close[i]),
                volume=float(volume[i]),
                quote_volume=float(volume[i] * close[i]),
                spot_price=spot,
                metrics=MarketMetrics(
                    open_interest=float(open_interest[i]),
                    funding_rate=float(funding[i]),
                    net_inflow=float(net_inflow[i]),
                    cvd=float(cvd[i]),
                ),
            )
        )
    logger.debug("Synthesized %d candles", length, extra={"scenario": scenario.value})
    return candles


def periodic(
    length: int,
    period: float,
    base_price: float,
    amplitude: float | None = None,
    start_time: int = DEFAULT_START_TIME,
    interval_ms: int = HOUR_MS,
) -> list[Candle]:
    """Sine-wave candles; a pure function of its arguments.

    The center price swings by ``amplitude`` (5% of ``base_price`` by default);
    open and close are offset by harmonics of the phase and volume is highest
    at the troughs.
    """
    amp = base_price * 0.05 if amplitude is None else amplitude
    volatility = amp * 0.1
    candles: list[Candle] = []
    for i in range(length):
        phase = 2.0 * np.pi * i / period
        center = base_price + amp * np.sin(phase)
        open_ = center + volatility * np.sin(phase * 2)
        close = center + volatility * np.cos(phase * 3)
        volume = 1000.0 + 500.0 * (1.0 - (np.sin(phase) + 1.0) / 2.0)
        candles.append(
            Candle(
                timestamp=start_time + i * interval_ms,
                open=float(open_),
                high=float(max(open_, close) + volatility * 0.5),
                low=float(min(open_, close) - volatility * 0.5),
                close=float(close),
                volume=float(volume),
                quote_volume=float(volume * close),
            )
        )
    return candles


def trend(
    length: int,
    start_price: float,
    end_price: float,
    volatility: float = 0.02,
    rng: np.random.Generator | None = None,
    start_time: int = DEFAULT_START_TIME,
) -> list[Candle]:
    rng = rng if rng is not None else np.random.default_rng()
    step = (end_price - start_price) / length if length else 0.0
    candles: list[Candle] = []
    for i in range(length):
        center = start_price + step * i
        noise = center * volatility * (rng.random() - 0.5)
        open_ = center + noise
        close = center + step + noise * 0.5
        candles.append(
            Candle(
                timestamp=start_time + i * HOUR_MS,
                open=float(open_),
                high=float(max(open_, close) * (1 + volatility * 0.2)),
                low=float(min(open_, close) * (1 - volatility * 0.2)),
                close=float(close),
                volume=float(1000.0 + rng.random() * 500.0),
            )
        )
    return candles


def range_bound(
    length: int,
    center_price: float,
    range_pct: float = 0.05,
    rng: np.random.Generator | None = None,
    start_time: int = DEFAULT_START_TIME,
) -> list[Candle]:
    rng = rng if rng is not None else np.random.default_rng()
    width = center_price * range_pct
    candles: list[Candle] = []
    for i in range(length):
        open_ = center_price + (rng.random() - 0.5) * width * 2
        close = center_price + (rng.random() - 0.5) * width * 2
        candles.append(
            Candle(
                timestamp=start_time + i * HOUR_MS,
                open=float(open_),
                high=float(max(open_, close) + rng.random() * width * 0.3),
                low=float(min(open_, close) - rng.random() * width * 0.3),
                close=float(close),
                volume=float(500.0 + rng.random() * 300.0),
            )
        )
    return candles


def _steady_move(length: int, base_price: float, step: float, start_time: int) -> list[Candle]:
    candles: list[Candle] = []
    price = base_price
    for i in range(length):
        open_ = price
        close = price * (1.0 + step)
        if step >= 0:
            high, low = close * 1.002, open_ * 0.998
        else:
            high, low = open_ * 1.002, close * 0.998
        candles.append(
            Candle(
                timestamp=start_time + i * HOUR_MS,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=1000.0,
                quote_volume=1000.0 * close,
            )
        )
        price = close
    return candles


def overbought(length: int, base_price: float, start_time: int = DEFAULT_START_TIME) -> list[Candle]:
    """1% gain every candle; RSI pinned at 100 once the window fills."""
    return _steady_move(length, base_price, 0.01, start_time)


def oversold(length: int, base_price: float, start_time: int = DEFAULT_START_TIME) -> list[Candle]:
    """1% loss every candle; RSI pinned at 0 once the window fills."""
    return _steady_move(length, base_price, -0.01, start_time)


__all__ = [
    "DEFAULT_START_TIME",
    "MarketScenario",
    "SCENARIO_TRIGGERS",
    "box_muller",
    "overbought",
    "oversold",
    "periodic",
    "range_bound",
    "synthesize",
    "trend",
]
