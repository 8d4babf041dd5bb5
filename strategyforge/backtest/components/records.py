"""Backtest data structure definitions."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from math import isfinite
from typing import Any

import numpy as np
import pandas as pd


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    EXIT = "EXIT"

    @classmethod
    def parse(cls, value: Any) -> SignalType:
        if isinstance(value, SignalType):
            return value
        text = str(value or "").strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown signal type: {value!r}") from None


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not isfinite(result):
        return None
    return result


@dataclass(frozen=True, slots=True)
class SpotPrice:
    open: float
    close: float
    volume: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SpotPrice:
        return cls(
            open=float(data.get("open", 0.0)),
            close=float(data.get("close", 0.0)),
            volume=float(data.get("volume", 0.0)),
        )

    def to_dict(self) -> dict[str, float]:
        return {"open": self.open, "close": self.close, "volume": self.volume}


_METRIC_KEYS = {
    "open_interest": ("open_interest", "openInterest"),
    "funding_rate": ("funding_rate", "fundingRate"),
    "net_inflow": ("net_inflow", "netInflow"),
    "cvd": ("cvd",),
    "long_short_ratio": ("long_short_ratio", "longShortRatio"),
    "liquidation_long": ("liquidation_long", "liquidationLong"),
    "liquidation_short": ("liquidation_short", "liquidationShort"),
}


@dataclass(frozen=True, slots=True)
class MarketMetrics:
    """Derivatives and on-chain fields attached to a candle."""

    open_interest: float | None = None
    funding_rate: float | None = None
    net_inflow: float | None = None
    cvd: float | None = None
    long_short_ratio: float | None = None
    liquidation_long: float | None = None
    liquidation_short: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MarketMetrics:
        values: dict[str, float | None] = {}
        for attr, keys in _METRIC_KEYS.items():
            raw = None
            for key in keys:
                if key in data:
                    raw = data[key]
                    break
            # The exchange feed reports long/short as {accounts, positions}
            if attr == "long_short_ratio" and isinstance(raw, Mapping):
                raw = raw.get("accounts")
            values[attr] = _opt_float(raw)
        return cls(**values)

    def to_dict(self) -> dict[str, float | None]:
        return {
            "open_interest": self.open_interest,
            "funding_rate": self.funding_rate,
            "net_inflow": self.net_inflow,
            "cvd": self.cvd,
            "long_short_ratio": self.long_short_ratio,
            "liquidation_long": self.liquidation_long,
            "liquidation_short": self.liquidation_short,
        }

    def is_empty(self) -> bool:
        return all(value is None for value in self.to_dict().values())


@dataclass(frozen=True, slots=True)
class Candle:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    quote_volume: float | None = None
    spot_price: SpotPrice | None = None
    metrics: MarketMetrics | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Candle:
        """Build a candle from the feed payload (camelCase or snake_case).

        Metric fields are read from a nested ``metrics`` mapping or, failing
        that, from the top level of the payload.
        """
        metrics_raw = data.get("metrics")
        if not isinstance(metrics_raw, Mapping):
            metrics_raw = data
        metrics = MarketMetrics.from_dict(metrics_raw)
        spot_raw = data.get("spot_price", data.get("spotPrice"))
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0) or 0.0),
            quote_volume=_opt_float(data.get("quote_volume", data.get("quoteVolume"))),
            spot_price=SpotPrice.from_dict(spot_raw) if isinstance(spot_raw, Mapping) else None,
            metrics=None if metrics.is_empty() else metrics,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }
        if self.quote_volume is not None:
            payload["quote_volume"] = self.quote_volume
        if self.spot_price is not None:
            payload["spot_price"] = self.spot_price.to_dict()
        if self.metrics is not None:
            payload["metrics"] = self.metrics.to_dict()
        return payload

    def metric(self, name: str) -> float | None:
        if self.metrics is None:
            return None
        return getattr(self.metrics, name)


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Per-candle view handed to node evaluators."""

    current_candle: Candle
    prior_window: tuple[Candle, ...] = ()

    @property
    def previous(self) -> Candle | None:
        return self.prior_window[-1] if self.prior_window else None

    def history(self) -> tuple[Candle, ...]:
        return (*self.prior_window, self.current_candle)

    def closes(self) -> np.ndarray:
        return np.fromiter((c.close for c in self.history()), dtype=float)

    def lookback(self, n: int) -> Candle | None:
        """Return the candle ``n`` steps before the current one, if available."""
        if n <= 0 or n > len(self.prior_window):
            return None
        return self.prior_window[-n]


@dataclass(frozen=True, slots=True)
class TradeSignal:
    id: str
    timestamp: int
    type: SignalType
    price: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "price": self.price,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class EquityPoint:
    time: int
    equity: float

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "equity": self.equity}


@dataclass(frozen=True, slots=True)
class TradeRecord:
    side: str
    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    pnl: float
    return_pct: float
    fees: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "return_pct": self.return_pct,
            "fees": self.fees,
        }


@dataclass(slots=True)
class BacktestMetrics:
    win_rate: float = 0.0
    total_return: float = 0.0
    trade_count: int = 0
    sqn: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0

    @classmethod
    def zeroed(cls, trade_count: int = 0) -> BacktestMetrics:
        return cls(trade_count=trade_count)

    def to_dict(self) -> dict[str, float | int | None]:
        def _normalise(value: float) -> float | None:
            return value if isfinite(value) else None

        return {
            "winRate": _normalise(self.win_rate),
            "totalReturn": _normalise(self.total_return),
            "tradeCount": self.trade_count,
            "sqn": _normalise(self.sqn),
            "sharpeRatio": _normalise(self.sharpe_ratio),
            "maxDrawdown": _normalise(self.max_drawdown),
            "profitFactor": _normalise(self.profit_factor),
        }


@dataclass(slots=True)
class BacktestResult:
    signals: list[TradeSignal]
    equity_curve: list[EquityPoint]
    metrics: BacktestMetrics
    trades: list[TradeRecord] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "signals": [sig.to_dict() for sig in self.signals],
            "equityCurve": [pt.to_dict() for pt in self.equity_curve],
            "metrics": self.metrics.to_dict(),
            "trades": [trade.to_dict() for trade in self.trades],
            "cancelled": self.cancelled,
        }

    def equity_curve_df(self) -> pd.DataFrame:
        return (
            pd.DataFrame([pt.to_dict() for pt in self.equity_curve]).set_index("time")
            if self.equity_curve
            else pd.DataFrame()
        )

    def signals_df(self) -> pd.DataFrame:
        return pd.DataFrame([sig.to_dict() for sig in self.signals]) if self.signals else pd.DataFrame()

    def trades_df(self) -> pd.DataFrame:
        return pd.DataFrame([trade.to_dict() for trade in self.trades]) if self.trades else pd.DataFrame()
