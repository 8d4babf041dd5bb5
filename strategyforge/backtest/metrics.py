from __future__ import annotations

from collections.abc import Sequence
from math import inf, isfinite, sqrt

import numpy as np
import pandas as pd

from .components.records import (
    BacktestMetrics,
    EquityPoint,
    SignalType,
    TradeRecord,
    TradeSignal,
)

MIN_SIGNALS_FOR_METRICS = 2


class MetricsCalculator:
    """Aggregate statistics for one finished simulation run."""

    def compute(
        self,
        signals: Sequence[TradeSignal],
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
        trades: Sequence[TradeRecord] | None = None,
    ) -> BacktestMetrics:
        trade_count = len(signals)
        if trade_count < MIN_SIGNALS_FOR_METRICS:
            return BacktestMetrics.zeroed(trade_count)

        if trades is None:
            returns, pnls = pair_returns(signals)
        else:
            returns = [trade.return_pct for trade in trades]
            pnls = [trade.pnl for trade in trades]

        equity = equity_to_series(equity_curve)
        return BacktestMetrics(
            win_rate=win_rate(signals),
            total_return=total_return(equity, initial_capital),
            trade_count=trade_count,
            sqn=sqn(returns),
            sharpe_ratio=sharpe(equity),
            max_drawdown=max_drawdown_pct(equity.to_numpy()),
            profit_factor=profit_factor(pnls),
        )


def compute_metrics(
    signals: Sequence[TradeSignal],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    trades: Sequence[TradeRecord] | None = None,
) -> BacktestMetrics:
    return MetricsCalculator().compute(signals, equity_curve, initial_capital, trades)


def equity_to_series(equity_curve: Sequence[EquityPoint]) -> pd.Series:
    if not equity_curve:
        return pd.Series(dtype=float)
    return pd.Series(
        [pt.equity for pt in equity_curve],
        index=[pt.time for pt in equity_curve],
        dtype=float,
        name="equity",
    )


def _pair_pnl(entry: TradeSignal, exit_: TradeSignal) -> float:
    if entry.type is SignalType.BUY:
        return exit_.price - entry.price
    return entry.price - exit_.price


def _opens(signal: TradeSignal) -> bool:
    # EXIT never opens a position, so a pair it leads has no direction
    return signal.type is not SignalType.EXIT


def win_rate(signals: Sequence[TradeSignal]) -> float:
    """Share of winning pairs, pairing signals positionally (0 with 1, 2 with 3, ...).

    Pairs whose first signal is EXIT are left out.
    """
    wins = 0
    pairs = 0
    for idx in range(0, len(signals) - 1, 2):
        if not _opens(signals[idx]):
            continue
        if _pair_pnl(signals[idx], signals[idx + 1]) > 0:
            wins += 1
        pairs += 1
    return wins / pairs * 100.0 if pairs else 0.0


def pair_returns(signals: Sequence[TradeSignal]) -> tuple[list[float], list[float]]:
    """Per-trade percent returns and price P&L from consecutive signal pairs, skipping EXIT-led ones."""
    returns: list[float] = []
    pnls: list[float] = []
    for entry, exit_ in zip(signals, signals[1:]):
        if not _opens(entry):
            continue
        pnl = _pair_pnl(entry, exit_)
        pnls.append(pnl)
        returns.append(pnl / entry.price * 100.0 if entry.price else 0.0)
    return returns, pnls


def total_return(equity: pd.Series, initial_capital: float) -> float:
    if equity.empty or initial_capital <= 0:
        return 0.0
    return float((equity.iloc[-1] - initial_capital) / initial_capital * 100.0)


def sqn(returns: Sequence[float]) -> float:
    """System Quality Number: mean over stdev of trade returns times sqrt(n).

    n is the number of realized trades passed in, not the raw signal count.
    """
    values = np.asarray(returns, dtype=float)
    if values.size < 2:
        return 0.0
    std = values.std(ddof=1)
    if not isfinite(std) or std <= 1e-12:
        return 0.0
    return float(values.mean() / std * sqrt(values.size))


def sharpe(equity: pd.Series) -> float:
    """Mean over standard deviation of point-to-point equity returns, risk-free rate zero."""
    if len(equity) < 3:
        return 0.0
    returns = equity.pct_change().replace([np.inf, -np.inf], np.nan).dropna()
    if len(returns) < 2:
        return 0.0
    std = float(returns.std(ddof=1))
    if not isfinite(std) or std <= 1e-12:
        return 0.0
    return float(returns.mean() / std)


def max_drawdown_pct(equity: np.ndarray) -> float:
    peak = -np.inf
    max_dd = 0.0
    for val in equity:
        peak = max(peak, val)
        if peak <= 0:
            continue
        drawdown = (peak - val) / peak * 100.0
        max_dd = max(max_dd, drawdown)
    return float(min(max(max_dd, 0.0), 100.0))


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss; ``inf`` when nothing was lost but something was won."""
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    if gross_loss == 0:
        return inf if gross_profit > 0 else 0.0
    return float(gross_profit / gross_loss)


__all__ = [
    "MetricsCalculator",
    "compute_metrics",
    "equity_to_series",
    "max_drawdown_pct",
    "pair_returns",
    "profit_factor",
    "sharpe",
    "sqn",
    "total_return",
    "win_rate",
]
