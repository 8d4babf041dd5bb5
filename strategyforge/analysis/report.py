"""Rule-based strategy report: market regime, metric grades, red flags, verdict."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from math import isfinite

import pandas as pd

from ..backtest.components.records import BacktestMetrics, BacktestResult, Candle
from ..data.candles import candles_to_frame
from ..data.synthetic import MarketScenario

__all__ = [
    "MarketSnapshot",
    "RedFlag",
    "StrategyReport",
    "analyze",
    "detect_scenario",
    "generate_report",
    "grade_drawdown",
    "grade_sharpe",
    "grade_sqn",
    "manipulation_risk",
    "market_snapshot",
    "red_flags",
    "verdict",
]

DEPLOY = "DEPLOY"
REJECT = "REJECT"


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    price_change_pct: float = 0.0
    open_interest_change_pct: float = 0.0
    funding_rate_avg: float = 0.0
    spot_futures_spread_pct: float = 0.0
    net_inflow: float = 0.0


@dataclass(frozen=True, slots=True)
class RedFlag:
    message: str
    critical: bool = False


@dataclass(slots=True)
class StrategyReport:
    metrics: BacktestMetrics
    snapshot: MarketSnapshot
    scenario: MarketScenario
    manipulation_risk: str
    flags: list[RedFlag] = field(default_factory=list)
    verdict: str = REJECT
    reason: str = ""

    def to_markdown(self) -> str:
        m = self.metrics
        snap = self.snapshot
        structure = (
            "Spot premium - organic demand (bullish bias)"
            if snap.spot_futures_spread_pct > 0
            else "Futures premium - speculative demand (caution advised)"
        )
        if m.win_rate >= 50:
            win_grade = "Positive"
        else:
            win_grade = "Negative"
        if m.profit_factor >= 1.5:
            pf_grade = "Good"
        elif m.profit_factor >= 1:
            pf_grade = "Marginal"
        else:
            pf_grade = "Losing"
        flag_lines = [f"- {flag.message}" for flag in self.flags] or ["- No critical issues detected"]
        lines = [
            "## Executive Summary",
            "",
            f"> Strategy completed with **{m.trade_count} trades** and **{m.total_return:.2f}%** return.",
            f"> Scenario: **{self.scenario.value}** | Manipulation risk: **{self.manipulation_risk}**",
            "",
            "## Mechanics Analysis",
            "",
            f"- **Scenario detected:** {self.scenario.value}",
            f"- **Market structure:** {structure}",
            f"- **Manipulation risk:** {self.manipulation_risk}",
            f"- **OI change:** {snap.open_interest_change_pct:.1f}%",
            f"- **Avg funding:** {snap.funding_rate_avg * 100:.4f}%",
            "",
            "## Risk Profile",
            "",
            "| Metric | Value | Grade |",
            "|--------|-------|-------|",
            f"| SQN | {m.sqn:.2f} | {grade_sqn(m.sqn)} |",
            f"| Sharpe | {m.sharpe_ratio:.2f} | {grade_sharpe(m.sharpe_ratio)} |",
            f"| Max DD | {m.max_drawdown:.1f}% | {grade_drawdown(m.max_drawdown)} |",
            f"| Win Rate | {m.win_rate:.1f}% | {win_grade} |",
            f"| Profit Factor | {_fmt(m.profit_factor)} | {pf_grade} |",
            "",
            "## Red Flags",
            "",
            *flag_lines,
            "",
            "## Verdict",
            "",
            f"**[{self.verdict}]** - {self.reason}",
        ]
        return "\n".join(lines)


def _fmt(value: float) -> str:
    return f"{value:.2f}" if isfinite(value) else "inf"


def grade_sqn(sqn: float) -> str:
    """Van Tharp's scale."""
    if sqn >= 7.0:
        return "Holy Grail"
    if sqn >= 3.0:
        return "Superb"
    if sqn >= 2.5:
        return "Excellent"
    if sqn >= 2.0:
        return "Good"
    if sqn >= 1.6:
        return "Average"
    return "Poor"


def grade_sharpe(sharpe: float) -> str:
    if sharpe >= 3.0:
        return "Excellent"
    if sharpe >= 2.0:
        return "Very Good"
    if sharpe >= 1.0:
        return "Good"
    return "Sub-optimal"


def grade_drawdown(drawdown: float) -> str:
    if drawdown <= 5:
        return "Excellent"
    if drawdown <= 15:
        return "Acceptable"
    if drawdown <= 30:
        return "High"
    return "Unacceptable"


def market_snapshot(candles: Sequence[Candle]) -> MarketSnapshot:
    if len(candles) < 2:
        return MarketSnapshot()
    frame = candles_to_frame(candles)
    first, last = frame.iloc[0], frame.iloc[-1]
    price_change = (last["close"] - first["close"]) / first["close"] * 100.0 if first["close"] else 0.0

    oi_change = 0.0
    if "open_interest" in frame.columns:
        first_oi = first["open_interest"]
        last_oi = last["open_interest"]
        if pd.notna(first_oi) and pd.notna(last_oi) and first_oi > 0:
            oi_change = (last_oi - first_oi) / first_oi * 100.0

    funding = frame["funding_rate"].dropna() if "funding_rate" in frame.columns else pd.Series(dtype=float)
    inflow = frame["net_inflow"].dropna() if "net_inflow" in frame.columns else pd.Series(dtype=float)

    spot_close = last["spot_close"] if "spot_close" in frame.columns and pd.notna(last["spot_close"]) else last["close"]
    spread = (spot_close - last["close"]) / last["close"] * 100.0 if last["close"] else 0.0

    return MarketSnapshot(
        price_change_pct=float(price_change),
        open_interest_change_pct=float(oi_change),
        funding_rate_avg=float(funding.mean()) if not funding.empty else 0.0,
        spot_futures_spread_pct=float(spread),
        net_inflow=float(inflow.sum()) if not inflow.empty else 0.0,
    )


def detect_scenario(snapshot: MarketSnapshot) -> MarketScenario:
    """First matching regime wins; the checks are ordered by severity."""
    s = snapshot
    if s.price_change_pct > 2 and s.open_interest_change_pct < -10 and s.funding_rate_avg < -0.01:
        return MarketScenario.SHORT_SQUEEZE
    if s.net_inflow > 0 and s.spot_futures_spread_pct > 0.3:
        return MarketScenario.SPOT_PUMP
    if abs(s.price_change_pct) < 2 and s.open_interest_change_pct > 10:
        return MarketScenario.ACCUMULATION
    if s.price_change_pct < 0 and s.open_interest_change_pct < -5 and s.net_inflow < 0:
        return MarketScenario.DISTRIBUTION
    return MarketScenario.NORMAL


def manipulation_risk(scenario: MarketScenario) -> str:
    if scenario is MarketScenario.NORMAL:
        return "LOW"
    if scenario in (MarketScenario.SHORT_SQUEEZE, MarketScenario.DISTRIBUTION):
        return "HIGH"
    return "MEDIUM"


def red_flags(metrics: BacktestMetrics, scenario: MarketScenario, snapshot: MarketSnapshot) -> list[RedFlag]:
    flags: list[RedFlag] = []
    if metrics.win_rate > 90:
        flags.append(RedFlag("Win rate > 90% - possible look-ahead bias or overfitting"))
    if metrics.max_drawdown > 30:
        flags.append(RedFlag("Max drawdown > 30% - unacceptable risk level", critical=True))
    if metrics.trade_count < 30:
        flags.append(RedFlag("Trade count < 30 - statistically insignificant"))
    if metrics.profit_factor < 1:
        flags.append(RedFlag("Profit factor < 1 - losses exceed gains"))
    if metrics.sqn > 5:
        flags.append(RedFlag("SQN > 5.0 - check for overfitting or data errors", critical=True))
    if scenario is MarketScenario.SHORT_SQUEEZE:
        flags.append(RedFlag("Negative funding during rally indicates forced liquidations"))
    if snapshot.funding_rate_avg < -0.05:
        flags.append(RedFlag(f"Funding consistently negative ({snapshot.funding_rate_avg * 100:.3f}% avg)"))
    return flags


def verdict(metrics: BacktestMetrics, flags: Sequence[RedFlag]) -> tuple[str, str]:
    if any(flag.critical for flag in flags):
        return REJECT, "Critical red flags detected. Review and fix before deployment."
    if metrics.sqn < 1.6:
        return REJECT, "System quality below tradable threshold (SQN < 1.6)."
    if metrics.profit_factor < 1:
        return REJECT, "Negative expectancy - system loses money."
    if len(flags) >= 3:
        return REJECT, "Multiple warnings indicate unreliable backtest."
    if metrics.sqn >= 2.5 and metrics.max_drawdown < 15:
        return DEPLOY, "Excellent risk-adjusted returns with acceptable drawdown."
    return DEPLOY, "System shows positive expectancy. Deploy with tight risk management."


def analyze(result: BacktestResult, candles: Sequence[Candle]) -> StrategyReport:
    snapshot = market_snapshot(candles)
    scenario = detect_scenario(snapshot)
    flags = red_flags(result.metrics, scenario, snapshot)
    decision, reason = verdict(result.metrics, flags)
    return StrategyReport(
        metrics=result.metrics,
        snapshot=snapshot,
        scenario=scenario,
        manipulation_risk=manipulation_risk(scenario),
        flags=flags,
        verdict=decision,
        reason=reason,
    )


def generate_report(result: BacktestResult, candles: Sequence[Candle]) -> str:
    """Markdown report for one simulation run over ``candles``."""
    return analyze(result, candles).to_markdown()
