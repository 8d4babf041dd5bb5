"""Tests for node evaluation: logic rules, regime filter and result nodes."""

from __future__ import annotations

import pytest

from strategyforge.backtest.components.records import (
    Candle,
    ExecutionContext,
    MarketMetrics,
    SignalType,
)
from strategyforge.graph.model import Node, NodeKind
from strategyforge.nodes.filters import HIGH_VOLATILITY, LOW_VOLATILITY, NORMAL
from strategyforge.nodes.registry import (
    RESULT_REASON,
    NodeEvaluatorRegistry,
    NodeResult,
    SignalIdGenerator,
    available_filter_types,
    available_logic_types,
)


def _candle(
    ts: int,
    close: float,
    *,
    open_: float | None = None,
    high: float | None = None,
    low: float | None = None,
    volume: float = 1000.0,
    **metrics: float,
) -> Candle:
    return Candle(
        timestamp=ts,
        open=close if open_ is None else open_,
        high=close if high is None else high,
        low=close if low is None else low,
        close=close,
        volume=volume,
        metrics=MarketMetrics(**metrics) if metrics else None,
    )


def _ctx(candles: list[Candle]) -> ExecutionContext:
    return ExecutionContext(candles[-1], tuple(candles[:-1]))


def _series(closes: list[float], **metrics: float) -> list[Candle]:
    return [_candle(1000 * i, close, **metrics) for i, close in enumerate(closes)]


def _logic(registry: NodeEvaluatorRegistry, subtype: str, ctx: ExecutionContext, config=None, inputs=None) -> NodeResult:
    return registry.evaluate(NodeKind.LOGIC, subtype, config, inputs or [ctx.current_candle.close], ctx)


@pytest.fixture()
def registry() -> NodeEvaluatorRegistry:
    return NodeEvaluatorRegistry()


# ── Source ──


class TestSourceNode:
    def test_emits_close(self, registry):
        ctx = _ctx(_series([100.0, 101.5]))
        result = registry.evaluate("Source", "price", None, [], ctx)
        assert result == NodeResult(value=101.5, passed=True)


# ── Classic indicators ──


class TestRsiNodes:
    def test_overbought_emits_sell(self, registry):
        candles = _series([100.0 + i for i in range(20)])
        ctx = _ctx(candles)
        result = _logic(registry, "rsi_gt_70", ctx)
        assert result.passed
        assert result.value == 100.0
        assert result.signal.type is SignalType.SELL
        assert result.signal.reason == "rsi_gt_70"
        assert result.signal.price == candles[-1].close
        assert result.signal.timestamp == candles[-1].timestamp
        assert result.signal.id == "sig-1"

    def test_oversold_emits_buy(self, registry):
        ctx = _ctx(_series([200.0 - i for i in range(20)]))
        result = _logic(registry, "rsi_lt_30", ctx)
        assert result.passed
        assert result.signal.type is SignalType.BUY

    def test_short_history_is_neutral(self, registry):
        ctx = _ctx(_series([100.0, 110.0, 120.0]))
        result = _logic(registry, "rsi_gt_70", ctx)
        assert not result.passed
        assert result.value == 50.0
        assert result.signal is None

    def test_threshold_override(self, registry):
        # balanced moves give RSI 50
        ctx = _ctx(_series([1.0, 2.0, 1.0]))
        result = _logic(registry, "rsi_gt_70", ctx, config={"threshold": 40, "period": 2})
        assert result.passed

    def test_recovery_after_long_decline_is_overbought(self, registry):
        closes = [1000.0 - 10.0 * i for i in range(31)]
        closes += [closes[-1] + i for i in range(1, 16)]
        ctx = _ctx(_series(closes))
        overbought = _logic(registry, "rsi_gt_70", ctx)
        assert overbought.passed
        assert overbought.value == 100.0
        assert overbought.signal.type is SignalType.SELL
        assert not _logic(registry, "rsi_lt_30", ctx).passed


class TestMovingAverageNodes:
    def test_price_above(self, registry):
        ctx = _ctx(_series([100.0, 100.0, 100.0, 110.0]))
        result = _logic(registry, "price_gt_ma200", ctx)
        assert result.passed
        assert result.value == {"price": 110.0, "ma": pytest.approx(102.5)}
        assert result.signal.type is SignalType.BUY

    def test_price_below(self, registry):
        ctx = _ctx(_series([100.0, 100.0, 100.0, 110.0]))
        assert not _logic(registry, "price_lt_ma200", ctx).passed
        ctx = _ctx(_series([100.0, 100.0, 100.0, 90.0]))
        result = _logic(registry, "price_lt_ma200", ctx)
        assert result.passed
        assert result.signal.type is SignalType.SELL

    def test_single_candle_equals_its_average(self, registry):
        ctx = _ctx(_series([100.0]))
        assert not _logic(registry, "price_gt_ma200", ctx).passed


class TestVolumeSpike:
    def test_spike(self, registry):
        candles = [_candle(i, 100.0, volume=1000.0) for i in range(5)] + [_candle(5, 100.0, volume=2500.0)]
        result = _logic(registry, "volume_spike", _ctx(candles))
        assert result.passed
        assert result.value == {"current": 2500.0, "avg": 1000.0}
        assert result.signal.type is SignalType.BUY

    def test_below_multiplier(self, registry):
        candles = [_candle(i, 100.0, volume=1000.0) for i in range(5)] + [_candle(5, 100.0, volume=1900.0)]
        assert not _logic(registry, "volume_spike", _ctx(candles)).passed

    def test_first_candle_has_no_average(self, registry):
        result = _logic(registry, "volume_spike", _ctx([_candle(0, 100.0, volume=1e9)]))
        assert not result.passed
        assert result.value["avg"] is None


# ── Futures metrics ──


class TestOpenInterestIncrease:
    def test_rise_above_ratio(self, registry):
        candles = [_candle(0, 100.0, open_interest=100.0), _candle(1, 100.0, open_interest=106.0)]
        result = _logic(registry, "oi_increase", _ctx(candles))
        assert result.passed
        assert result.signal.type is SignalType.BUY

    def test_rise_below_ratio(self, registry):
        candles = [_candle(0, 100.0, open_interest=100.0), _candle(1, 100.0, open_interest=104.0)]
        assert not _logic(registry, "oi_increase", _ctx(candles)).passed

    def test_no_previous_candle(self, registry):
        result = _logic(registry, "oi_increase", _ctx([_candle(0, 100.0, open_interest=100.0)]))
        assert not result.passed

    def test_missing_metric_is_not_fatal(self, registry):
        candles = _series([100.0, 101.0])
        assert _logic(registry, "oi_increase", _ctx(candles)) == NodeResult()


class TestFundingPositive:
    def test_positive_rate_sells(self, registry):
        result = _logic(registry, "funding_positive", _ctx([_candle(0, 100.0, funding_rate=0.001)]))
        assert result.passed
        assert result.value == pytest.approx(0.001)
        assert result.signal.type is SignalType.SELL

    def test_negative_rate(self, registry):
        assert not _logic(registry, "funding_positive", _ctx([_candle(0, 100.0, funding_rate=-0.001)])).passed


class TestDivergence:
    def test_price_up_oi_down(self, registry):
        candles = [_candle(i, 100.0 + i, open_interest=1000.0 - 20 * i) for i in range(6)]
        result = _logic(registry, "divergence", _ctx(candles))
        assert result.passed
        assert result.value == {"price_increasing": True, "oi_decreasing": True}
        assert result.signal.type is SignalType.SELL

    def test_needs_full_lookback(self, registry):
        candles = [_candle(i, 100.0 + i, open_interest=1000.0 - 20 * i) for i in range(5)]
        assert not _logic(registry, "divergence", _ctx(candles)).passed

    def test_confirmed_move(self, registry):
        candles = [_candle(i, 100.0 + i, open_interest=1000.0 + 20 * i) for i in range(6)]
        result = _logic(registry, "divergence", _ctx(candles))
        assert not result.passed
        assert result.value["oi_decreasing"] is False


# ── Composite heuristics ──


class TestFundingAnomaly:
    def test_rally_with_negative_funding(self, registry):
        candles = [_candle(0, 100.0, funding_rate=-0.01), _candle(1, 102.0, funding_rate=-0.01)]
        result = _logic(registry, "FundingAnomaly", _ctx(candles))
        assert result.passed
        assert result.value["price_change_pct"] == pytest.approx(2.0)
        assert result.value["signal"] == "Spot Driven Rally / Short Squeeze Warning"
        assert result.signal.reason == "FundingAnomaly"

    def test_positive_funding(self, registry):
        candles = [_candle(0, 100.0, funding_rate=0.01), _candle(1, 102.0, funding_rate=0.01)]
        result = _logic(registry, "FundingAnomaly", _ctx(candles))
        assert not result.passed
        assert result.value["signal"] == "Normal"


class TestAbsorption:
    def _candles(self, volume: float, cvd: float | None = None) -> list[Candle]:
        extra = {} if cvd is None else {"cvd": cvd}
        return [
            _candle(0, 100.0, volume=1000.0, open_interest=1000.0),
            _candle(1, 100.1, volume=volume, open_interest=1030.0, **extra),
        ]

    def test_flat_price_rising_oi_heavy_volume(self, registry):
        result = _logic(registry, "Absorption", _ctx(self._candles(2000.0)))
        assert result.passed
        assert result.value["volume_ratio"] == pytest.approx(2.0)
        assert result.value["oi_change_pct"] == pytest.approx(3.0)
        assert result.value["cvd"] == 0.0
        assert result.value["signal"] == "Positions being loaded (Accumulation/Distribution)"

    def test_quiet_volume(self, registry):
        assert not _logic(registry, "Absorption", _ctx(self._candles(1000.0))).passed

    def test_cvd_counts_as_activity(self, registry):
        assert _logic(registry, "Absorption", _ctx(self._candles(1000.0, cvd=250.0))).passed

    def test_price_moved_too_much(self, registry):
        candles = [
            _candle(0, 100.0, open_interest=1000.0),
            _candle(1, 101.0, volume=3000.0, open_interest=1030.0),
        ]
        assert not _logic(registry, "Absorption", _ctx(candles)).passed


class TestInflowDivergence:
    def test_dip_with_inflow(self, registry):
        candles = [_candle(0, 100.0, net_inflow=5e5), _candle(1, 99.0, net_inflow=5e5)]
        result = _logic(registry, "InflowDivergence", _ctx(candles))
        assert result.passed
        assert result.value["signal"] == "Bullish Divergence - Smart Money Accumulating"
        assert result.signal.type is SignalType.BUY

    def test_dip_with_outflow(self, registry):
        candles = [_candle(0, 100.0, net_inflow=-5e5), _candle(1, 99.0, net_inflow=-5e5)]
        assert not _logic(registry, "InflowDivergence", _ctx(candles)).passed


class TestThreshold:
    def test_greater_than_buys(self, registry):
        ctx = _ctx(_series([100.0]))
        result = _logic(registry, "threshold", ctx, {"operator": ">", "value": 100}, [150.0])
        assert result.passed
        assert result.value == 150.0
        assert result.signal.type is SignalType.BUY

    def test_other_operators_sell(self, registry):
        ctx = _ctx(_series([100.0]))
        result = _logic(registry, "threshold", ctx, {"operator": "<=", "value": 100}, [100.0])
        assert result.passed
        assert result.signal.type is SignalType.SELL

    def test_non_numeric_input_falls_back_to_close(self, registry):
        ctx = _ctx(_series([120.0]))
        result = _logic(registry, "threshold", ctx, {"operator": ">", "value": 100}, [True])
        assert result.value == 120.0
        assert result.passed


# ── Filter and Result ──


class TestRegimeFilter:
    def test_high_volatility_passes(self, registry):
        candles = [_candle(i, 100.0, high=103.0, low=98.0) for i in range(3)]
        result = registry.evaluate(NodeKind.FILTER, "RegimeCheck", None, [100.0], _ctx(candles))
        assert result.passed
        assert result.signal is None
        assert result.value["regime"] == HIGH_VOLATILITY
        assert result.value["atr_pct"] == pytest.approx(5.0)

    def test_low_volatility_blocks(self, registry):
        candles = [_candle(i, 100.0, high=100.25, low=99.75) for i in range(3)]
        result = registry.evaluate(NodeKind.FILTER, "RegimeCheck", None, [100.0], _ctx(candles))
        assert not result.passed
        assert result.value["regime"] == LOW_VOLATILITY

    def test_normal_band(self, registry):
        candles = [_candle(i, 100.0, high=100.75, low=99.25) for i in range(3)]
        result = registry.evaluate(NodeKind.FILTER, "RegimeCheck", None, [100.0], _ctx(candles))
        assert result.value["regime"] == NORMAL
        assert result.value["recommendation"] == "Standard parameters"


class TestResultNode:
    def test_truthy_input_emits_configured_signal(self, registry):
        ctx = _ctx(_series([100.0, 105.0]))
        result = registry.evaluate(NodeKind.RESULT, "signal", {"signalType": "SELL"}, [{"price": 1}], ctx)
        assert result.passed
        assert result.signal.type is SignalType.SELL
        assert result.signal.reason == RESULT_REASON
        assert result.signal.price == 105.0

    @pytest.mark.parametrize("inputs", [[], [False], [None], [0]])
    def test_falsy_input(self, registry, inputs):
        ctx = _ctx(_series([100.0]))
        result = registry.evaluate(NodeKind.RESULT, "signal", None, inputs, ctx)
        assert not result.passed
        assert result.signal is None


# ── Registry behaviour ──


class TestRegistryDispatch:
    def test_unknown_kind_is_not_fatal(self, registry):
        assert registry.evaluate("Oracle", "x", None, [], _ctx(_series([1.0]))) == NodeResult()

    def test_unknown_logic_subtype_is_not_fatal(self, registry):
        assert registry.evaluate(NodeKind.LOGIC, "moon_phase", None, [], _ctx(_series([1.0]))) == NodeResult()

    def test_evaluate_node_uses_typed_config(self, registry):
        node = Node.create("t1", NodeKind.LOGIC, "threshold", {"operator": "<", "value": 50})
        result = registry.evaluate_node(node, [10.0], _ctx(_series([10.0])))
        assert result.passed
        assert result.signal.type is SignalType.SELL

    def test_signal_ids_are_sequential_per_registry(self):
        ctx = _ctx(_series([100.0, 105.0]))
        first = NodeEvaluatorRegistry()
        ids = [first.evaluate(NodeKind.RESULT, "signal", None, [True], ctx).signal.id for _ in range(3)]
        assert ids == ["sig-1", "sig-2", "sig-3"]
        second = NodeEvaluatorRegistry()
        assert second.evaluate(NodeKind.RESULT, "signal", None, [True], ctx).signal.id == "sig-1"

    def test_custom_id_factory(self):
        registry = NodeEvaluatorRegistry(SignalIdGenerator(prefix="run7"))
        result = registry.evaluate(NodeKind.RESULT, "signal", None, [True], _ctx(_series([1.0])))
        assert result.signal.id == "run7-1"

    def test_available_types(self):
        logic = available_logic_types()
        assert len(logic) == 12
        assert {"rsi_gt_70", "FundingAnomaly", "Absorption", "InflowDivergence", "threshold"} <= set(logic)
        assert available_filter_types() == ["RegimeCheck"]
