"""Tests for candle records, frame conversion and file I/O."""

from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest

from strategyforge.backtest.components.records import Candle, ExecutionContext, MarketMetrics, SpotPrice
from strategyforge.data.candles import candles_from_frame, candles_to_frame, load_candles, save_candles
from strategyforge.data.synthetic import synthesize


class TestCandleRecord:
    def test_from_camel_case_payload(self):
        candle = Candle.from_dict(
            {
                "timestamp": 1,
                "open": 1,
                "high": 2,
                "low": 0.5,
                "close": 1.5,
                "volume": 10,
                "quoteVolume": 15,
                "spotPrice": {"open": 1, "close": 1.6, "volume": 3},
                "metrics": {"openInterest": 100, "fundingRate": 0.0001, "longShortRatio": {"accounts": 1.2}},
            }
        )
        assert candle.quote_volume == 15.0
        assert candle.spot_price == SpotPrice(1.0, 1.6, 3.0)
        assert candle.metric("open_interest") == 100.0
        assert candle.metric("long_short_ratio") == 1.2
        assert candle.metric("net_inflow") is None

    def test_flat_metrics_and_empty_block(self):
        flat = Candle.from_dict({"timestamp": 1, "open": 1, "high": 1, "low": 1, "close": 1, "fundingRate": "0.01"})
        assert flat.metric("funding_rate") == 0.01
        bare = Candle.from_dict({"timestamp": 1, "open": 1, "high": 1, "low": 1, "close": 1})
        assert bare.metrics is None
        assert bare.volume == 0.0
        assert bare.metric("cvd") is None

    def test_to_dict_round_trip(self):
        candle = Candle(5, 1.0, 2.0, 0.5, 1.5, 7.0, metrics=MarketMetrics(cvd=3.0))
        assert Candle.from_dict(candle.to_dict()) == candle


class TestExecutionContext:
    def test_views(self):
        candles = [Candle(i, 1.0, 1.0, 1.0, float(i), 1.0) for i in range(4)]
        ctx = ExecutionContext(candles[-1], tuple(candles[:-1]))
        assert ctx.previous is candles[2]
        assert ctx.lookback(3) is candles[0]
        assert ctx.lookback(4) is None
        assert ctx.lookback(0) is None
        np.testing.assert_array_equal(ctx.closes(), [0.0, 1.0, 2.0, 3.0])

    def test_first_candle(self):
        ctx = ExecutionContext(Candle(0, 1.0, 1.0, 1.0, 1.0, 1.0))
        assert ctx.previous is None
        assert ctx.history() == (ctx.current_candle,)


class TestCandlesFromFrame:
    def test_datetime_index_and_aliases(self):
        frame = pd.DataFrame(
            {
                "open": [1.0, 2.0],
                "high": [1.5, 2.5],
                "low": [0.5, 1.5],
                "close": [1.2, 2.2],
                "volume": [10.0, np.nan],
                "openInterest": [100.0, np.nan],
                "spotClose": [1.3, 2.3],
                "spotOpen": [1.1, 2.1],
                "spotVolume": [4.0, 5.0],
            },
            index=pd.DatetimeIndex(["2023-11-14 22:13:20", "2023-11-14 23:13:20"], name="datetime"),
        )
        candles = candles_from_frame(frame)
        assert [c.timestamp for c in candles] == [1_700_000_000_000, 1_700_003_600_000]
        assert candles[0].metric("open_interest") == 100.0
        assert candles[1].metrics is None
        assert candles[1].volume == 0.0
        assert candles[0].spot_price == SpotPrice(1.1, 1.3, 4.0)

    def test_epoch_column(self):
        frame = pd.DataFrame({"timestamp": [10, 20], "open": [1, 1], "high": [1, 1], "low": [1, 1], "close": [1, 2]})
        candles = candles_from_frame(frame)
        assert [c.timestamp for c in candles] == [10, 20]
        assert candles[1].close == 2.0

    def test_missing_columns(self):
        with pytest.raises(KeyError, match="close"):
            candles_from_frame(pd.DataFrame({"timestamp": [1], "open": [1], "high": [1], "low": [1]}))

    def test_empty(self):
        assert candles_from_frame(pd.DataFrame()) == []

    def test_frame_round_trip(self):
        candles = synthesize("SPOT_PUMP", 10, seed=4)
        assert candles_from_frame(candles_to_frame(candles)) == candles


class TestCandlesToFrame:
    def test_drops_absent_columns(self):
        frame = candles_to_frame([Candle(0, 1.0, 1.0, 1.0, 1.0, 1.0)])
        assert list(frame.columns) == ["timestamp", "open", "high", "low", "close", "volume"]

    def test_empty(self):
        assert candles_to_frame([]).empty


class TestCandleFiles:
    def test_csv_round_trip(self, tmp_path):
        candles = synthesize("DISTRIBUTION", 12, seed=8)
        path = save_candles(candles, tmp_path / "nested" / "candles.csv")
        loaded = load_candles(path)
        assert [c.timestamp for c in loaded] == [c.timestamp for c in candles]
        assert [c.close for c in loaded] == pytest.approx([c.close for c in candles])
        assert [c.metric("funding_rate") for c in loaded] == pytest.approx([c.metric("funding_rate") for c in candles])

    def test_json_round_trip(self, tmp_path):
        candles = synthesize("SPOT_PUMP", 6, seed=8)
        path = save_candles(candles, tmp_path / "candles.json")
        assert load_candles(path) == candles

    def test_json_wrapped(self, tmp_path):
        path = tmp_path / "wrapped.json"
        rows = [{"timestamp": 1, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 2}]
        path.write_text(json.dumps({"candles": rows}), encoding="utf-8")
        assert load_candles(path)[0].volume == 2.0

    def test_json_must_be_list(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"candles": {"x": 1}}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_candles(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_candles(tmp_path / "nope.csv")
