"""Tests for the backtest command line entry point."""

from __future__ import annotations

import json

import pytest
import yaml

from strategyforge.backtest import run_backtest
from strategyforge.backtest.config import BacktestConfig
from strategyforge.data.candles import save_candles
from strategyforge.data.synthetic import synthesize
from strategyforge.logging_config import reset_logging

GRAPH = {
    "nodes": [
        {"id": "src", "kind": "Source"},
        {"id": "squeeze", "kind": "Logic", "subtype": "FundingAnomaly"},
        {"id": "out", "kind": "Result", "config": {"signal_type": "BUY"}},
    ],
    "edges": [{"source": "src", "target": "squeeze"}, {"source": "squeeze", "target": "out"}],
}


@pytest.fixture()
def graph_path(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(GRAPH), encoding="utf-8")
    return path


class TestHelpers:
    def teardown_method(self):
        reset_logging()

    def test_parse_value(self):
        assert run_backtest._parse_value("3") == 3
        assert run_backtest._parse_value("0.5") == 0.5
        assert run_backtest._parse_value("TRUE") is True
        assert run_backtest._parse_value("abc") == "abc"

    def test_apply_overrides(self):
        cfg = run_backtest._apply_overrides(BacktestConfig(), ["position_size=0.3", "applyCosts=false"])
        assert cfg.position_size == 0.3
        assert cfg.apply_costs is False

    def test_apply_overrides_rejects_bad_item(self):
        with pytest.raises(ValueError, match="Invalid override"):
            run_backtest._apply_overrides(BacktestConfig(), ["position_size"])

    def test_load_config_section(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(yaml.safe_dump({"backtest": {"initial_capital": 500}}), encoding="utf-8")
        assert run_backtest._load_config(path).initial_capital == 500.0
        assert run_backtest._load_config(None) == BacktestConfig()

    def test_candle_sources_are_exclusive(self, graph_path, tmp_path):
        with pytest.raises(SystemExit):
            run_backtest._parse_args(
                ["--graph", str(graph_path), "--candles", str(tmp_path / "c.csv"), "--scenario", "NORMAL"]
            )


class TestMain:
    def teardown_method(self):
        reset_logging()

    def test_synthetic_scenario(self, graph_path, tmp_path):
        out = tmp_path / "out" / "result.json"
        report = tmp_path / "out" / "report.md"
        log_file = tmp_path / "logs" / "run.log"
        code = run_backtest.main(
            [
                "--graph", str(graph_path),
                "--scenario", "SHORT_SQUEEZE",
                "--length", "80",
                "--seed", "1",
                "--out", str(out),
                "--report", str(report),
                "--log-file", str(log_file),
            ]
        )
        assert code == 0
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["num_candles"] == 80
        assert payload["config"]["initial_capital"] == 10_000.0
        assert len(payload["signals"]) == 1
        assert payload["signals"][0]["type"] == "BUY"
        assert len(payload["equityCurve"]) == 80
        text = report.read_text(encoding="utf-8")
        assert "## Verdict" in text
        assert "SHORT_SQUEEZE" in text
        assert log_file.exists()

    def test_candle_file_and_config(self, graph_path, tmp_path):
        candles = save_candles(synthesize("SHORT_SQUEEZE", 40, seed=2), tmp_path / "candles.csv")
        cfg_path = tmp_path / "cfg.yaml"
        cfg_path.write_text(yaml.safe_dump({"backtest": {"initial_capital": 1000, "apply_costs": False}}), encoding="utf-8")
        out = tmp_path / "result.json"
        code = run_backtest.main(
            [
                "--graph", str(graph_path),
                "--candles", str(candles),
                "--config", str(cfg_path),
                "--overrides", "position_size=0.5",
                "--out", str(out),
            ]
        )
        assert code == 0
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["config"]["initial_capital"] == 1000.0
        assert payload["config"]["position_size"] == 0.5
        assert payload["num_candles"] == 40

    def test_default_periodic_fixture(self, tmp_path):
        graph = tmp_path / "graph.yaml"
        graph.write_text(
            yaml.safe_dump(
                {
                    "nodes": [
                        {"id": "s", "kind": "Source"},
                        {"id": "ma", "kind": "Logic", "subtype": "price_gt_ma200"},
                    ],
                    "edges": [{"source": "s", "target": "ma"}],
                }
            ),
            encoding="utf-8",
        )
        out = tmp_path / "result.json"
        assert run_backtest.main(["--graph", str(graph), "--out", str(out)]) == 0
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["num_candles"] == 200
        assert len(payload["signals"]) == 1
