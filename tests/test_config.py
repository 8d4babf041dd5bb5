"""Tests for backtest and synthesizer configuration."""

from __future__ import annotations

import json

import pytest
import yaml

from strategyforge.backtest.config import (
    BacktestConfig,
    SynthConfig,
    expand_parameter_grid,
    load_config_file,
)


class TestBacktestConfig:
    def test_defaults(self):
        cfg = BacktestConfig()
        assert cfg.initial_capital == 10_000.0
        assert cfg.position_size == 0.1
        assert cfg.slippage == 0.001
        assert cfg.commission == 0.001
        assert cfg.lookback_window == 200
        assert cfg.apply_costs is True

    def test_from_dict_camel_case(self):
        cfg = BacktestConfig.from_dict(
            {"initialCapital": 5000, "positionSize": 0.5, "lookbackWindow": 50, "applyCosts": "false"}
        )
        assert cfg.initial_capital == 5000.0
        assert cfg.position_size == 0.5
        assert cfg.lookback_window == 50
        assert cfg.apply_costs is False

    def test_from_dict_none(self):
        assert BacktestConfig.from_dict(None) == BacktestConfig()

    def test_effective_costs(self):
        cfg = BacktestConfig(slippage=0.002, commission=0.003)
        assert (cfg.effective_slippage, cfg.effective_commission) == (0.002, 0.003)
        off = BacktestConfig(slippage=0.002, commission=0.003, apply_costs=False)
        assert (off.effective_slippage, off.effective_commission) == (0.0, 0.0)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_capital": 0},
            {"position_size": 0.0},
            {"position_size": 1.5},
            {"slippage": -0.1},
            {"commission": -0.1},
            {"lookback_window": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            BacktestConfig(**kwargs)

    def test_round_trip(self):
        cfg = BacktestConfig(initial_capital=2500, metadata={"synth": {"base_price": 100}})
        assert BacktestConfig.from_dict(cfg.to_dict()) == cfg

    def test_with_overrides(self):
        cfg = BacktestConfig().with_overrides({"positionSize": 0.25, "metadata.synth.base_price": 3000})
        assert cfg.position_size == 0.25
        assert cfg.metadata["synth"]["base_price"] == 3000
        assert cfg.metadata["overrides"] == {"positionSize": 0.25, "metadata.synth.base_price": 3000}

    def test_overrides_inplace(self):
        cfg = BacktestConfig()
        cfg.apply_overrides_inplace({"commission": 0.0})
        assert cfg.commission == 0.0


class TestSynthConfig:
    def test_defaults(self):
        cfg = SynthConfig()
        assert cfg.base_price == 50_000.0
        assert cfg.start_time == 1_700_000_000_000
        assert cfg.interval_ms == 3_600_000

    def test_camel_case_and_clamp(self):
        cfg = SynthConfig.from_dict({"basePrice": 100, "intervalMs": 60_000, "noiseScale": -2})
        assert cfg.base_price == 100.0
        assert cfg.interval_ms == 60_000
        assert cfg.noise_scale == 0.0


class TestLoadConfigFile:
    def test_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(yaml.safe_dump({"backtest": {"initial_capital": 1}}), encoding="utf-8")
        assert load_config_file(path) == {"backtest": {"initial_capital": 1}}

    def test_json(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"slippage": 0.0}), encoding="utf-8")
        assert load_config_file(path) == {"slippage": 0.0}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config_file(path) == {}

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config_file(path)


class TestParameterGrid:
    def test_empty_grid_yields_base(self):
        base = BacktestConfig()
        assert list(expand_parameter_grid(base, {})) == [base]

    def test_product(self):
        configs = list(
            expand_parameter_grid(BacktestConfig(), {"position_size": [0.1, 0.2], "slippage": [0.0, 0.001]})
        )
        assert len(configs) == 4
        assert [c.metadata["grid"]["index"] for c in configs] == [0, 1, 2, 3]
        assert configs[-1].position_size == 0.2
        assert configs[-1].slippage == 0.001
        assert configs[1].metadata["grid"]["overrides"] == {"position_size": 0.1, "slippage": 0.001}
