"""Simulation parameters, config files and parameter sweeps.

``BacktestConfig`` accepts both the canvas' camelCase payload and the
snake_case keys used in YAML/JSON files. ``with_overrides`` applies
``key=value`` pairs from the command line and ``expand_parameter_grid``
turns a mapping of candidate values into a sequence of configs.
"""

from __future__ import annotations

import dataclasses
import itertools
import json
from collections.abc import Iterator, Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_INITIAL_CAPITAL = 10_000.0
DEFAULT_POSITION_SIZE = 0.1
DEFAULT_SLIPPAGE = 0.001
DEFAULT_COMMISSION = 0.001
DEFAULT_LOOKBACK_WINDOW = 200

_CAMEL_ALIASES = {
    "initialCapital": "initial_capital",
    "positionSize": "position_size",
    "lookbackWindow": "lookback_window",
    "applyCosts": "apply_costs",
    "basePrice": "base_price",
    "startTime": "start_time",
    "intervalMs": "interval_ms",
    "noiseScale": "noise_scale",
}


def _normalise_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_CAMEL_ALIASES.get(str(key), str(key)): value for key, value in data.items()}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(slots=True)
class BacktestConfig:
    initial_capital: float = DEFAULT_INITIAL_CAPITAL
    position_size: float = DEFAULT_POSITION_SIZE
    slippage: float = DEFAULT_SLIPPAGE
    commission: float = DEFAULT_COMMISSION
    lookback_window: int = DEFAULT_LOOKBACK_WINDOW
    apply_costs: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.initial_capital > 0:
            raise ValueError(f"initial_capital must be positive, got {self.initial_capital}")
        if not 0.0 < self.position_size <= 1.0:
            raise ValueError(f"position_size must be in (0, 1], got {self.position_size}")
        if self.slippage < 0 or self.commission < 0:
            raise ValueError("slippage and commission cannot be negative")
        if self.lookback_window < 1:
            raise ValueError(f"lookback_window must be >= 1, got {self.lookback_window}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BacktestConfig:
        data = _normalise_keys(data or {})
        return cls(
            initial_capital=float(data.get("initial_capital", DEFAULT_INITIAL_CAPITAL)),
            position_size=float(data.get("position_size", DEFAULT_POSITION_SIZE)),
            slippage=float(data.get("slippage", DEFAULT_SLIPPAGE)),
            commission=float(data.get("commission", DEFAULT_COMMISSION)),
            lookback_window=int(data.get("lookback_window", DEFAULT_LOOKBACK_WINDOW)),
            apply_costs=_to_bool(data.get("apply_costs", True)),
            metadata=dict(data.get("metadata", {}) or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_capital": self.initial_capital,
            "position_size": self.position_size,
            "slippage": self.slippage,
            "commission": self.commission,
            "lookback_window": self.lookback_window,
            "apply_costs": self.apply_costs,
            "metadata": dict(self.metadata),
        }

    @property
    def effective_slippage(self) -> float:
        return self.slippage if self.apply_costs else 0.0

    @property
    def effective_commission(self) -> float:
        return self.commission if self.apply_costs else 0.0

    def with_overrides(self, overrides: Mapping[str, Any]) -> BacktestConfig:
        """Copy of this config with ``overrides`` applied.

        Keys may be camelCase and may address nested metadata with dots,
        e.g. ``metadata.synth.base_price``. The raw overrides are recorded
        under ``metadata["overrides"]``.
        """
        values = self.to_dict()
        for dotted, value in overrides.items():
            _set_path(values, dotted.split("."), value)
        recorded = values.setdefault("metadata", {}).setdefault("overrides", {})
        recorded.update(overrides)
        return BacktestConfig.from_dict(values)

    def apply_overrides_inplace(self, overrides: Mapping[str, Any]) -> None:
        replacement = self.with_overrides(overrides)
        for item in dataclasses.fields(self):
            setattr(self, item.name, getattr(replacement, item.name))


def _set_path(values: MutableMapping[str, Any], path: list[str], value: Any) -> None:
    *parents, leaf = path
    node = values
    for key in parents:
        child = node.get(key)
        if not isinstance(child, MutableMapping):
            child = node[key] = {}
        node = child
    node[_CAMEL_ALIASES.get(leaf, leaf)] = value


@dataclass(slots=True)
class SynthConfig:
    """Shape of generated candle series."""

    base_price: float = 50_000.0
    start_time: int = 1_700_000_000_000
    interval_ms: int = 3_600_000
    noise_scale: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SynthConfig:
        data = _normalise_keys(data or {})
        return cls(
            base_price=float(data.get("base_price", 50_000.0)),
            start_time=int(data.get("start_time", 1_700_000_000_000)),
            interval_ms=int(data.get("interval_ms", 3_600_000)),
            noise_scale=max(0.0, float(data.get("noise_scale", 1.0))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_price": self.base_price,
            "start_time": self.start_time,
            "interval_ms": self.interval_ms,
            "noise_scale": self.noise_scale,
        }


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML or JSON mapping from ``path``."""
    text = Path(path).read_text(encoding="utf-8")
    if Path(path).suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return dict(data)


def expand_parameter_grid(
    base: BacktestConfig, grid: Mapping[str, Sequence[Any]]
) -> Iterator[BacktestConfig]:
    """Yield one config per point of the cartesian product of ``grid``.

    ``{"position_size": [0.1, 0.2], "slippage": [0.0, 0.001]}`` yields four
    configs. Each carries ``metadata["grid"] = {"index": i, "overrides": {...}}``.
    An empty grid yields ``base`` unchanged.
    """
    if not grid:
        yield base
        return

    names = list(grid)
    for index, point in enumerate(itertools.product(*(list(grid[name]) for name in names))):
        overrides = dict(zip(names, point))
        cfg = base.with_overrides(overrides)
        cfg.metadata = {**cfg.metadata, "grid": {"index": index, "overrides": overrides}}
        yield cfg


__all__ = [
    "BacktestConfig",
    "SynthConfig",
    "expand_parameter_grid",
    "load_config_file",
]
