"""Run a strategy graph over candles from a file or the synthesizer."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from ..analysis.report import generate_report
from ..data.candles import load_candles
from ..data.synthetic import MarketScenario, periodic, synthesize
from ..graph.loader import load_graph_file
from ..logging_config import configure_logging
from .components.records import Candle
from .config import BacktestConfig, SynthConfig, load_config_file
from .engine import SimulationEngine

logger = logging.getLogger("strategyforge.backtest.cli")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a strategy graph backtest")
    parser.add_argument("--graph", type=Path, required=True, help="Strategy graph JSON/YAML")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--candles", type=Path, help="Candle file (CSV or JSON)")
    source.add_argument(
        "--scenario",
        type=str,
        help="Synthetic regime: " + ", ".join(s.value for s in MarketScenario) + ", or PERIODIC",
    )
    parser.add_argument("--length", type=int, default=200, help="Synthetic candle count")
    parser.add_argument("--seed", type=int, default=None, help="Seed for synthetic noise")
    parser.add_argument("--config", type=Path, help="Backtest config JSON/YAML")
    parser.add_argument("--overrides", type=str, nargs="*", help="Override params, key=value")
    parser.add_argument("--out", type=Path, help="Write the result JSON here")
    parser.add_argument("--report", type=Path, help="Write the Markdown analysis report here")
    parser.add_argument("--log-file", type=Path, help="Run log output path")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return parser.parse_args(argv)


def _load_config(path: Path | None) -> BacktestConfig:
    if path is None:
        return BacktestConfig()
    data = load_config_file(path)
    return BacktestConfig.from_dict(data.get("backtest", data))


def _parse_value(raw: str) -> object:
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    return raw


def _apply_overrides(cfg: BacktestConfig, overrides: list[str]) -> BacktestConfig:
    parsed: dict[str, Any] = {}
    for item in overrides or []:
        if "=" not in item:
            raise ValueError(f"Invalid override format: {item}")
        key, value = item.split("=", 1)
        parsed[key] = _parse_value(value)
    return cfg.with_overrides(parsed) if parsed else cfg


def _configure_logging(args: argparse.Namespace) -> None:
    configure_logging(level="DEBUG" if args.verbose else None, log_file=args.log_file, force=True)


def _load_candles(args: argparse.Namespace, cfg: BacktestConfig) -> list[Candle]:
    if args.candles:
        return load_candles(args.candles)
    synth_cfg = SynthConfig.from_dict(cfg.metadata.get("synth"))
    name = (args.scenario or "PERIODIC").strip().upper()
    if name == "PERIODIC":
        return periodic(args.length, 20, synth_cfg.base_price, start_time=synth_cfg.start_time)
    return synthesize(name, args.length, synth_cfg, rng=np.random.default_rng(args.seed))


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args)
    cfg = _apply_overrides(_load_config(args.config), args.overrides or [])
    graph = load_graph_file(args.graph)
    candles = _load_candles(args, cfg)
    logger.info("Graph: %d nodes, %d edges", len(graph.nodes), len(graph.edges))
    logger.info("Candles: %d, initial capital %.2f", len(candles), cfg.initial_capital)

    start_time = time.perf_counter()
    result = SimulationEngine(cfg).run_graph(graph, candles)
    duration = time.perf_counter() - start_time
    logger.info(
        "Backtest done in %.3f s: %d signals, %d closed trades",
        duration,
        len(result.signals),
        len(result.trades),
    )
    logger.info("Total return %.2f%%", result.metrics.total_return)

    if args.out:
        payload = {
            "config": cfg.to_dict(),
            "duration_seconds": duration,
            "num_candles": len(candles),
            **result.to_dict(),
        }
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    if args.report:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        args.report.write_text(generate_report(result, candles), encoding="utf-8")
    return 0


if __name__ == "__main__":
    sys.exit(main())
