from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import pandas as pd

from ..backtest.components.records import Candle

__all__ = ["candles_from_frame", "candles_to_frame", "load_candles", "save_candles"]

_COLUMN_ALIASES = {
    "time": "timestamp",
    "datetime": "timestamp",
    "quoteVolume": "quote_volume",
    "openInterest": "open_interest",
    "fundingRate": "funding_rate",
    "netInflow": "net_inflow",
    "longShortRatio": "long_short_ratio",
    "liquidationLong": "liquidation_long",
    "liquidationShort": "liquidation_short",
    "spotOpen": "spot_open",
    "spotClose": "spot_close",
    "spotVolume": "spot_volume",
}

_SPOT_COLUMNS = {"spot_open": "open", "spot_close": "close", "spot_volume": "volume"}


def _to_epoch_ms(column: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(column):
        return column.astype("int64")
    stamps = pd.to_datetime(column, utc=True)
    return (stamps - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """Convert a flat OHLCV frame into candles.

    The timestamp may be a column or the index, as epoch milliseconds or
    anything ``pd.to_datetime`` understands. Metric and ``spot_*`` columns are
    optional; missing cells become absent fields.
    """
    if df.empty:
        return []
    frame = df.rename(columns=_COLUMN_ALIASES)
    if "timestamp" not in frame.columns:
        frame = frame.reset_index().rename(columns={frame.index.name or "index": "timestamp"})
        frame = frame.rename(columns=_COLUMN_ALIASES)
    missing = {"timestamp", "open", "high", "low", "close"} - set(frame.columns)
    if missing:
        raise KeyError(f"Candle frame is missing columns: {sorted(missing)}")
    frame = frame.copy()
    frame["timestamp"] = _to_epoch_ms(frame["timestamp"])
    frame = frame.astype(object).where(frame.notna(), None)

    candles: list[Candle] = []
    for row in frame.to_dict("records"):
        spot = {target: row.pop(col) for col, target in _SPOT_COLUMNS.items() if col in row}
        if spot and all(value is not None for value in spot.values()):
            row["spot_price"] = spot
        if row.get("volume") is None:
            row["volume"] = 0.0
        candles.append(Candle.from_dict(row))
    return candles


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    rows: list[dict[str, Any]] = []
    for candle in candles:
        row: dict[str, Any] = {
            "timestamp": candle.timestamp,
            "open": candle.open,
            "high": candle.high,
            "low": candle.low,
            "close": candle.close,
            "volume": candle.volume,
            "quote_volume": candle.quote_volume,
        }
        if candle.spot_price is not None:
            row.update({f"spot_{key}": value for key, value in candle.spot_price.to_dict().items()})
        if candle.metrics is not None:
            row.update(candle.metrics.to_dict())
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=["timestamp", "open", "high", "low", "close", "volume"])
    return pd.DataFrame(rows).dropna(axis=1, how="all")


def load_candles(path: Path) -> list[Candle]:
    """Read candles from CSV, or from JSON holding a list or ``{"candles": [...]}``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Candle file does not exist: {path}")
    if path.suffix.lower() == ".json":
        payload = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, Mapping):
            payload = payload.get("candles", payload.get("data", []))
        if not isinstance(payload, list):
            raise ValueError(f"Candle JSON must be a list of candles: {path}")
        return [Candle.from_dict(item) for item in payload]
    return candles_from_frame(pd.read_csv(path))


def save_candles(candles: Iterable[Candle], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        path.write_text(
            json.dumps([candle.to_dict() for candle in candles], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    else:
        candles_to_frame(candles).to_csv(path, index=False)
    return path
