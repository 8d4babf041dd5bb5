"""Strategy graph types: node kinds, subtypes and their typed configuration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from ..backtest.components.records import SignalType


class GraphValidationError(ValueError):
    """Raised when a graph payload cannot be turned into typed nodes."""


class GraphCycleError(GraphValidationError):
    """Raised by a strict compiler when some nodes can never be scheduled."""

    def __init__(self, excluded: list[str]) -> None:
        super().__init__(f"Graph contains a cycle; unschedulable nodes: {excluded}")
        self.excluded = excluded


class NodeKind(str, Enum):
    SOURCE = "Source"
    LOGIC = "Logic"
    FILTER = "Filter"
    RESULT = "Result"


class LogicSubtype(str, Enum):
    RSI_GT_70 = "rsi_gt_70"
    RSI_LT_30 = "rsi_lt_30"
    PRICE_GT_MA200 = "price_gt_ma200"
    PRICE_LT_MA200 = "price_lt_ma200"
    VOLUME_SPIKE = "volume_spike"
    OI_INCREASE = "oi_increase"
    FUNDING_POSITIVE = "funding_positive"
    DIVERGENCE = "divergence"
    FUNDING_ANOMALY = "FundingAnomaly"
    ABSORPTION = "Absorption"
    INFLOW_DIVERGENCE = "InflowDivergence"
    THRESHOLD = "threshold"


class FilterSubtype(str, Enum):
    REGIME_CHECK = "RegimeCheck"


class Comparator(str, Enum):
    GT = ">"
    LT = "<"
    EQ = "=="
    GE = ">="
    LE = "<="

    def compare(self, left: float, right: float) -> bool:
        if self is Comparator.GT:
            return left > right
        if self is Comparator.LT:
            return left < right
        if self is Comparator.EQ:
            return left == right
        if self is Comparator.GE:
            return left >= right
        return left <= right


def _positive_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = int(data.get(key, default))
    if value < 1:
        raise GraphValidationError(f"{key} must be >= 1, got {value}")
    return value


# ─────────────────────────────── node configs ───────────────────────────────


@dataclass(frozen=True, slots=True)
class SourceConfig:
    symbol: str | None = None
    interval: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SourceConfig:
        symbol = data.get("symbol")
        interval = data.get("interval")
        return cls(
            symbol=str(symbol) if symbol else None,
            interval=str(interval) if interval else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"symbol": self.symbol, "interval": self.interval}


@dataclass(frozen=True, slots=True)
class RsiConfig:
    threshold: float
    period: int = 14

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, default_threshold: float) -> RsiConfig:
        return cls(
            threshold=float(data.get("threshold", default_threshold)),
            period=_positive_int(data, "period", 14),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"threshold": self.threshold, "period": self.period}


@dataclass(frozen=True, slots=True)
class MovingAverageConfig:
    period: int = 200

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MovingAverageConfig:
        return cls(period=_positive_int(data, "period", 200))

    def to_dict(self) -> dict[str, Any]:
        return {"period": self.period}


@dataclass(frozen=True, slots=True)
class VolumeSpikeConfig:
    lookback: int = 20
    multiplier: float = 2.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VolumeSpikeConfig:
        return cls(
            lookback=_positive_int(data, "lookback", 20),
            multiplier=float(data.get("multiplier", 2.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"lookback": self.lookback, "multiplier": self.multiplier}


@dataclass(frozen=True, slots=True)
class OpenInterestIncreaseConfig:
    ratio: float = 1.05

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OpenInterestIncreaseConfig:
        return cls(ratio=float(data.get("ratio", 1.05)))

    def to_dict(self) -> dict[str, Any]:
        return {"ratio": self.ratio}


@dataclass(frozen=True, slots=True)
class FundingPositiveConfig:
    threshold: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FundingPositiveConfig:
        return cls(threshold=float(data.get("threshold", 0.0)))

    def to_dict(self) -> dict[str, Any]:
        return {"threshold": self.threshold}


@dataclass(frozen=True, slots=True)
class DivergenceConfig:
    lookback: int = 5

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DivergenceConfig:
        return cls(lookback=_positive_int(data, "lookback", 5))

    def to_dict(self) -> dict[str, Any]:
        return {"lookback": self.lookback}


@dataclass(frozen=True, slots=True)
class FundingAnomalyConfig:
    min_price_change_pct: float = 1.0
    max_funding_rate: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FundingAnomalyConfig:
        return cls(
            min_price_change_pct=float(data.get("min_price_change_pct", 1.0)),
            max_funding_rate=float(data.get("max_funding_rate", 0.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_price_change_pct": self.min_price_change_pct,
            "max_funding_rate": self.max_funding_rate,
        }


@dataclass(frozen=True, slots=True)
class AbsorptionConfig:
    max_price_change_pct: float = 0.2
    min_oi_change_pct: float = 2.0
    volume_multiplier: float = 1.5
    lookback: int = 20

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AbsorptionConfig:
        return cls(
            max_price_change_pct=float(data.get("max_price_change_pct", 0.2)),
            min_oi_change_pct=float(data.get("min_oi_change_pct", 2.0)),
            volume_multiplier=float(data.get("volume_multiplier", 1.5)),
            lookback=_positive_int(data, "lookback", 20),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_price_change_pct": self.max_price_change_pct,
            "min_oi_change_pct": self.min_oi_change_pct,
            "volume_multiplier": self.volume_multiplier,
            "lookback": self.lookback,
        }


@dataclass(frozen=True, slots=True)
class InflowDivergenceConfig:
    max_price_change_pct: float = -0.5
    min_net_inflow: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InflowDivergenceConfig:
        return cls(
            max_price_change_pct=float(data.get("max_price_change_pct", -0.5)),
            min_net_inflow=float(data.get("min_net_inflow", 0.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_price_change_pct": self.max_price_change_pct,
            "min_net_inflow": self.min_net_inflow,
        }


@dataclass(frozen=True, slots=True)
class ThresholdConfig:
    operator: Comparator = Comparator.GT
    value: float = 50_000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ThresholdConfig:
        raw_op = data.get("operator", ">") or ">"
        try:
            operator = Comparator(str(raw_op).strip())
        except ValueError:
            raise GraphValidationError(f"Unknown comparator: {raw_op!r}") from None
        raw_value = data.get("value", 50_000.0)
        try:
            value = float(raw_value)
        except (TypeError, ValueError):
            raise GraphValidationError(f"Threshold value must be numeric, got {raw_value!r}") from None
        return cls(operator=operator, value=value)

    def to_dict(self) -> dict[str, Any]:
        return {"operator": self.operator.value, "value": self.value}


@dataclass(frozen=True, slots=True)
class RegimeCheckConfig:
    period: int = 14
    high_volatility_pct: float = 2.0
    low_volatility_pct: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RegimeCheckConfig:
        cfg = cls(
            period=_positive_int(data, "period", 14),
            high_volatility_pct=float(data.get("high_volatility_pct", 2.0)),
            low_volatility_pct=float(data.get("low_volatility_pct", 1.0)),
        )
        if cfg.low_volatility_pct > cfg.high_volatility_pct:
            raise GraphValidationError("low_volatility_pct cannot exceed high_volatility_pct")
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "high_volatility_pct": self.high_volatility_pct,
            "low_volatility_pct": self.low_volatility_pct,
        }


@dataclass(frozen=True, slots=True)
class ResultConfig:
    signal_type: SignalType = SignalType.BUY
    output_type: str = "signal"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResultConfig:
        raw = data.get("signal_type", data.get("signalType")) or SignalType.BUY.value
        try:
            signal_type = SignalType.parse(raw)
        except ValueError as exc:
            raise GraphValidationError(str(exc)) from None
        output_type = str(data.get("output_type", data.get("outputType", "signal")) or "signal")
        return cls(signal_type=signal_type, output_type=output_type)

    def to_dict(self) -> dict[str, Any]:
        return {"signal_type": self.signal_type.value, "output_type": self.output_type}


NodeConfig = Union[
    SourceConfig,
    RsiConfig,
    MovingAverageConfig,
    VolumeSpikeConfig,
    OpenInterestIncreaseConfig,
    FundingPositiveConfig,
    DivergenceConfig,
    FundingAnomalyConfig,
    AbsorptionConfig,
    InflowDivergenceConfig,
    ThresholdConfig,
    RegimeCheckConfig,
    ResultConfig,
]


def build_logic_config(subtype: LogicSubtype, data: Mapping[str, Any]) -> NodeConfig:
    if subtype is LogicSubtype.RSI_GT_70:
        return RsiConfig.from_dict(data, default_threshold=70.0)
    if subtype is LogicSubtype.RSI_LT_30:
        return RsiConfig.from_dict(data, default_threshold=30.0)
    if subtype in (LogicSubtype.PRICE_GT_MA200, LogicSubtype.PRICE_LT_MA200):
        return MovingAverageConfig.from_dict(data)
    if subtype is LogicSubtype.VOLUME_SPIKE:
        return VolumeSpikeConfig.from_dict(data)
    if subtype is LogicSubtype.OI_INCREASE:
        return OpenInterestIncreaseConfig.from_dict(data)
    if subtype is LogicSubtype.FUNDING_POSITIVE:
        return FundingPositiveConfig.from_dict(data)
    if subtype is LogicSubtype.DIVERGENCE:
        return DivergenceConfig.from_dict(data)
    if subtype is LogicSubtype.FUNDING_ANOMALY:
        return FundingAnomalyConfig.from_dict(data)
    if subtype is LogicSubtype.ABSORPTION:
        return AbsorptionConfig.from_dict(data)
    if subtype is LogicSubtype.INFLOW_DIVERGENCE:
        return InflowDivergenceConfig.from_dict(data)
    return ThresholdConfig.from_dict(data)


def build_config(kind: NodeKind, subtype: str, data: Mapping[str, Any]) -> NodeConfig:
    try:
        if kind is NodeKind.SOURCE:
            return SourceConfig.from_dict(data)
        if kind is NodeKind.LOGIC:
            return build_logic_config(LogicSubtype(subtype), data)
        if kind is NodeKind.FILTER:
            return RegimeCheckConfig.from_dict(data)
        return ResultConfig.from_dict(data)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, GraphValidationError):
            raise
        raise GraphValidationError(f"Invalid {kind.value}/{subtype} config: {exc}") from exc


@dataclass(frozen=True, slots=True)
class Node:
    id: str
    kind: NodeKind
    subtype: str
    config: NodeConfig = field(default_factory=SourceConfig)
    label: str | None = None

    @classmethod
    def create(
        cls,
        node_id: str,
        kind: NodeKind | str,
        subtype: str | Enum | None = None,
        config: Mapping[str, Any] | None = None,
        label: str | None = None,
    ) -> Node:
        """Validate tags and build the typed config for one node."""
        try:
            kind = NodeKind(kind)
        except ValueError:
            by_name = NodeKind.__members__.get(str(kind).strip().upper())
            if by_name is None:
                raise GraphValidationError(f"Unknown node kind: {kind!r}") from None
            kind = by_name
        subtype_text = _default_subtype(kind) if subtype is None else str(getattr(subtype, "value", subtype))
        _check_subtype(kind, subtype_text)
        return cls(
            id=str(node_id),
            kind=kind,
            subtype=subtype_text,
            config=build_config(kind, subtype_text, config or {}),
            label=label,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "subtype": self.subtype,
            "config": self.config.to_dict(),
        }
        if self.label:
            payload["label"] = self.label
        return payload


@dataclass(frozen=True, slots=True)
class Edge:
    source: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "target": self.target}


def _default_subtype(kind: NodeKind) -> str:
    return {
        NodeKind.SOURCE: "price",
        NodeKind.LOGIC: LogicSubtype.THRESHOLD.value,
        NodeKind.FILTER: FilterSubtype.REGIME_CHECK.value,
        NodeKind.RESULT: "signal",
    }[kind]


def _check_subtype(kind: NodeKind, subtype: str) -> None:
    if kind is NodeKind.LOGIC:
        allowed = {member.value for member in LogicSubtype}
    elif kind is NodeKind.FILTER:
        allowed = {member.value for member in FilterSubtype}
    else:
        return
    if subtype not in allowed:
        raise GraphValidationError(f"Unknown {kind.value} subtype: {subtype!r}")


__all__ = [
    "AbsorptionConfig",
    "Comparator",
    "DivergenceConfig",
    "Edge",
    "FilterSubtype",
    "FundingAnomalyConfig",
    "FundingPositiveConfig",
    "GraphCycleError",
    "GraphValidationError",
    "InflowDivergenceConfig",
    "LogicSubtype",
    "MovingAverageConfig",
    "Node",
    "NodeConfig",
    "NodeKind",
    "OpenInterestIncreaseConfig",
    "RegimeCheckConfig",
    "ResultConfig",
    "RsiConfig",
    "SourceConfig",
    "ThresholdConfig",
    "VolumeSpikeConfig",
    "build_config",
]
