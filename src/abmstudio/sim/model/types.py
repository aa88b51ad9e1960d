from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.params import ParamValue, as_param_value


def _get(raw: dict, camel: str, snake: str | None = None, default: Any = None) -> Any:
    """Read a key in the persisted camelCase shape, accepting snake_case too."""
    if camel in raw:
        return raw[camel]
    if snake is not None and snake in raw:
        return raw[snake]
    return default


@dataclass
class EnvironmentSpec:
    width: float = 800.0
    height: float = 800.0
    wraparound: bool = True
    background_color: Optional[str] = None

    @staticmethod
    def from_dict(raw: dict) -> "EnvironmentSpec":
        return EnvironmentSpec(
            width=float(raw.get("width", 800.0)),
            height=float(raw.get("height", 800.0)),
            wraparound=bool(raw.get("wraparound", True)),
            background_color=_get(raw, "backgroundColor", "background_color"),
        )


@dataclass
class PropertyDef:
    name: str
    type: str = "number"
    default_value: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    id: str = ""

    @staticmethod
    def from_dict(raw: dict) -> "PropertyDef":
        return PropertyDef(
            id=str(raw.get("id", "")),
            name=raw["name"],
            type=raw.get("type", "number"),
            default_value=_get(raw, "defaultValue", "default_value"),
            min=raw.get("min"),
            max=raw.get("max"),
        )


@dataclass(frozen=True)
class Behavior:
    """One declarative rule of an agent type.

    ``params`` holds tagged values; raw values passed in (including ``"$name"``
    reference strings) are converted on construction.
    """

    type: str
    params: Dict[str, ParamValue] = field(default_factory=dict)
    enabled: bool = True
    id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", {key: as_param_value(value) for key, value in self.params.items()})

    def param(self, key: str) -> Optional[ParamValue]:
        return self.params.get(key)

    @staticmethod
    def from_dict(raw: dict) -> "Behavior":
        return Behavior(
            id=str(raw.get("id", "")),
            type=raw["type"],
            params=dict(raw.get("params") or {}),
            enabled=bool(raw.get("enabled", True)),
        )


@dataclass
class AgentType:
    id: str
    name: str = ""
    color: str = "#ffffff"
    shape: str = "circle"
    size: float = 5.0
    properties: List[PropertyDef] = field(default_factory=list)
    behaviors: List[Behavior] = field(default_factory=list)

    @staticmethod
    def from_dict(raw: dict) -> "AgentType":
        return AgentType(
            id=str(raw["id"]),
            name=raw.get("name", ""),
            color=raw.get("color", "#ffffff"),
            shape=raw.get("shape", "circle"),
            size=float(raw.get("size", 5.0)),
            properties=[PropertyDef.from_dict(item) for item in raw.get("properties") or []],
            behaviors=[Behavior.from_dict(item) for item in raw.get("behaviors") or []],
        )


@dataclass
class Region:
    x: float
    y: float
    width: float
    height: float


@dataclass
class Population:
    agent_type_id: str
    count: int
    distribution: str = "random"
    region: Optional[Region] = None
    id: str = ""

    @staticmethod
    def from_dict(raw: dict) -> "Population":
        region_raw = raw.get("region")
        region = None
        if region_raw:
            region = Region(
                x=float(region_raw.get("x", 0.0)),
                y=float(region_raw.get("y", 0.0)),
                width=float(region_raw["width"]),
                height=float(region_raw["height"]),
            )
        return Population(
            id=str(raw.get("id", "")),
            agent_type_id=str(_get(raw, "agentTypeId", "agent_type_id")),
            count=int(raw.get("count", 0)),
            distribution=raw.get("distribution", "random"),
            region=region,
        )


@dataclass
class Parameter:
    name: str
    value: Any
    type: str = "number"
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    options: List[str] = field(default_factory=list)
    id: str = ""

    @staticmethod
    def from_dict(raw: dict) -> "Parameter":
        return Parameter(
            id=str(raw.get("id", "")),
            name=raw["name"],
            type=raw.get("type", "number"),
            value=raw.get("value"),
            min=raw.get("min"),
            max=raw.get("max"),
            step=raw.get("step"),
            options=list(raw.get("options") or []),
        )


@dataclass
class MetricConfig:
    type: str = "count"
    agent_type_id: str = ""
    property: Optional[str] = None
    aggregation: Optional[str] = None

    @staticmethod
    def from_dict(raw: dict) -> "MetricConfig":
        return MetricConfig(
            type=raw.get("type", "count"),
            agent_type_id=str(_get(raw, "agentTypeId", "agent_type_id", "")),
            property=raw.get("property"),
            aggregation=raw.get("aggregation"),
        )

    def key(self) -> str:
        if self.type == "count":
            return f"count:{self.agent_type_id}"
        return f"{self.aggregation}:{self.agent_type_id}:{self.property}"


@dataclass
class ChartSeries:
    id: str
    metric: MetricConfig
    name: str = ""
    color: str = "#000000"

    @staticmethod
    def from_dict(raw: dict) -> "ChartSeries":
        return ChartSeries(
            id=str(raw["id"]),
            name=raw.get("name", ""),
            color=raw.get("color", "#000000"),
            metric=MetricConfig.from_dict(raw.get("metric") or {}),
        )


@dataclass
class VisualizationOptions:
    auto_scale: bool = True
    auto_scroll: bool = True
    range: tuple[float, float] = (0.0, 100.0)

    @staticmethod
    def from_dict(raw: dict) -> "VisualizationOptions":
        range_raw = raw.get("range") or {}
        return VisualizationOptions(
            auto_scale=bool(_get(raw, "autoScale", "auto_scale", True)),
            auto_scroll=bool(_get(raw, "autoScroll", "auto_scroll", True)),
            range=(float(range_raw.get("min", 0.0)), float(range_raw.get("max", 100.0))),
        )


@dataclass
class Visualization:
    id: str
    name: str = ""
    type: str = "line-chart"
    enabled: bool = True
    series: List[ChartSeries] = field(default_factory=list)
    options: VisualizationOptions = field(default_factory=VisualizationOptions)

    @staticmethod
    def from_dict(raw: dict) -> "Visualization":
        return Visualization(
            id=str(raw["id"]),
            name=raw.get("name", ""),
            type=raw.get("type", "line-chart"),
            enabled=bool(raw.get("enabled", True)),
            series=[ChartSeries.from_dict(item) for item in raw.get("series") or []],
            options=VisualizationOptions.from_dict(raw.get("options") or {}),
        )


@dataclass
class Model:
    id: str = ""
    name: str = "Untitled Model"
    environment: EnvironmentSpec = field(default_factory=EnvironmentSpec)
    agent_types: List[AgentType] = field(default_factory=list)
    populations: List[Population] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    visualizations: List[Visualization] = field(default_factory=list)
    description: str = ""
    tags: List[str] = field(default_factory=list)

    @staticmethod
    def from_dict(raw: dict) -> "Model":
        return Model(
            id=str(raw.get("id", "")),
            name=raw.get("name", "Untitled Model"),
            description=raw.get("description") or "",
            environment=EnvironmentSpec.from_dict(raw.get("environment") or {}),
            agent_types=[AgentType.from_dict(item) for item in _get(raw, "agentTypes", "agent_types", [])],
            populations=[Population.from_dict(item) for item in raw.get("populations") or []],
            parameters=[Parameter.from_dict(item) for item in raw.get("parameters") or []],
            visualizations=[Visualization.from_dict(item) for item in raw.get("visualizations") or []],
            tags=list(raw.get("tags") or []),
        )
