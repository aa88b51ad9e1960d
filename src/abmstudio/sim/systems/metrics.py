from __future__ import annotations

import logging
import statistics
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ..core.environment import Environment
from ..model.types import MetricConfig, Visualization
from ..types.metrics import TickMetrics

logger = logging.getLogger(__name__)

MetricFunction = Callable[[Environment], float]

AGGREGATIONS: Dict[str, Callable[[List[float]], float]] = {
    "mean": statistics.fmean,
    "min": min,
    "max": max,
    "sum": sum,
    "median": statistics.median,
}


def create_metrics(
    tick: int,
    births: int,
    deaths: int,
    duration_ms: float,
    counts_by_type: Dict[str, int],
) -> TickMetrics:
    return TickMetrics(
        tick=tick,
        population=sum(counts_by_type.values()),
        births=births,
        deaths=deaths,
        counts_by_type=dict(counts_by_type),
        tick_duration_ms=duration_ms,
    )


def aggregate(values: Sequence[float], aggregation: str) -> float:
    """Reduce property values; an empty selection aggregates to 0."""
    if not values:
        return 0.0
    return float(AGGREGATIONS[aggregation](list(values)))


def property_values(environment: Environment, type_id: str, name: str) -> List[float]:
    values = []
    for agent in environment.live_agents(type_id):
        value = agent.properties.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            values.append(value)
    return values


def metric_function(metric: MetricConfig) -> Optional[MetricFunction]:
    """Compile a series metric; ``None`` when the metric cannot be evaluated."""
    type_id = metric.agent_type_id
    if metric.type == "count":
        return lambda environment: float(sum(1 for _ in environment.live_agents(type_id)))
    if metric.type == "property" and metric.property and metric.aggregation in AGGREGATIONS:
        name = metric.property
        aggregation = metric.aggregation
        return lambda environment: aggregate(property_values(environment, type_id, name), aggregation)
    return None


class ChartSeriesTracker:
    """Current value and bounded history of every enabled line-chart series."""

    def __init__(self, history_length: int = 500) -> None:
        self._history_length = max(1, history_length)
        self._functions: List[Tuple[str, str, MetricFunction]] = []
        self._values: Dict[str, Dict[str, float]] = {}
        self._history: Dict[Tuple[str, str], Deque[Tuple[int, float]]] = {}

    def configure(self, visualizations: Sequence[Visualization]) -> None:
        self._functions = []
        self._values = {}
        self._history = {}
        for visualization in visualizations:
            if not visualization.enabled or visualization.type != "line-chart":
                continue
            for series in visualization.series:
                function = metric_function(series.metric)
                if function is None:
                    logger.warning(
                        "chart series %r of %r has an unsupported metric %r; skipping it",
                        series.id,
                        visualization.id,
                        series.metric.key(),
                    )
                    continue
                self._functions.append((visualization.id, series.id, function))
                self._history[(visualization.id, series.id)] = deque(maxlen=self._history_length)

    def clear_history(self) -> None:
        for history in self._history.values():
            history.clear()

    def update(self, environment: Environment, tick: int) -> None:
        values: Dict[str, Dict[str, float]] = {}
        for viz_id, series_id, function in self._functions:
            value = function(environment)
            values.setdefault(viz_id, {})[series_id] = value
            self._history[(viz_id, series_id)].append((tick, value))
        self._values = values

    def value(self, viz_id: str, series_id: str) -> float:
        return self._values.get(viz_id, {}).get(series_id, 0.0)

    def history(self, viz_id: str, series_id: str) -> List[Tuple[int, float]]:
        return list(self._history.get((viz_id, series_id), ()))

    def values(self) -> Dict[str, Dict[str, float]]:
        return {viz_id: dict(series) for viz_id, series in self._values.items()}
