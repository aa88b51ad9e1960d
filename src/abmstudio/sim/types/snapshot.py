from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .metrics import TickMetrics


@dataclass(slots=True)
class Snapshot:
    tick: int
    status: str
    metrics: TickMetrics
    agents: List["AgentSnapshot"]
    world: "SnapshotWorld"
    series: Dict[str, Dict[str, float]]


@dataclass(slots=True)
class AgentSnapshot:
    id: int
    type_id: str
    x: float
    y: float
    heading: float
    color: str
    shape: str
    size: float
    properties: Dict[str, Any]


@dataclass(slots=True)
class SnapshotWorld:
    width: float
    height: float
    wraparound: bool
    background_color: str
