from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(slots=True)
class TickMetrics:
    tick: int
    population: int
    births: int
    deaths: int
    counts_by_type: Dict[str, int] = field(default_factory=dict)
    tick_duration_ms: float = 0.0
