from __future__ import annotations

import math
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pygame.math import Vector2

from .agent import Agent
from .params import ParameterTable
from .rng import DeterministicRng
from .spatial_grid import Neighbor, SpatialGrid
from ..utils.math2d import _clamp_value, _heading_from_xy, _reflect, _torus_delta, _wrap


class BoundaryPolicy(str, Enum):
    NONE = "none"
    WRAP = "wrap"
    BOUNCE = "bounce"


class Environment:
    """The mutable world: bounds, live agents, parameters and the spatial index.

    Removal during a tick only clears ``Agent.alive``; dead agents leave the
    collection and queued births join it in :meth:`finish_tick`.
    """

    def __init__(
        self,
        width: float,
        height: float,
        wraparound: bool,
        rng: DeterministicRng,
        parameters: ParameterTable | None = None,
        cell_size: float = 25.0,
        max_population: int = 10_000,
    ) -> None:
        self.width = width
        self.height = height
        self.wraparound = wraparound
        self.rng = rng
        self.parameters = parameters if parameters is not None else ParameterTable()
        self.max_population = max_population
        self._cell_size = cell_size
        self._agents: List[Agent] = []
        self._birth_queue: List[Agent] = []
        self._grids: Dict[str, SpatialGrid] = {}
        self._next_id = 0
        self._drift = 0.0

    @property
    def agents(self) -> List[Agent]:
        return self._agents

    @property
    def pending_births(self) -> List[Agent]:
        return self._birth_queue

    @property
    def agent_count(self) -> int:
        return sum(1 for agent in self._agents if agent.alive)

    def counts_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for agent in self._agents:
            if agent.alive:
                counts[agent.type_id] = counts.get(agent.type_id, 0) + 1
        return counts

    def allocate_id(self) -> int:
        agent_id = self._next_id
        self._next_id += 1
        return agent_id

    def add_agent(self, agent: Agent) -> None:
        self._agents.append(agent)

    def can_spawn(self) -> bool:
        return len(self._agents) + len(self._birth_queue) < self.max_population

    def spawn(self, agent: Agent) -> bool:
        if not self.can_spawn():
            return False
        self._birth_queue.append(agent)
        return True

    def remove_agent(self, agent: Agent) -> bool:
        if not agent.alive:
            return False
        agent.alive = False
        return True

    def clear(self) -> None:
        self._agents.clear()
        self._birth_queue.clear()
        for grid in self._grids.values():
            grid.clear()
        self._next_id = 0
        self._drift = 0.0

    def finish_tick(self) -> Tuple[List[Agent], int]:
        """Drop dead agents and admit queued births; returns (born, deaths).

        A queued child removed before admission never existed, so it counts
        as neither a birth nor a death.
        """
        survivors = []
        deaths = 0
        for agent in self._agents:
            if agent.alive:
                survivors.append(agent)
            else:
                deaths += 1
        born = [agent for agent in self._birth_queue if agent.alive]
        survivors.extend(born)
        self._agents = survivors
        self._birth_queue.clear()
        return born, deaths

    def rebuild_index(self) -> None:
        for grid in self._grids.values():
            grid.clear()
        for agent in self._agents:
            if agent.alive:
                self._grid(agent.type_id).insert(agent)
        self._drift = 0.0

    def offset(self, origin: Vector2, target: Vector2) -> Tuple[float, float]:
        dx = target.x - origin.x
        dy = target.y - origin.y
        if self.wraparound:
            dx = _torus_delta(dx, self.width)
            dy = _torus_delta(dy, self.height)
        return dx, dy

    def nearest(self, agent: Agent, type_id: str) -> Optional[Neighbor]:
        grid = self._grids.get(type_id)
        if grid is None:
            return None
        return grid.nearest(agent.position, exclude_id=agent.id, slack=self._drift)

    def neighbors(self, agent: Agent, type_id: str, radius: float) -> List[Neighbor]:
        out: List[Neighbor] = []
        grid = self._grids.get(type_id)
        if grid is not None:
            grid.collect_neighbors(agent.position, radius, out, exclude_id=agent.id, slack=self._drift)
        return out

    def move_agent(self, agent: Agent, dx: float, dy: float, policy: BoundaryPolicy) -> None:
        position = agent.position
        x = position.x + dx
        y = position.y + dy
        if policy is BoundaryPolicy.BOUNCE:
            velocity = agent.velocity
            x, y, vx, vy = _reflect(x, y, velocity.x, velocity.y, self.width, self.height)
            velocity.update(vx, vy)
        elif policy is BoundaryPolicy.WRAP:
            x = _wrap(x, self.width)
            y = _wrap(y, self.height)
        position.update(x, y)
        heading = _heading_from_xy(dx, dy)
        if heading is not None:
            agent.heading = heading
        distance = math.hypot(dx, dy)
        if distance > self._drift:
            self._drift = distance

    def place(self, x: float, y: float) -> Vector2:
        """Bring a freshly created agent's position inside the world."""
        if self.wraparound:
            return Vector2(_wrap(x, self.width), _wrap(y, self.height))
        return Vector2(_clamp_value(x, 0.0, self.width), _clamp_value(y, 0.0, self.height))

    def live_agents(self, type_id: str | None = None) -> Iterable[Agent]:
        for agent in self._agents:
            if agent.alive and (type_id is None or agent.type_id == type_id):
                yield agent

    def _grid(self, type_id: str) -> SpatialGrid:
        grid = self._grids.get(type_id)
        if grid is None:
            grid = SpatialGrid(self._cell_size, self.width, self.height, self.wraparound)
            self._grids[type_id] = grid
        return grid
