"""Model compiler: validates a Model and lowers it into runnable pieces.

Compilation never touches an Environment. Everything that can be rejected
is rejected here, so a failed compile leaves a running simulation alone.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from pygame.math import Vector2

from ...config import EngineConfig
from ..core.agent import Agent, AgentVisual, PropertyBag, TickFunction
from ..core.environment import BoundaryPolicy, Environment
from ..core.errors import CompileError, ConfigurationError
from ..core.params import Literal, NumberResolver, number_resolver
from ..core.rng import DeterministicRng
from ..model.types import AgentType, Model, Parameter, Population, PropertyDef, Visualization
from ..utils.math2d import _clamp_value
from .behaviors import CompileContext, Step, compile_behavior, compose_tick_function
from .library import MOTION_CATEGORIES, get_behavior_def

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_SPEED = 2.0
DISTRIBUTIONS = ("random", "grid", "cluster", "custom")


@dataclass(frozen=True)
class CompiledAgentType:
    type_id: str
    name: str
    tick_fn: TickFunction
    visual: AgentVisual
    properties: Tuple[PropertyDef, ...]
    policy: BoundaryPolicy
    # None when the type has no enabled movement or flocking behavior
    initial_speed: Optional[NumberResolver]


@dataclass(frozen=True)
class CompiledModel:
    width: float
    height: float
    wraparound: bool
    background_color: str
    agent_types: Dict[str, CompiledAgentType]
    populations: Tuple[Population, ...]
    parameters: Tuple[Parameter, ...]
    visualizations: Tuple[Visualization, ...]

    @property
    def tick_fns(self) -> Dict[str, TickFunction]:
        return {type_id: compiled.tick_fn for type_id, compiled in self.agent_types.items()}

    def visual(self, type_id: str) -> Optional[AgentVisual]:
        compiled = self.agent_types.get(type_id)
        return compiled.visual if compiled is not None else None

    def apply_visual(self, agent: Agent) -> None:
        agent.visual = self.visual(agent.type_id)

    def setup(self, environment: Environment, rng: DeterministicRng) -> None:
        """Create every population's agents; positions and headings come from ``rng``."""
        for population in self.populations:
            compiled = self.agent_types[population.agent_type_id]
            positions = _positions(population, self.width, self.height, rng)
            for x, y in positions:
                velocity = Vector2()
                heading = 0.0
                if compiled.initial_speed is not None:
                    heading = rng.next_angle()
                    speed = compiled.initial_speed(environment.parameters)
                    velocity = Vector2(math.cos(heading) * speed, math.sin(heading) * speed)
                environment.add_agent(
                    Agent(
                        id=environment.allocate_id(),
                        type_id=compiled.type_id,
                        position=environment.place(x, y),
                        velocity=velocity,
                        heading=heading,
                        properties=PropertyBag.from_defaults(compiled.properties),
                        tick_fn=compiled.tick_fn,
                        visual=compiled.visual,
                    )
                )


def compile_model(model: Model, config: EngineConfig | None = None) -> CompiledModel:
    """Validate ``model`` and lower it.

    Raises ``ConfigurationError`` when there is nothing to simulate and
    ``CompileError`` for the first invalid descriptor found.
    """
    config = config or EngineConfig()
    if not model.agent_types or not model.populations:
        raise ConfigurationError(
            f"model {model.name!r} needs at least one agent type and one population "
            f"(has {len(model.agent_types)} types, {len(model.populations)} populations)"
        )

    bounds = model.environment
    if not all(math.isfinite(extent) and extent > 0 for extent in (bounds.width, bounds.height)):
        raise CompileError(f"environment must have a positive size, got {bounds.width} x {bounds.height}")

    _check_parameters(model.parameters)
    type_ids = frozenset(agent_type.id for agent_type in model.agent_types)
    agent_types: Dict[str, CompiledAgentType] = {}
    for agent_type in model.agent_types:
        context = CompileContext(agent_type, type_ids, config.reproduce_offset)
        agent_types[agent_type.id] = _compile_agent_type(agent_type, context, model.environment.wraparound)

    populations: List[Population] = []
    for population in model.populations:
        if population.count < 0:
            raise CompileError(
                f"population {population.id!r} has a negative count ({population.count})",
                agent_type_id=population.agent_type_id,
            )
        if population.agent_type_id not in agent_types:
            logger.warning(
                "population %r references unknown agent type %r; skipping it",
                population.id,
                population.agent_type_id,
            )
            continue
        if population.distribution not in DISTRIBUTIONS:
            logger.warning(
                "population %r has unknown distribution %r; placing agents at random",
                population.id,
                population.distribution,
            )
        populations.append(population)

    environment = model.environment
    compiled = CompiledModel(
        width=environment.width,
        height=environment.height,
        wraparound=environment.wraparound,
        background_color=environment.background_color or config.default_background,
        agent_types=agent_types,
        populations=tuple(populations),
        parameters=tuple(model.parameters),
        visualizations=tuple(model.visualizations),
    )
    logger.debug(
        "compiled model %r: %d agent types, %d populations",
        model.name,
        len(agent_types),
        len(populations),
    )
    return compiled


def agent_visual(agent_type: AgentType) -> AgentVisual:
    if agent_type.shape == "square":
        return AgentVisual(agent_type.color, "rect", agent_type.size, agent_type.size, agent_type.size)
    return AgentVisual(agent_type.color, agent_type.shape, agent_type.size)


def _check_parameters(parameters: Sequence[Parameter]) -> None:
    seen = set()
    for parameter in parameters:
        if parameter.name in seen:
            raise CompileError(f"duplicate parameter name {parameter.name!r}")
        seen.add(parameter.name)


def _compile_agent_type(agent_type: AgentType, context: CompileContext, wraparound: bool) -> CompiledAgentType:
    steps: List[Step] = []
    bounce = False
    moves = False
    initial_speed: Optional[NumberResolver] = None
    for behavior in agent_type.behaviors:
        if not behavior.enabled:
            continue
        step = compile_behavior(behavior, context)
        if step is not None:
            steps.append(step)
        definition = get_behavior_def(behavior.type)
        if behavior.type == "bounce":
            bounce = True
        if definition.category in MOTION_CATEGORIES:
            moves = True
        if initial_speed is None and definition.default("speed") is not None:
            initial_speed = number_resolver(behavior.param("speed") or Literal(None), DEFAULT_INITIAL_SPEED)

    if bounce:
        policy = BoundaryPolicy.BOUNCE
    elif wraparound:
        policy = BoundaryPolicy.WRAP
    else:
        policy = BoundaryPolicy.NONE

    if moves and initial_speed is None:
        initial_speed = number_resolver(Literal(None), DEFAULT_INITIAL_SPEED)
    return CompiledAgentType(
        type_id=agent_type.id,
        name=agent_type.name,
        tick_fn=compose_tick_function(steps, policy),
        visual=agent_visual(agent_type),
        properties=tuple(agent_type.properties),
        policy=policy,
        initial_speed=initial_speed if moves else None,
    )


def _positions(
    population: Population, width: float, height: float, rng: DeterministicRng
) -> List[Tuple[float, float]]:
    region = population.region
    if region is not None:
        left, top, area_w, area_h = region.x, region.y, region.width, region.height
    else:
        left, top, area_w, area_h = 0.0, 0.0, width, height
    count = population.count

    if population.distribution == "grid":
        return _grid_positions(count, left, top, area_w, area_h)
    if population.distribution == "cluster":
        center_x = left + area_w * 0.5
        center_y = top + area_h * 0.5
        spread = min(area_w, area_h) / 6.0
        return [
            (
                _clamp_value(rng.next_gauss(center_x, spread), 0.0, width),
                _clamp_value(rng.next_gauss(center_y, spread), 0.0, height),
            )
            for _ in range(count)
        ]
    return [(left + rng.next_float() * area_w, top + rng.next_float() * area_h) for _ in range(count)]


def _grid_positions(count: int, left: float, top: float, width: float, height: float) -> List[Tuple[float, float]]:
    if count <= 0:
        return []
    aspect = width / height if height > 0 else 1.0
    cols = max(1, math.ceil(math.sqrt(count * aspect)))
    rows = max(1, math.ceil(count / cols))
    cell_w = width / cols
    cell_h = height / rows
    return [(left + (index % cols + 0.5) * cell_w, top + (index // cols + 0.5) * cell_h) for index in range(count)]
