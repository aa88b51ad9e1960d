"""Lowering of behavior descriptors into update steps.

A step is a plain function ``step(agent, environment, motion)``. Steps of
one agent type run in declaration order; movement behaviors add to
``motion`` and the accumulated displacement is committed once, after the
last step, under the type's boundary policy. Parameter values are read
from ``environment.parameters`` every time a step runs.
"""

from __future__ import annotations

import logging
import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Sequence

from ..core.agent import Agent, TickFunction
from ..core.environment import BoundaryPolicy, Environment
from ..core.errors import CompileError
from ..core.params import (
    Literal,
    NumberResolver,
    ParamRef,
    ParamValue,
    ValueResolver,
    as_param_value,
    is_valid_param_name,
    number_resolver,
    to_raw,
    value_resolver,
)
from ..model.types import AgentType, Behavior
from ..utils.math2d import _rotate_xy, _scale_to_length_xy
from .library import ACTIONS, CONDITIONS, BehaviorDef, get_behavior_def

logger = logging.getLogger(__name__)


class Motion:
    __slots__ = ("dx", "dy")

    def __init__(self) -> None:
        self.dx = 0.0
        self.dy = 0.0


Step = Callable[[Agent, Environment, Motion], None]
Action = Callable[[Agent, Optional[Agent], Environment], None]

ALIGN_RATE = 0.1
COHERE_RATE = 0.01

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "neq": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


@dataclass(frozen=True)
class CompileContext:
    agent_type: AgentType
    agent_type_ids: FrozenSet[str]
    reproduce_offset: float = 5.0


class _BehaviorReader:
    """Validated access to one behavior's parameters during compilation."""

    def __init__(self, behavior: Behavior, definition: BehaviorDef, context: CompileContext) -> None:
        self.behavior = behavior
        self.definition = definition
        self.context = context

    def error(self, message: str) -> CompileError:
        return CompileError(
            f"{self.behavior.type}: {message}",
            agent_type_id=self.context.agent_type.id,
            behavior_id=self.behavior.id or None,
        )

    def _param(self, key: str, value: ParamValue | None = None) -> ParamValue:
        if value is None:
            value = self.behavior.param(key)
        if value is None:
            return Literal(None)
        if isinstance(value, ParamRef) and not is_valid_param_name(value.name):
            raise self.error(f"malformed parameter reference {to_raw(value)!r} for {key!r}")
        return value

    def number(self, key: str, value: ParamValue | None = None, default: float | None = None) -> NumberResolver:
        if default is None:
            default = self.definition.default(key)
        fallback = 0.0 if default is None else float(default)
        value = self._param(key, value)
        try:
            return number_resolver(value, fallback)
        except ValueError:
            raise self.error(f"parameter {key!r} must be a number, got {value.value!r}") from None

    def value(self, key: str, value: ParamValue | None = None) -> ValueResolver:
        value = self._param(key, value)
        return value_resolver(value, self.definition.default(key))

    def literal(self, key: str) -> Any:
        value = self._param(key)
        if isinstance(value, ParamRef):
            raise self.error(f"{key!r} cannot reference a parameter")
        if value.value is None:
            return self.definition.default(key)
        return value.value

    def required_text(self, key: str) -> str:
        text = self.literal(key)
        if not isinstance(text, str) or not text:
            raise self.error(f"{key!r} is required")
        return text

    def target(self) -> Optional[str]:
        target = self.literal("target")
        if target is None or target == "":
            return None
        target = str(target)
        if target not in self.context.agent_type_ids:
            raise self.error(f"target agent type {target!r} does not exist")
        return target


def compile_behavior(behavior: Behavior, context: CompileContext) -> Optional[Step]:
    """Lower one enabled behavior; ``None`` means it contributes no step."""
    definition = get_behavior_def(behavior.type)
    if definition is None:
        raise CompileError(
            f"Unknown behavior type: {behavior.type!r}",
            agent_type_id=context.agent_type.id,
            behavior_id=behavior.id or None,
        )
    return _FACTORIES[behavior.type](_BehaviorReader(behavior, definition, context))


def compose_tick_function(steps: Sequence[Step], policy: BoundaryPolicy) -> TickFunction:
    pipeline = tuple(steps)

    def tick(agent: Agent, environment: Environment) -> None:
        motion = Motion()
        for step in pipeline:
            step(agent, environment, motion)
            if not agent.alive:
                return
        if motion.dx or motion.dy:
            environment.move_agent(agent, motion.dx, motion.dy, policy)

    return tick


def _random_walk(reader: _BehaviorReader) -> Step:
    speed = reader.number("speed")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        angle = environment.rng.next_angle()
        distance = speed(environment.parameters)
        motion.dx += math.cos(angle) * distance
        motion.dy += math.sin(angle) * distance

    return step


def _move_forward(reader: _BehaviorReader) -> Step:
    speed = reader.number("speed")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        velocity = agent.velocity
        if velocity.length_squared() < 1e-12:
            return
        vx, vy = _scale_to_length_xy(velocity.x, velocity.y, speed(environment.parameters))
        velocity.update(vx, vy)
        motion.dx += vx
        motion.dy += vy

    return step


def _move_relative(direction: float) -> Callable[[_BehaviorReader], Optional[Step]]:
    def factory(reader: _BehaviorReader) -> Optional[Step]:
        target = reader.target()
        speed = reader.number("speed")
        if target is None:
            logger.warning(
                "%s behavior on agent type %r has no target; skipping it",
                reader.behavior.type,
                reader.context.agent_type.id,
            )
            return None

        def step(agent: Agent, environment: Environment, motion: Motion) -> None:
            found = environment.nearest(agent, target)
            if found is None or found.dist_sq <= 0.0:
                return
            scale = direction * speed(environment.parameters) / math.sqrt(found.dist_sq)
            motion.dx += found.dx * scale
            motion.dy += found.dy * scale

        return step

    return factory


def _wiggle(reader: _BehaviorReader) -> Step:
    angle = reader.number("angle")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        limit = abs(angle(environment.parameters))
        turn = math.radians(environment.rng.next_range(-limit, limit))
        velocity = agent.velocity
        if velocity.length_squared() > 1e-12:
            vx, vy = _rotate_xy(velocity.x, velocity.y, turn)
            velocity.update(vx, vy)
            agent.heading = math.atan2(vy, vx)
        else:
            agent.heading += turn

    return step


def _bounce(reader: _BehaviorReader) -> None:
    # Reflection is applied by the tick function's boundary policy.
    return None


def _separate(reader: _BehaviorReader) -> Step:
    radius = reader.number("radius")
    strength = reader.number("strength")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        params = environment.parameters
        push_x = 0.0
        push_y = 0.0
        for neighbor in environment.neighbors(agent, agent.type_id, radius(params)):
            if neighbor.dist_sq <= 1e-12:
                continue
            # unit vector away, weighted by 1 / distance
            push_x -= neighbor.dx / neighbor.dist_sq
            push_y -= neighbor.dy / neighbor.dist_sq
        if push_x or push_y:
            weight = strength(params)
            velocity = agent.velocity
            velocity.update(velocity.x + push_x * weight, velocity.y + push_y * weight)

    return step


def _align(reader: _BehaviorReader) -> Step:
    radius = reader.number("radius")
    strength = reader.number("strength")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        params = environment.parameters
        neighbors = environment.neighbors(agent, agent.type_id, radius(params))
        if not neighbors:
            return
        sum_x = 0.0
        sum_y = 0.0
        for neighbor in neighbors:
            sum_x += neighbor.agent.velocity.x
            sum_y += neighbor.agent.velocity.y
        count = len(neighbors)
        rate = strength(params) * ALIGN_RATE
        velocity = agent.velocity
        velocity.update(
            velocity.x + (sum_x / count - velocity.x) * rate,
            velocity.y + (sum_y / count - velocity.y) * rate,
        )

    return step


def _cohere(reader: _BehaviorReader) -> Step:
    radius = reader.number("radius")
    strength = reader.number("strength")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        params = environment.parameters
        neighbors = environment.neighbors(agent, agent.type_id, radius(params))
        if not neighbors:
            return
        sum_x = 0.0
        sum_y = 0.0
        for neighbor in neighbors:
            sum_x += neighbor.dx
            sum_y += neighbor.dy
        count = len(neighbors)
        rate = strength(params) * COHERE_RATE
        velocity = agent.velocity
        velocity.update(velocity.x + sum_x / count * rate, velocity.y + sum_y / count * rate)

    return step


def _die(reader: _BehaviorReader) -> Step:
    probability = reader.number("probability")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        if environment.rng.chance(probability(environment.parameters)):
            environment.remove_agent(agent)

    return step


def _reproduce(reader: _BehaviorReader) -> Step:
    probability = reader.number("probability")
    spread = reader.context.reproduce_offset

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        rng = environment.rng
        if not rng.chance(probability(environment.parameters)) or not environment.can_spawn():
            return
        position = environment.place(
            agent.position.x + rng.next_range(-spread, spread),
            agent.position.y + rng.next_range(-spread, spread),
        )
        child = Agent(
            id=environment.allocate_id(),
            type_id=agent.type_id,
            position=position,
            velocity=agent.velocity.copy(),
            heading=agent.heading,
            properties=agent.properties.copy(),
            tick_fn=agent.tick_fn,
        )
        environment.spawn(child)

    return step


def _on_collision(reader: _BehaviorReader) -> Optional[Step]:
    target = reader.target()
    radius = reader.number("radius")
    action = _compile_action(reader)
    if target is None:
        logger.warning(
            "on-collision behavior on agent type %r has no target; skipping it", reader.context.agent_type.id
        )
        return None

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        hits = environment.neighbors(agent, target, radius(environment.parameters))
        if not hits:
            return
        hit = min(hits, key=lambda neighbor: (neighbor.dist_sq, neighbor.agent.id))
        action(agent, hit.agent, environment)

    return step


def _on_property(reader: _BehaviorReader) -> Step:
    name = reader.required_text("property")
    condition = reader.literal("condition")
    if condition not in CONDITIONS:
        raise reader.error(f"unknown condition {condition!r}")
    compare = _COMPARATORS[condition]
    threshold = reader.value("threshold")
    action = _compile_action(reader)

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        value = agent.properties.get(name)
        if value is None:
            return
        try:
            matched = compare(value, threshold(environment.parameters))
        except TypeError:
            return
        if matched:
            action(agent, None, environment)

    return step


def _increment_property(reader: _BehaviorReader) -> Step:
    name = reader.required_text("property")
    amount = reader.number("amount")

    def step(agent: Agent, environment: Environment, motion: Motion) -> None:
        current = agent.properties.get(name)
        agent.properties.set(name, (0 if current is None else current) + amount(environment.parameters))

    return step


def _compile_action(reader: _BehaviorReader) -> Action:
    """Actions come either as a bare kind with ``action*`` sibling params or as a mapping."""
    raw = reader.literal("action")
    if isinstance(raw, Mapping):
        kind = raw.get("type")
        prop = raw.get("property")
        value = as_param_value(raw.get("value"))
        amount = as_param_value(raw.get("amount"))
    else:
        kind = raw
        prop = reader.literal("actionProperty")
        value = reader.behavior.param("actionValue")
        amount = reader.behavior.param("actionAmount")

    if kind not in ACTIONS:
        raise reader.error(f"unknown action {kind!r}")

    if kind == "remove-self":

        def remove_self(agent: Agent, target: Optional[Agent], environment: Environment) -> None:
            environment.remove_agent(agent)

        return remove_self

    if kind == "remove-target":

        def remove_target(agent: Agent, target: Optional[Agent], environment: Environment) -> None:
            if target is not None:
                environment.remove_agent(target)

        return remove_target

    if not isinstance(prop, str) or not prop:
        raise reader.error(f"action {kind!r} requires a property name")

    if kind == "set-property":
        resolve_value = reader.value("actionValue", value)

        def set_property(agent: Agent, target: Optional[Agent], environment: Environment) -> None:
            agent.properties.set(prop, resolve_value(environment.parameters))

        return set_property

    resolve_amount = reader.number("actionAmount", amount, default=1)

    def increment_property(agent: Agent, target: Optional[Agent], environment: Environment) -> None:
        current = agent.properties.get(prop)
        agent.properties.set(prop, (0 if current is None else current) + resolve_amount(environment.parameters))

    return increment_property


_FACTORIES: Dict[str, Callable[[_BehaviorReader], Optional[Step]]] = {
    "random-walk": _random_walk,
    "move-forward": _move_forward,
    "move-toward": _move_relative(1.0),
    "move-away": _move_relative(-1.0),
    "wiggle": _wiggle,
    "bounce": _bounce,
    "separate": _separate,
    "align": _align,
    "cohere": _cohere,
    "die": _die,
    "reproduce": _reproduce,
    "on-collision": _on_collision,
    "on-property": _on_property,
    "increment-property": _increment_property,
}
