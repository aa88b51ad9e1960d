"""Behavior library: every behavior kind the compiler understands.

The defaults listed here are the documented fallbacks used when a parameter
is missing or a parameter reference cannot be resolved at runtime.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..model.types import Behavior


@dataclass(frozen=True)
class ParamDef:
    key: str
    name: str
    type: str
    default: Any
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None


@dataclass(frozen=True)
class BehaviorDef:
    type: str
    name: str
    description: str
    category: str
    params: List[ParamDef] = field(default_factory=list)

    def default(self, key: str) -> Any:
        for param in self.params:
            if param.key == key:
                return param.default
        return None


def _speed() -> ParamDef:
    return ParamDef("speed", "Speed", "number", 2, 0.1, 20, 0.1)


def _target() -> ParamDef:
    return ParamDef("target", "Target", "agentType", None)


def _action(default: str) -> ParamDef:
    return ParamDef("action", "Action", "action", default)


BEHAVIOR_LIBRARY: List[BehaviorDef] = [
    BehaviorDef("random-walk", "Random Walk", "Move in a random direction each tick", "movement", [_speed()]),
    BehaviorDef("move-forward", "Move Forward", "Move in the current velocity direction", "movement", [_speed()]),
    BehaviorDef(
        "move-toward", "Move Toward", "Move toward the nearest agent of a type", "movement", [_target(), _speed()]
    ),
    BehaviorDef(
        "move-away", "Move Away", "Move away from the nearest agent of a type", "movement", [_target(), _speed()]
    ),
    BehaviorDef(
        "wiggle",
        "Wiggle",
        "Add random variation to movement direction",
        "movement",
        [ParamDef("angle", "Max Angle (deg)", "number", 30, 0, 180, 5)],
    ),
    BehaviorDef("bounce", "Bounce Off Edges", "Reverse direction when hitting environment boundaries", "movement"),
    BehaviorDef(
        "separate",
        "Separate",
        "Steer away from nearby agents to avoid crowding",
        "flocking",
        [ParamDef("radius", "Radius", "number", 25, 5, 100, 5), ParamDef("strength", "Strength", "number", 1, 0.1, 5, 0.1)],
    ),
    BehaviorDef(
        "align",
        "Align",
        "Steer toward the average heading of nearby agents",
        "flocking",
        [ParamDef("radius", "Radius", "number", 50, 10, 150, 5), ParamDef("strength", "Strength", "number", 1, 0.1, 5, 0.1)],
    ),
    BehaviorDef(
        "cohere",
        "Cohere",
        "Steer toward the center of mass of nearby agents",
        "flocking",
        [ParamDef("radius", "Radius", "number", 75, 20, 200, 5), ParamDef("strength", "Strength", "number", 1, 0.1, 5, 0.1)],
    ),
    BehaviorDef(
        "on-collision",
        "On Collision",
        "Run an action when an agent of a type is within a radius",
        "interaction",
        [_target(), ParamDef("radius", "Radius", "number", 10, 1, 100, 1), _action("remove-target")],
    ),
    BehaviorDef(
        "on-property",
        "On Property",
        "Run an action when one of the agent's properties meets a condition",
        "interaction",
        [
            ParamDef("property", "Property", "property", None),
            ParamDef("condition", "Condition", "condition", "eq"),
            ParamDef("threshold", "Threshold", "number", 0),
            _action("remove-self"),
        ],
    ),
    BehaviorDef(
        "increment-property",
        "Increment Property",
        "Add an amount to one of the agent's properties every tick",
        "interaction",
        [ParamDef("property", "Property", "property", None), ParamDef("amount", "Amount", "number", 1, step=0.1)],
    ),
    BehaviorDef(
        "die",
        "Die",
        "Remove agent with a probability each tick",
        "lifecycle",
        [ParamDef("probability", "Probability", "number", 0.01, 0, 1, 0.01)],
    ),
    BehaviorDef(
        "reproduce",
        "Reproduce",
        "Create a copy of this agent with a probability",
        "lifecycle",
        [ParamDef("probability", "Probability", "number", 0.01, 0, 1, 0.01)],
    ),
]

_LIBRARY_BY_TYPE: Dict[str, BehaviorDef] = {definition.type: definition for definition in BEHAVIOR_LIBRARY}

ACTIONS = ("remove-self", "remove-target", "set-property", "increment-property")
CONDITIONS = ("eq", "neq", "lt", "lte", "gt", "gte")
MOTION_CATEGORIES = frozenset({"movement", "flocking"})


def get_behavior_def(behavior_type: str) -> Optional[BehaviorDef]:
    return _LIBRARY_BY_TYPE.get(behavior_type)


def create_behavior(behavior_type: str, behavior_id: str | None = None) -> Behavior:
    """New behavior instance with the library defaults filled in."""
    definition = get_behavior_def(behavior_type)
    params: Dict[str, Any] = {}
    if definition is not None:
        for param in definition.params:
            params[param.key] = param.default
    return Behavior(id=behavior_id or uuid.uuid4().hex[:21], type=behavior_type, params=params)
