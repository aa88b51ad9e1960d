"""Starter models users can begin from.

Ids are generated fresh on every call so each model is independent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List

from .types import (
    AgentType,
    Behavior,
    ChartSeries,
    EnvironmentSpec,
    MetricConfig,
    Model,
    Parameter,
    Population,
    Visualization,
)


def _new_id() -> str:
    return uuid.uuid4().hex[:21]


def create_blank_model() -> Model:
    return Model(
        id=_new_id(),
        name="Untitled Model",
        environment=EnvironmentSpec(width=800, height=800, wraparound=True, background_color="#1a1a2e"),
    )


def create_flocking_template() -> Model:
    boid_id = _new_id()
    return Model(
        id=_new_id(),
        name="Flocking",
        description=(
            "Classic Reynolds boids: separation, alignment, and cohesion produce emergent flocking."
        ),
        environment=EnvironmentSpec(width=800, height=800, wraparound=True, background_color="#0f172a"),
        agent_types=[
            AgentType(
                id=boid_id,
                name="Boid",
                color="#60a5fa",
                shape="arrow",
                size=8,
                behaviors=[
                    Behavior(id=_new_id(), type="move-forward", params={"speed": "$speed"}),
                    Behavior(id=_new_id(), type="wiggle", params={"angle": 15}),
                    Behavior(
                        id=_new_id(),
                        type="separate",
                        params={"radius": "$separationRadius", "strength": "$separationWeight"},
                    ),
                    Behavior(
                        id=_new_id(),
                        type="align",
                        params={"radius": "$alignmentRadius", "strength": "$alignmentWeight"},
                    ),
                    Behavior(
                        id=_new_id(),
                        type="cohere",
                        params={"radius": "$cohesionRadius", "strength": "$cohesionWeight"},
                    ),
                ],
            )
        ],
        populations=[Population(id=_new_id(), agent_type_id=boid_id, count=100)],
        parameters=[
            Parameter(id=_new_id(), name="speed", value=2, min=0.5, max=8, step=0.5),
            Parameter(id=_new_id(), name="separationRadius", value=25, min=5, max=80, step=1),
            Parameter(id=_new_id(), name="separationWeight", value=1, min=0, max=3, step=0.1),
            Parameter(id=_new_id(), name="alignmentRadius", value=50, min=10, max=150, step=1),
            Parameter(id=_new_id(), name="alignmentWeight", value=1, min=0, max=3, step=0.1),
            Parameter(id=_new_id(), name="cohesionRadius", value=75, min=10, max=200, step=1),
            Parameter(id=_new_id(), name="cohesionWeight", value=1, min=0, max=3, step=0.1),
        ],
        tags=["flocking", "movement"],
    )


def create_predator_prey_template() -> Model:
    sheep_id = _new_id()
    wolf_id = _new_id()
    return Model(
        id=_new_id(),
        name="Predator-Prey",
        description=(
            "Lotka-Volterra dynamics: sheep graze and reproduce; wolves hunt sheep and reproduce; "
            "both die from baseline mortality."
        ),
        environment=EnvironmentSpec(width=800, height=600, wraparound=True, background_color="#0f2010"),
        agent_types=[
            AgentType(
                id=sheep_id,
                name="Sheep",
                color="#e2e8f0",
                shape="circle",
                size=6,
                behaviors=[
                    Behavior(id=_new_id(), type="random-walk", params={"speed": "$sheepSpeed"}),
                    Behavior(id=_new_id(), type="reproduce", params={"probability": "$sheepReproduce"}),
                    Behavior(id=_new_id(), type="die", params={"probability": "$sheepMortality"}),
                ],
            ),
            AgentType(
                id=wolf_id,
                name="Wolf",
                color="#94a3b8",
                shape="circle",
                size=10,
                behaviors=[
                    Behavior(id=_new_id(), type="move-toward", params={"speed": "$wolfSpeed", "target": sheep_id}),
                    Behavior(
                        id=_new_id(),
                        type="on-collision",
                        params={"target": sheep_id, "radius": 10, "action": "remove-target"},
                    ),
                    Behavior(id=_new_id(), type="reproduce", params={"probability": "$wolfReproduce"}),
                    Behavior(id=_new_id(), type="die", params={"probability": "$wolfMortality"}),
                ],
            ),
        ],
        populations=[
            Population(id=_new_id(), agent_type_id=sheep_id, count=200),
            Population(id=_new_id(), agent_type_id=wolf_id, count=40),
        ],
        parameters=[
            Parameter(id=_new_id(), name="sheepSpeed", value=1.5, min=0.5, max=5, step=0.5),
            Parameter(id=_new_id(), name="sheepReproduce", value=0.03, min=0, max=0.15, step=0.005),
            Parameter(id=_new_id(), name="sheepMortality", value=0.001, min=0, max=0.05, step=0.001),
            Parameter(id=_new_id(), name="wolfSpeed", value=2.5, min=0.5, max=8, step=0.5),
            Parameter(id=_new_id(), name="wolfReproduce", value=0.05, min=0, max=0.2, step=0.005),
            Parameter(id=_new_id(), name="wolfMortality", value=0.02, min=0, max=0.1, step=0.005),
        ],
        visualizations=[
            Visualization(
                id=_new_id(),
                name="Population",
                series=[
                    ChartSeries(
                        id=_new_id(),
                        name="Sheep",
                        color="#e2e8f0",
                        metric=MetricConfig(type="count", agent_type_id=sheep_id),
                    ),
                    ChartSeries(
                        id=_new_id(),
                        name="Wolves",
                        color="#94a3b8",
                        metric=MetricConfig(type="count", agent_type_id=wolf_id),
                    ),
                ],
            )
        ],
        tags=["ecology", "predator-prey"],
    )


@dataclass(frozen=True)
class TemplateInfo:
    id: str
    name: str
    description: str
    tags: tuple[str, ...]
    create: Callable[[], Model]


TEMPLATES: List[TemplateInfo] = [
    TemplateInfo("blank", "Blank", "Start from scratch with an empty canvas.", (), create_blank_model),
    TemplateInfo(
        "flocking",
        "Flocking",
        "Emergent flock behavior from three simple local rules.",
        ("flocking", "movement"),
        create_flocking_template,
    ),
    TemplateInfo(
        "predator-prey",
        "Predator-Prey",
        "Wolves hunt sheep; populations oscillate in boom-bust cycles.",
        ("ecology", "predator-prey"),
        create_predator_prey_template,
    ),
]

_TEMPLATES_BY_ID: Dict[str, TemplateInfo] = {template.id: template for template in TEMPLATES}


def create_from_template(template_id: str) -> Model:
    try:
        template = _TEMPLATES_BY_ID[template_id]
    except KeyError:
        raise KeyError(f"Unknown template: {template_id}") from None
    return template.create()
