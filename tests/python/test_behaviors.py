from __future__ import annotations

import logging

import pytest
from pygame.math import Vector2
from pytest import approx

from abmstudio.config import EngineConfig
from abmstudio.sim.core.engine import SimulationEngine
from model_builders import agent_type, behavior, model, population, region


def _engine(test_model, **config) -> SimulationEngine:
    engine = SimulationEngine(EngineConfig(**config))
    assert engine.initialize(test_model)
    return engine


def _agents(engine, type_id=None):
    return list(engine.environment.live_agents(type_id))


def _single(type_id: str, x: float, y: float) -> dict:
    return population(
        type_id, 1, id=f"pop-{type_id}-{x:g}-{y:g}", distribution="grid", region=region(x - 10, y - 10, 20, 20)
    )


def _pair_model(*behaviors):
    # two agents of one type at (100, 100) and (110, 100)
    return model(
        [agent_type("boid", *behaviors)],
        [population("boid", 2, distribution="grid", region=region(95, 95, 20, 10))],
        width=400,
        height=400,
    )


def test_random_walk_moves_exactly_speed():
    engine = _engine(
        model(
            [agent_type("walker", behavior("random-walk", speed=3))],
            [population("walker", 20, region=region(400, 400, 200, 200))],
            width=1000,
            height=1000,
            wraparound=False,
        )
    )
    before = {agent.id: agent.position.copy() for agent in _agents(engine)}
    engine.step()
    for agent in _agents(engine):
        assert agent.position.distance_to(before[agent.id]) == approx(3.0)


def test_move_forward_rescales_velocity():
    engine = _engine(
        model(
            [agent_type("flyer", behavior("move-forward", speed=2))],
            [population("flyer", 5, region=region(400, 400, 200, 200))],
            width=1000,
            height=1000,
            wraparound=False,
        )
    )
    agent = _agents(engine)[0]
    agent.velocity.update(3.0, 4.0)
    start = agent.position.copy()
    engine.step()
    assert agent.velocity.x == approx(1.2)
    assert agent.velocity.y == approx(1.6)
    assert agent.position.x - start.x == approx(1.2)
    assert agent.position.y - start.y == approx(1.6)


@pytest.mark.parametrize("kind, expected_x", [("move-toward", 105.0), ("move-away", 95.0)])
def test_move_relative_to_nearest_target(kind, expected_x):
    engine = _engine(
        model(
            [agent_type("wolf", behavior(kind, target="sheep", speed=5)), agent_type("sheep")],
            [_single("wolf", 100, 100), _single("sheep", 150, 100), _single("sheep", 300, 300)],
            width=400,
            height=400,
            wraparound=False,
        )
    )
    wolf = _agents(engine, "wolf")[0]
    engine.step()
    assert wolf.position.x == approx(expected_x)
    assert wolf.position.y == approx(100.0)


def test_move_toward_takes_the_short_way_around_the_torus():
    engine = _engine(
        model(
            [agent_type("wolf", behavior("move-toward", target="sheep", speed=5)), agent_type("sheep")],
            [_single("wolf", 10, 100), _single("sheep", 190, 100)],
            width=200,
            height=200,
            wraparound=True,
        )
    )
    wolf = _agents(engine, "wolf")[0]
    engine.step()
    assert wolf.position.x == approx(5.0)


def test_move_toward_without_targets_stays_put():
    engine = _engine(
        model(
            [agent_type("wolf", behavior("move-toward", target="sheep", speed=5)), agent_type("sheep")],
            [_single("wolf", 10, 100)],
        )
    )
    wolf = _agents(engine, "wolf")[0]
    start = wolf.position.copy()
    engine.step()
    assert wolf.position == start


def test_on_collision_removes_target_in_radius():
    engine = _engine(
        model(
            [agent_type("wolf", behavior("on-collision", target="sheep", radius=10)), agent_type("sheep")],
            [_single("wolf", 100, 100), _single("sheep", 105, 100), _single("sheep", 160, 100)],
            width=400,
            height=400,
        )
    )
    assert engine.agent_count == 3
    engine.step()
    assert all(agent.position.x != approx(105.0) for agent in _agents(engine, "sheep"))
    assert engine.metrics.deaths == 1


def test_on_collision_can_update_a_property_instead():
    engine = _engine(
        model(
            [
                agent_type(
                    "wolf",
                    behavior(
                        "on-collision",
                        target="sheep",
                        radius=10,
                        action="increment-property",
                        actionProperty="kills",
                        actionAmount=2,
                    ),
                ),
                agent_type("sheep"),
            ],
            [_single("wolf", 100, 100), _single("sheep", 104, 100)],
            width=400,
            height=400,
        )
    )
    engine.step()
    engine.step()
    wolf = _agents(engine, "wolf")[0]
    assert wolf.properties["kills"] == 4
    assert engine.agent_count == 2


def test_die_with_certainty_empties_the_world():
    engine = _engine(model([agent_type("a", behavior("die", probability=1))], [population("a", 12)]))
    engine.step()
    assert engine.agent_count == 0
    assert engine.metrics.deaths == 12
    assert engine.metrics.population == 0


def test_zero_probability_never_fires():
    engine = _engine(
        model(
            [agent_type("a", behavior("die", probability=0), behavior("reproduce", probability=0))],
            [population("a", 12)],
        )
    )
    for _ in range(10):
        engine.step()
    assert engine.agent_count == 12


def test_reproduce_with_certainty_doubles():
    engine = _engine(model([agent_type("a", behavior("reproduce", probability=1))], [population("a", 10)]))
    engine.step()
    assert engine.agent_count == 20
    assert engine.metrics.births == 10
    engine.step()
    assert engine.agent_count == 40
    ids = [agent.id for agent in _agents(engine)]
    assert len(set(ids)) == len(ids)
    assert sorted(ids) == list(range(40))


def test_reproduce_respects_max_population():
    engine = _engine(
        model([agent_type("a", behavior("reproduce", probability=1))], [population("a", 10)]),
        max_population=15,
    )
    engine.step()
    assert engine.agent_count == 15
    engine.step()
    assert engine.agent_count == 15


def test_children_copy_state_and_land_near_the_parent():
    engine = _engine(
        model(
            [
                agent_type(
                    "a",
                    behavior("reproduce", probability=1),
                    properties=[{"name": "energy", "type": "number", "defaultValue": 3}],
                )
            ],
            [population("a", 1, distribution="grid", region=region(90, 90, 20, 20))],
            width=400,
            height=400,
        ),
        reproduce_offset=4.0,
    )
    parent = _agents(engine)[0]
    parent.properties.set("energy", 8)
    parent.velocity.update(1.0, 2.0)
    engine.step()
    child = _agents(engine)[1]
    assert child.id == 1
    assert child.properties["energy"] == 8
    assert child.velocity == Vector2(1.0, 2.0)
    assert child.velocity is not parent.velocity
    assert abs(child.position.x - 100.0) <= 4.0
    assert abs(child.position.y - 100.0) <= 4.0
    assert child.visual is not None
    child.properties.set("energy", 1)
    assert parent.properties["energy"] == 8


def test_parent_that_dies_after_reproducing_leaves_its_child():
    engine = _engine(
        model(
            [agent_type("a", behavior("reproduce", probability=1), behavior("die", probability=1))],
            [population("a", 10)],
        )
    )
    engine.step()
    assert engine.agent_count == 10
    assert engine.metrics.births == 10
    assert engine.metrics.deaths == 10
    assert all(agent.id >= 10 for agent in _agents(engine))


def test_removed_agents_run_no_further_steps():
    engine = _engine(
        model(
            [agent_type("a", behavior("die", probability=1), behavior("reproduce", probability=1))],
            [population("a", 5)],
        )
    )
    engine.step()
    assert engine.agent_count == 0
    assert engine.metrics.births == 0


def test_property_countdown_removes_self():
    engine = _engine(
        model(
            [
                agent_type(
                    "a",
                    behavior("increment-property", property="energy", amount=-1),
                    behavior("on-property", property="energy", condition="lte", threshold=0),
                    properties=[{"name": "energy", "type": "number", "defaultValue": 3}],
                )
            ],
            [population("a", 4)],
        )
    )
    engine.step()
    engine.step()
    assert engine.agent_count == 4
    engine.step()
    assert engine.agent_count == 0


def test_set_property_action_reads_parameters():
    engine = _engine(
        model(
            [
                agent_type(
                    "a",
                    behavior(
                        "on-property",
                        property="energy",
                        condition="eq",
                        threshold=0,
                        action={"type": "set-property", "property": "energy", "value": "$refill"},
                    ),
                    properties=[{"name": "energy", "type": "number", "defaultValue": 0}],
                )
            ],
            [population("a", 2)],
            parameters=[{"name": "refill", "value": 7}],
        )
    )
    engine.step()
    assert [agent.properties["energy"] for agent in _agents(engine)] == [7, 7]


def test_on_property_skips_missing_and_incomparable_values():
    engine = _engine(
        model(
            [
                agent_type(
                    "a",
                    behavior("on-property", property="label", condition="gt", threshold=1),
                    behavior("on-property", property="ghost", condition="eq", threshold=0),
                    properties=[{"name": "label", "type": "string", "defaultValue": "calm"}],
                )
            ],
            [population("a", 3)],
        )
    )
    engine.step()
    assert engine.agent_count == 3


def test_remove_target_without_target_is_a_noop():
    engine = _engine(
        model(
            [
                agent_type(
                    "a",
                    behavior("on-property", property="energy", condition="eq", threshold=0, action="remove-target"),
                    properties=[{"name": "energy", "type": "number", "defaultValue": 0}],
                )
            ],
            [population("a", 3)],
        )
    )
    engine.step()
    assert engine.agent_count == 3


def test_increment_property_on_undeclared_name_starts_at_zero():
    engine = _engine(model([agent_type("a", behavior("increment-property", property="age", amount=2))], [population("a", 1)]))
    engine.step()
    engine.step()
    assert _agents(engine)[0].properties["age"] == 4


@pytest.mark.parametrize("with_bounce, expected_x, expected_vx", [(True, 195.0, -10.0), (False, 5.0, 10.0)])
def test_bounce_wins_over_wraparound(with_bounce, expected_x, expected_vx):
    behaviors = [behavior("move-forward", speed=10)]
    if with_bounce:
        behaviors.insert(0, behavior("bounce"))
    engine = _engine(model([agent_type("a", *behaviors)], [population("a", 1)], wraparound=True))
    agent = _agents(engine)[0]
    agent.position.update(195.0, 100.0)
    agent.velocity.update(10.0, 0.0)
    engine.step()
    assert agent.position.x == approx(expected_x)
    assert agent.velocity.x == approx(expected_vx)


def test_parameter_hot_swap_takes_effect_next_tick():
    engine = _engine(
        model(
            [agent_type("walker", behavior("random-walk", speed="$speed"))],
            [population("walker", 5, region=region(400, 400, 200, 200))],
            parameters=[{"name": "speed", "value": 1}],
            width=1000,
            height=1000,
            wraparound=False,
        )
    )
    walker = _agents(engine)[0]
    start = walker.position.copy()
    engine.step()
    assert walker.position.distance_to(start) == approx(1.0)

    engine.update_parameter("speed", 4)
    start = walker.position.copy()
    engine.step()
    assert walker.position.distance_to(start) == approx(4.0)


def test_missing_parameter_uses_documented_default(caplog):
    engine = _engine(
        model(
            [agent_type("walker", behavior("random-walk", speed="$nope"))],
            [population("walker", 3, region=region(400, 400, 200, 200))],
            width=1000,
            height=1000,
            wraparound=False,
        )
    )
    walker = _agents(engine)[0]
    start = walker.position.copy()
    with caplog.at_level(logging.WARNING, logger="abmstudio.sim.core.params"):
        engine.step()
    assert walker.position.distance_to(start) == approx(2.0)
    assert len([record for record in caplog.records if "'nope'" in record.getMessage()]) == 1


def test_disabled_behaviors_do_not_run():
    engine = _engine(model([agent_type("a", behavior("die", enabled=False, probability=1))], [population("a", 5)]))
    engine.step()
    assert engine.agent_count == 5


def test_separate_pushes_neighbors_apart():
    engine = _engine(_pair_model(behavior("separate", radius=25, strength=1)))
    first, second = _agents(engine)
    assert (first.position.x, second.position.x) == (100.0, 110.0)
    first.velocity.update(0.0, 0.0)
    second.velocity.update(0.0, 0.0)
    engine.step()
    assert first.velocity.x == approx(-0.1)
    assert second.velocity.x == approx(0.1)


def test_align_steers_toward_neighbor_velocity_sequentially():
    engine = _engine(_pair_model(behavior("align", radius=50, strength=1)))
    first, second = _agents(engine)
    first.velocity.update(1.0, 0.0)
    second.velocity.update(0.0, 1.0)
    engine.step()
    assert (first.velocity.x, first.velocity.y) == (approx(0.9), approx(0.1))
    # the second agent already sees the first agent's new velocity
    assert (second.velocity.x, second.velocity.y) == (approx(0.09), approx(0.91))


def test_cohere_steers_toward_neighbors():
    engine = _engine(_pair_model(behavior("cohere", radius=75, strength=1)))
    first, second = _agents(engine)
    first.velocity.update(0.0, 0.0)
    second.velocity.update(0.0, 0.0)
    engine.step()
    assert first.velocity.x == approx(0.1)
    assert second.velocity.x == approx(-0.1)


def test_wiggle_rotates_within_limit():
    engine = _engine(_pair_model(behavior("wiggle", angle=10)))
    first, _ = _agents(engine)
    first.velocity.update(2.0, 0.0)
    engine.step()
    assert first.velocity.length() == approx(2.0)
    assert abs(first.velocity.angle_to(Vector2(2.0, 0.0))) <= 10.0 + 1e-6


def test_infinite_runtime_speed_uses_documented_default():
    engine = _engine(
        model(
            [agent_type("walker", behavior("random-walk", speed="$speed"))],
            [population("walker", 3, region=region(400, 400, 200, 200))],
            parameters=[{"name": "speed", "value": 1}],
            width=1000,
            height=1000,
        )
    )
    engine.update_parameter("speed", "inf")
    walker = _agents(engine)[0]
    start = walker.position.copy()
    engine.step()
    assert engine.tick == 1
    assert walker.position.distance_to(start) == approx(2.0)


def test_huge_speed_with_bounce_stays_in_bounds():
    engine = _engine(
        model(
            [agent_type("a", behavior("bounce"), behavior("random-walk", speed="$speed"))],
            [population("a", 5)],
            parameters=[{"name": "speed", "value": 1e20}],
        )
    )
    for _ in range(3):
        engine.step()
    assert engine.tick == 3
    for agent in _agents(engine):
        assert 0.0 <= agent.position.x <= 200.0
        assert 0.0 <= agent.position.y <= 200.0
