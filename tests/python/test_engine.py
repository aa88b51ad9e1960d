from __future__ import annotations

import logging

import pytest

from abmstudio.config import EngineConfig
from abmstudio.sim.core.engine import PlaybackStatus, SimulationEngine
from abmstudio.sim.core.errors import CompileError
from abmstudio.sim.core.scheduler import ManualScheduler
from abmstudio.sim.model.templates import create_from_template
from model_builders import agent_type, behavior, model, population


def _wanderers(count: int = 30):
    return model(
        [
            agent_type(
                "a",
                behavior("random-walk", speed=2),
                behavior("reproduce", probability=0.02),
                behavior("die", probability=0.02),
            )
        ],
        [population("a", count)],
    )


def _trace(engine: SimulationEngine, ticks: int):
    rows = []
    for _ in range(ticks):
        engine.step()
        rows.append(
            [(agent.id, round(agent.position.x, 9), round(agent.position.y, 9)) for agent in engine.environment.agents]
        )
    return rows


def _started(test_model=None, seed: int = 42, scheduler=None) -> SimulationEngine:
    engine = SimulationEngine(EngineConfig(seed=seed), scheduler)
    assert engine.initialize(test_model or _wanderers())
    return engine


def test_same_seed_same_run():
    first = _trace(_started(), 60)
    second = _trace(_started(), 60)
    assert first == second


def test_different_seeds_diverge():
    assert _trace(_started(seed=1), 5) != _trace(_started(seed=2), 5)


def test_reset_replays_the_same_run():
    engine = _started()
    first = _trace(engine, 40)
    engine.reset()
    assert engine.tick == 0
    assert engine.status is PlaybackStatus.IDLE
    assert _trace(engine, 40) == first


def test_population_identity_holds_every_tick():
    engine = _started(create_from_template("predator-prey"))
    previous = engine.agent_count
    for _ in range(100):
        engine.step()
        metrics = engine.metrics
        assert metrics.population == previous + metrics.births - metrics.deaths
        assert metrics.population == engine.agent_count
        assert sum(metrics.counts_by_type.values()) == metrics.population
        previous = metrics.population


def test_initial_metrics_are_tick_zero():
    engine = _started(_wanderers(12))
    assert engine.tick == 0
    assert engine.metrics.tick == 0
    assert engine.metrics.population == 12
    assert (engine.metrics.births, engine.metrics.deaths) == (0, 0)
    assert engine.metrics.counts_by_type == {"a": 12}


def test_play_pause_step_state_machine():
    scheduler = ManualScheduler()
    engine = _started(scheduler=scheduler)
    assert engine.status is PlaybackStatus.IDLE

    engine.play()
    assert engine.is_running
    assert scheduler.pending == 1
    engine.play()
    assert scheduler.pending == 1

    assert scheduler.run_pending() == 1
    assert engine.tick == 1
    assert scheduler.pending == 1

    engine.pause()
    assert engine.status is PlaybackStatus.PAUSED
    assert scheduler.pending == 0
    assert scheduler.run_pending() == 0
    assert engine.tick == 1

    engine.step()
    assert engine.tick == 2
    assert engine.status is PlaybackStatus.PAUSED

    engine.play()
    engine.step()
    assert engine.status is PlaybackStatus.PAUSED
    assert scheduler.pending == 0
    assert engine.tick == 3


def test_pause_while_idle_stays_idle():
    engine = _started()
    engine.pause()
    assert engine.status is PlaybackStatus.IDLE


def test_ticks_per_frame():
    scheduler = ManualScheduler()
    engine = _started(scheduler=scheduler)
    engine.set_speed(5)
    engine.play()
    scheduler.run_pending()
    assert engine.tick == 5
    engine.set_speed(0)
    assert engine.ticks_per_frame == 1
    engine.set_speed(-3)
    assert engine.ticks_per_frame == 1


class _NonCancellingScheduler(ManualScheduler):
    def cancel(self, handle: int) -> None:
        pass


def test_frames_from_before_a_reset_are_dropped():
    scheduler = _NonCancellingScheduler()
    engine = _started(scheduler=scheduler)
    engine.play()
    engine.reset()
    scheduler.run_pending()
    assert engine.tick == 0

    engine.play()
    engine.pause()
    scheduler.run_pending()
    assert engine.tick == 0
    assert engine.status is PlaybackStatus.PAUSED


def test_reinitialize_drops_old_frames():
    scheduler = _NonCancellingScheduler()
    engine = _started(scheduler=scheduler)
    engine.play()
    assert engine.initialize(_wanderers(5))
    scheduler.run_pending()
    assert engine.tick == 0
    assert engine.agent_count == 5
    assert engine.status is PlaybackStatus.IDLE


def test_controls_before_initialize_do_nothing():
    scheduler = ManualScheduler()
    engine = SimulationEngine(scheduler=scheduler)
    engine.play()
    engine.step()
    engine.reset()
    engine.pause()
    engine.update_parameter("speed", 1)
    assert scheduler.pending == 0
    assert engine.tick == 0
    assert engine.agent_count == 0
    assert not engine.initialized
    assert engine.snapshot() is None


def test_compile_error_keeps_running_model():
    errors = []
    engine = _started()
    engine.step()
    count = engine.agent_count
    broken = model([agent_type("a", behavior("teleport"))], [population("a", 3)])
    assert not engine.initialize(broken, on_error=errors.append)
    assert len(errors) == 1
    assert isinstance(errors[0], CompileError)
    assert errors[0].agent_type_id == "a"
    assert engine.tick == 1
    assert engine.agent_count == count
    assert engine.initialized


def test_compile_error_is_logged_without_handler(caplog):
    engine = SimulationEngine()
    broken = model([agent_type("a", behavior("teleport"))], [population("a", 3)])
    with caplog.at_level(logging.ERROR, logger="abmstudio.sim.core.engine"):
        assert not engine.initialize(broken)
    assert "teleport" in caplog.text
    assert not engine.initialized


def test_zero_sized_world_is_reported_through_on_error():
    errors = []
    engine = SimulationEngine()
    flat = model([agent_type("a")], [population("a", 2)], width=0, height=100)
    assert not engine.initialize(flat, on_error=errors.append)
    assert len(errors) == 1
    assert isinstance(errors[0], CompileError)
    assert not engine.initialized


def test_empty_model_clears_the_engine():
    errors = []
    engine = _started()
    engine.play()
    assert not engine.initialize(model([agent_type("a")], []), on_error=errors.append)
    assert errors == []
    assert not engine.initialized
    assert engine.status is PlaybackStatus.IDLE
    assert engine.agent_count == 0


def test_callbacks_fire_after_each_notification():
    ticks = []
    snapshots = []
    engine = SimulationEngine()
    engine.on_snapshot = snapshots.append
    assert engine.initialize(_wanderers(4), on_tick=lambda tick, count: ticks.append((tick, count)))
    engine.step()
    engine.step()
    assert [tick for tick, _ in ticks] == [0, 1, 2]
    assert [snapshot.tick for snapshot in snapshots] == [0, 1, 2]
    assert snapshots[-1].status == "paused"


def test_snapshot_contents():
    engine = _started(
        model(
            [agent_type("a", color="#ff0000", shape="square", size=6)],
            [population("a", 3)],
            width=300,
            height=150,
        )
    )
    snapshot = engine.snapshot()
    assert snapshot.tick == 0
    assert snapshot.status == "idle"
    assert snapshot.world.width == 300
    assert snapshot.world.height == 150
    assert snapshot.world.wraparound is True
    assert [agent.id for agent in snapshot.agents] == [0, 1, 2]
    assert {agent.color for agent in snapshot.agents} == {"#ff0000"}
    assert snapshot.metrics.population == 3


def test_failing_tick_function_is_logged_and_skipped(caplog):
    engine = _started(_wanderers(3))
    agents = engine.environment.agents

    def explode(agent, environment):
        raise RuntimeError("boom")

    agents[0].tick_fn = explode
    with caplog.at_level(logging.WARNING, logger="abmstudio.sim.core.engine"):
        engine.step()
    assert engine.tick == 1
    assert any("failed during tick 1" in record.getMessage() for record in caplog.records)


def test_parameters_survive_reset():
    engine = _started(
        model(
            [agent_type("a", behavior("random-walk", speed="$speed"))],
            [population("a", 3)],
            parameters=[{"name": "speed", "value": 1}],
        )
    )
    engine.update_parameter("speed", 5)
    engine.reset()
    assert engine.environment.parameters.get("speed") == 5


def test_sync_parameters_replaces_table():
    engine = _started()
    engine.sync_parameters([])
    assert engine.environment.parameters.as_dict() == {}


def test_cleanup_stops_everything():
    scheduler = ManualScheduler()
    engine = _started(scheduler=scheduler)
    engine.play()
    engine.cleanup()
    assert scheduler.pending == 0
    assert not engine.initialized
    assert engine.status is PlaybackStatus.IDLE
    assert engine.chart_series_values() == {}


@pytest.mark.parametrize("seed", [0, 7, 123456789])
def test_placement_is_seeded(seed):
    first = _started(seed=seed)
    second = _started(seed=seed)
    assert [agent.position for agent in first.environment.agents] == [
        agent.position for agent in second.environment.agents
    ]
